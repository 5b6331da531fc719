"""
Симуляция длительности проекта методом Монте-Карло.

Итерации делятся на блоки фиксированного размера. Каждый блок получает свой
генератор, порожденный из SeedSequence запуска, поэтому объединенный результат
зависит только от зерна, а не от количества потоков.
"""
from concurrent.futures import ThreadPoolExecutor, as_completed
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from sitescheduler.data.results import PertEstimate
from sitescheduler.models.cpm import CPMEngine


def sample_pert(
    rng: np.random.Generator,
    mean: np.ndarray,
    std: np.ndarray,
    optimistic: np.ndarray,
    pessimistic: np.ndarray,
    size: int
) -> np.ndarray:
    """
    Генерирует длительности задач по нормальному приближению PERT.

    Нормальные величины получаются преобразованием Бокса-Мюллера; значения
    обрезаются до [optimistic, pessimistic].

    Args:
        rng: Генератор случайных чисел
        mean: Ожидаемая длительность PERT каждой задачи
        std: Стандартное отклонение PERT каждой задачи
        optimistic: Оптимистичная длительность каждой задачи
        pessimistic: Пессимистичная длительность каждой задачи
        size: Количество выборок

    Returns:
        Массив формы (size, tasks)
    """
    shape = (size, optimistic.shape[0])
    u1 = 1.0 - rng.random(shape)  # (0, 1], чтобы логарифм был конечен
    u2 = rng.random(shape)
    z = np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * np.pi * u2)
    return np.clip(mean + z * std, optimistic, pessimistic)


class SimulationRun:
    """
    Сырые результаты симуляции.

    Attributes:
        durations: Длительность проекта в каждой завершенной итерации
        critical_counts: Сколько раз каждая задача была на критическом пути
        iterations_requested: Запрошенное количество итераций
        timed_out: Были ли пропущены блоки из-за таймаута или отмены
        seed: Зерно запуска
    """

    def __init__(
        self,
        durations: np.ndarray,
        critical_counts: np.ndarray,
        iterations_requested: int,
        timed_out: bool,
        seed: Optional[int]
    ):
        self.durations = durations
        self.critical_counts = critical_counts
        self.iterations_requested = iterations_requested
        self.timed_out = timed_out
        self.seed = seed

    @property
    def iterations_completed(self) -> int:
        return int(self.durations.shape[0])


class MonteCarloSimulator:
    """
    Генерирует длительности задач и выполняет прямой проход для каждой итерации.
    """

    def __init__(
        self,
        cpm: CPMEngine,
        estimates: Dict[str, PertEstimate],
        iterations: int = 1000,
        seed: Optional[int] = None,
        workers: int = 1,
        timeout: Optional[float] = None,
        block_size: int = 250,
        log_level: int = logging.INFO
    ):
        """
        Args:
            cpm: Движок CPM графа задач
            estimates: Скорректированная оценка PERT по идентификатору задачи
            iterations: Максимальное количество итераций
            seed: Зерно генератора; None берет новую энтропию
            workers: Потоки для блоков (1 выполняет в текущем потоке)
            timeout: Ограничение времени в секундах
            block_size: Итераций в блоке
            log_level: Уровень логирования
        """
        self.logger = logging.getLogger(__name__)
        self.logger.setLevel(log_level)
        self.cpm = cpm
        self.task_ids = cpm.graph.task_ids
        ordered = [estimates[task_id] for task_id in self.task_ids]
        self.mean = np.array([estimate.mean for estimate in ordered], dtype=float)
        self.std = np.array([estimate.std for estimate in ordered], dtype=float)
        self.optimistic = np.array([estimate.optimistic for estimate in ordered], dtype=float)
        self.pessimistic = np.array([estimate.pessimistic for estimate in ordered], dtype=float)
        self.iterations = iterations
        self.seed = seed
        self.workers = workers
        self.timeout = timeout
        self.block_size = block_size

    def _block_sizes(self) -> List[int]:
        full, rest = divmod(self.iterations, self.block_size)
        return [self.block_size] * full + ([rest] if rest else [])

    def _run_block(
        self,
        index: int,
        size: int,
        seed_sequence: np.random.SeedSequence,
        deadline: Optional[float],
        cancel_event: Optional[threading.Event]
    ) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        # Первый блок выполняется всегда, чтобы прогноз можно было построить
        if index > 0:
            if cancel_event is not None and cancel_event.is_set():
                return None
            if deadline is not None and time.monotonic() >= deadline:
                return None
        rng = np.random.default_rng(seed_sequence)
        durations = sample_pert(rng, self.mean, self.std, self.optimistic, self.pessimistic, size)
        totals, critical = self.cpm.batch_forward_pass(durations)
        return totals, critical.sum(axis=0)

    def run(
        self,
        progress_callback: Optional[Callable[[float], None]] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> SimulationRun:
        """
        Запускает симуляцию.

        Args:
            progress_callback: Вызывается с долей выполнения после каждого блока
            cancel_event: Если установлен, оставшиеся блоки не запускаются

        Returns:
            Длительности и счетчики критичности всех завершенных итераций
        """
        sizes = self._block_sizes()
        root = np.random.SeedSequence(self.seed)
        children = root.spawn(len(sizes))
        deadline = time.monotonic() + self.timeout if self.timeout is not None else None

        self.logger.info(
            f"Монте-Карло: {self.iterations} итераций в {len(sizes)} блоках, потоков: {self.workers}"
        )
        results: List[Optional[Tuple[np.ndarray, np.ndarray]]] = [None] * len(sizes)
        done = 0
        if self.workers <= 1:
            for index, size in enumerate(sizes):
                results[index] = self._run_block(index, size, children[index], deadline, cancel_event)
                done += 1
                if progress_callback:
                    progress_callback(done / len(sizes))
        else:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                futures = {
                    executor.submit(self._run_block, index, size, children[index], deadline, cancel_event): index
                    for index, size in enumerate(sizes)
                }
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
                    done += 1
                    if progress_callback:
                        progress_callback(done / len(sizes))

        # Объединение в порядке блоков
        completed = [result for result in results if result is not None]
        timed_out = len(completed) < len(sizes)
        if completed:
            durations = np.concatenate([totals for totals, _ in completed])
            critical_counts = np.sum([counts for _, counts in completed], axis=0)
        else:
            durations = np.zeros(0)
            critical_counts = np.zeros(len(self.task_ids), dtype=int)
        if timed_out:
            self.logger.warning(
                f"Симуляция остановлена досрочно: выполнено {durations.shape[0]} из {self.iterations} итераций"
            )
        entropy = root.entropy if self.seed is None else self.seed
        return SimulationRun(
            durations=durations,
            critical_counts=np.asarray(critical_counts),
            iterations_requested=self.iterations,
            timed_out=timed_out,
            seed=int(entropy) if isinstance(entropy, (int, np.integer)) else None,
        )

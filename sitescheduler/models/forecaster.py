"""
Вероятностный прогноз длительности.

Объединяет оценку PERT, поправки на квалификацию и условия площадки и
симуляцию Монте-Карло в ProbabilisticForecast: процентили, кривую
завершения, критичность задач и факторы риска.
"""
import logging
import math
import threading
from typing import Callable, Dict, List, Optional

import numpy as np

from sitescheduler.data.models import (
    EnvironmentFactors, ExpertiseLevel, ExpertiseProfile, SchedulingConfig
)
from sitescheduler.data.results import (
    CompletionPoint, ConfidenceInterval, ForecastScenario, PertEstimate,
    ProbabilisticForecast, RiskFactor
)
from sitescheduler.models.adjustments import adjust_estimate
from sitescheduler.models.cpm import EPSILON, CPMEngine
from sitescheduler.models.monte_carlo import MonteCarloSimulator, SimulationRun
from sitescheduler.models.pert import PertEstimator

HIGH_RISK_FREQUENCY = 0.7
HIGH_RISK_SCORE = 0.7
HIGH_COMPLEXITY = 0.7
RAIN_RISK_THRESHOLD = 0.6


def order_statistic(sorted_values: np.ndarray, fraction: float) -> float:
    """
    Значение с индексом floor(n * fraction) в отсортированной выборке.

    Args:
        sorted_values: Выборка, отсортированная по возрастанию
        fraction: Квантиль в диапазоне [0, 1]

    Returns:
        Порядковая статистика
    """
    index = min(int(math.floor(len(sorted_values) * fraction)), len(sorted_values) - 1)
    return float(sorted_values[index])


def completion_curve(sorted_values: np.ndarray) -> List[CompletionPoint]:
    """
    Вероятность завершения к каждому целому дню между самым коротким и самым длинным прогоном.

    Args:
        sorted_values: Смоделированные длительности по возрастанию

    Returns:
        Одна точка на каждый целый день
    """
    first = int(math.floor(sorted_values[0]))
    last = int(math.ceil(sorted_values[-1]))
    days = np.arange(first, last + 1)
    counts = np.searchsorted(sorted_values, days + EPSILON, side="right")
    return [
        CompletionPoint(day=int(day), probability=float(count) / len(sorted_values))
        for day, count in zip(days, counts)
    ]


class ProbabilisticForecaster:
    """
    Строит прогнозы длительности методом Монте-Карло для графа задач.
    """

    def __init__(
        self,
        cpm: CPMEngine,
        config: SchedulingConfig,
        expertise: Optional[ExpertiseProfile] = None,
        environment: Optional[EnvironmentFactors] = None,
        estimator: Optional[PertEstimator] = None,
        log_level: int = logging.INFO
    ):
        """
        Args:
            cpm: Движок CPM графа задач
            config: Итерации, зерно, потоки, таймаут и режим оценки
            expertise: Квалификация бригады; без поправки, если не задана
            environment: Условия площадки; без поправки, если не заданы
            estimator: Оценщик PERT; по умолчанию со встроенной исторической таблицей
            log_level: Уровень логирования
        """
        self.logger = logging.getLogger(__name__)
        self.logger.setLevel(log_level)
        self.cpm = cpm
        self.graph = cpm.graph
        self.config = config
        self.expertise = expertise
        self.environment = environment
        self.estimator = estimator or PertEstimator()

    def build_estimates(self) -> Dict[str, PertEstimate]:
        """Скорректированные оценки PERT по идентификатору задачи."""
        estimates = {}
        for task_id, task in self.graph.tasks.items():
            base = self.estimator.estimate(
                task, self.graph.dependency_count(task_id), self.config.estimationMode
            )
            estimates[task_id] = adjust_estimate(base, task.category, self.expertise, self.environment)
        return estimates

    def identify_risk_factors(self, estimates: Dict[str, PertEstimate]) -> List[RiskFactor]:
        """
        Погодные, кадровые риски и риски сложности проекта.

        Args:
            estimates: Оценки со сложностью каждой задачи

        Returns:
            Найденные факторы риска
        """
        risks = []
        if self.environment is not None and self.environment.rainProbability > RAIN_RISK_THRESHOLD:
            risks.append(RiskFactor(
                category="weather",
                description=f"Rain probability {self.environment.rainProbability:.0%}",
                impact=0.3,
                probability=self.environment.rainProbability,
            ))
        if self.expertise is not None and self.expertise.level == ExpertiseLevel.BEGINNER:
            risks.append(RiskFactor(
                category="labor",
                description="Beginner crew",
                impact=0.4,
                probability=0.7,
            ))
        complex_tasks = [
            task_id for task_id, estimate in estimates.items() if estimate.complexity > HIGH_COMPLEXITY
        ]
        if complex_tasks:
            risks.append(RiskFactor(
                category="complexity",
                description=f"{len(complex_tasks)} highly complex tasks",
                impact=0.5,
                probability=0.6,
                affectedTasks=complex_tasks,
            ))
        return risks

    def recommendations(self, risk_score: float, high_risk_tasks: List[str]) -> List[str]:
        found = []
        if risk_score > HIGH_RISK_SCORE:
            found.append("Overall risk is high: add schedule buffer and review contingency plans")
        if high_risk_tasks:
            found.append(
                f"Monitor tasks that are almost always critical: {', '.join(high_risk_tasks)}"
            )
        if any(task.category == "painting" for task in self.graph.tasks.values()):
            found.append("Plan painting for dry days; humidity stretches drying times")
        return found

    def scenarios(self, expected: float, interval: ConfidenceInterval) -> List[ForecastScenario]:
        base_cost = sum(task.cost for task in self.graph.tasks.values())
        return [
            ForecastScenario(name="optimistic", duration=interval.min, cost=base_cost * 0.9,
                             reliability=60, riskLevel="high"),
            ForecastScenario(name="realistic", duration=expected, cost=base_cost,
                             reliability=85, riskLevel="medium"),
            ForecastScenario(name="conservative", duration=interval.max, cost=base_cost * 1.15,
                             reliability=95, riskLevel="low"),
        ]

    def summarize(
        self,
        run: SimulationRun,
        estimates: Dict[str, PertEstimate],
        baseline: float
    ) -> ProbabilisticForecast:
        """
        Сводит результаты симуляции в прогноз.

        Args:
            run: Результаты симуляции
            estimates: Оценки, использованные в симуляции
            baseline: Детерминированная длительность CPM с наиболее вероятными длительностями

        Returns:
            Прогноз
        """
        durations = np.sort(run.durations)
        n = len(durations)
        frequencies = run.critical_counts / n
        criticality = {
            task_id: float(frequencies[i]) for i, task_id in enumerate(self.graph.task_ids)
        }
        high_risk = [
            task_id for task_id, frequency in criticality.items()
            if frequency >= HIGH_RISK_FREQUENCY - EPSILON
        ]
        risks = self.identify_risk_factors(estimates)
        risk_score = float(sum(risk.weight for risk in risks))
        interval = ConfidenceInterval(
            min=order_statistic(durations, 0.05), max=order_statistic(durations, 0.95)
        )
        expected = float(np.mean(durations))
        return ProbabilisticForecast(
            p10=order_statistic(durations, 0.1),
            p50=order_statistic(durations, 0.5),
            p90=order_statistic(durations, 0.9),
            expectedDuration=expected,
            confidence90=interval,
            completionCurve=completion_curve(durations),
            highRiskTasks=high_risk,
            totalRiskScore=risk_score,
            criticalityIndex=criticality,
            riskFactors=risks,
            delayProbability=float(np.mean(durations > baseline + EPSILON)),
            recommendations=self.recommendations(risk_score, high_risk),
            scenarios=self.scenarios(expected, interval),
            iterationsRequested=run.iterations_requested,
            iterationsCompleted=run.iterations_completed,
            timedOut=run.timed_out,
            seed=run.seed,
        )

    def forecast(
        self,
        progress_callback: Optional[Callable[[float], None]] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ProbabilisticForecast:
        """
        Запускает симуляцию и сводит результаты.

        Args:
            progress_callback: Получает долю выполненных итераций
            cancel_event: Досрочно останавливает симуляцию, если установлен

        Returns:
            Прогноз
        """
        estimates = self.build_estimates()
        baseline = self.cpm.run().projectFinish
        simulator = MonteCarloSimulator(
            self.cpm,
            estimates,
            iterations=self.config.iterations,
            seed=self.config.seed,
            workers=self.config.workers,
            timeout=self.config.timeout,
            block_size=self.config.simulationBlockSize,
            log_level=self.logger.level,
        )
        run = simulator.run(progress_callback=progress_callback, cancel_event=cancel_event)
        forecast = self.summarize(run, estimates, baseline)
        self.logger.info(
            f"Прогноз: P10 {forecast.p10:.1f}, P50 {forecast.p50:.1f}, P90 {forecast.p90:.1f} дней "
            f"по {forecast.iterationsCompleted} итерациям"
        )
        return forecast

"""
Движок метода критического пути (CPM).

Прямой и обратный проходы по графу задач с зависимостями finish-to-start,
start-to-start, finish-to-finish и start-to-finish и задержками.
Векторизованный прямой проход по множеству выборок длительностей
используется прогнозом Монте-Карло.
"""
import logging
import math
from typing import Dict, List, Optional, Tuple

import numpy as np

from sitescheduler.data.models import (
    Dependency, DependencyType, EnvironmentFactors, LagKind
)
from sitescheduler.data.results import CPMResult, ScheduleNode, Segment
from sitescheduler.models.task_graph import TaskGraph
from sitescheduler.models.topological import topological_sort

logger = logging.getLogger(__name__)

EPSILON = 1e-9

# Погодозависимые задержки растут в полтора раза во влажные дни
HUMIDITY_LAG_THRESHOLD = 70.0
HUMIDITY_LAG_MULTIPLIER = 1.5


def compute_lag(dependency: Dependency, environment: Optional[EnvironmentFactors] = None) -> float:
    """
    Вычисляет фактическую задержку зависимости.

    Args:
        dependency: Зависимость
        environment: Условия площадки; без них условия не применяются

    Returns:
        Задержка в целых днях (с округлением вверх)
    """
    lag = dependency.lag
    if environment is not None:
        for condition in dependency.conditions:
            if condition.holds(environment):
                lag *= condition.adjustmentFactor
        if (dependency.lagKind == LagKind.WEATHER_DEPENDENT
                and environment.humidity > HUMIDITY_LAG_THRESHOLD):
            lag *= HUMIDITY_LAG_MULTIPLIER
    # round() убирает шум вида 3.0000000000000004 перед ceil
    return float(math.ceil(round(lag, 9)))


def dependency_violation(
    dependency: Dependency,
    lag: float,
    predecessor: ScheduleNode,
    successor: ScheduleNode
) -> float:
    """
    Измеряет, насколько два узла нарушают зависимость.

    Args:
        dependency: Зависимость
        lag: Фактическая задержка зависимости
        predecessor: Узел задачи-предшественника
        successor: Узел задачи-последователя

    Returns:
        Величина нарушения неравенства; 0, если оно выполняется
    """
    if dependency.type == DependencyType.FS:
        gap = predecessor.earlyFinish + lag - successor.earlyStart
    elif dependency.type == DependencyType.SS:
        gap = predecessor.earlyStart + lag - successor.earlyStart
    elif dependency.type == DependencyType.FF:
        gap = successor.earlyFinish - (predecessor.earlyFinish + lag)
    else:
        gap = successor.earlyFinish - (predecessor.earlyStart + lag)
    return gap if gap > EPSILON else 0.0


class CPMEngine:
    """
    Вычисляет ранние и поздние сроки, резервы и критический путь графа задач.
    """

    def __init__(
        self,
        graph: TaskGraph,
        environment: Optional[EnvironmentFactors] = None
    ):
        """
        Подготавливает движок.

        Args:
            graph: Планируемый граф задач
            environment: Условия площадки для условий задержек

        Raises:
            CycleDetected: Если граф содержит цикл и циклы не допускаются
        """
        self.graph = graph
        self.environment = environment
        self.order, self.fallback_used = topological_sort(
            graph.task_ids, graph.dependencies, allow_fallback=graph.allow_cycles
        )
        self.lags: Dict[str, float] = {
            dependency.id: compute_lag(dependency, environment)
            for dependency in graph.dependencies
        }
        self.index: Dict[str, int] = {task_id: i for i, task_id in enumerate(graph.task_ids)}

    def planned_durations(self) -> Dict[str, float]:
        """Наиболее вероятная длительность каждой задачи."""
        return {task_id: task.duration.mostLikely for task_id, task in self.graph.tasks.items()}

    def earliest_start(self, task_id: str, nodes: Dict[str, ScheduleNode]) -> float:
        """
        Нижняя граница начала задачи по уже размещенным предшественникам.

        Args:
            task_id: Размещаемая задача
            nodes: Уже размещенные узлы

        Returns:
            Самое раннее начало по зависимостям FS и SS, не меньше 0
        """
        start = 0.0
        for dependency in self.graph.predecessors(task_id):
            predecessor = nodes.get(dependency.sourceTaskId)
            if predecessor is None:
                continue
            lag = self.lags[dependency.id]
            if dependency.type == DependencyType.FS:
                start = max(start, predecessor.earlyFinish + lag)
            elif dependency.type == DependencyType.SS:
                start = max(start, predecessor.earlyStart + lag)
        return start

    def latest_start_bound(self, task_id: str, nodes: Dict[str, ScheduleNode], duration: float) -> float:
        """
        Верхняя граница начала задачи по зависимостям FF и SF.

        Args:
            task_id: Размещаемая задача
            nodes: Уже размещенные узлы
            duration: Длительность задачи

        Returns:
            Самое позднее начало по FF/SF (inf, если ограничения нет)
        """
        bound = math.inf
        for dependency in self.graph.predecessors(task_id):
            predecessor = nodes.get(dependency.sourceTaskId)
            if predecessor is None:
                continue
            lag = self.lags[dependency.id]
            if dependency.type == DependencyType.FF:
                bound = min(bound, predecessor.earlyFinish + lag - duration)
            elif dependency.type == DependencyType.SF:
                bound = min(bound, predecessor.earlyStart + lag - duration)
        return bound

    def forward_pass(
        self,
        durations: Optional[Dict[str, float]] = None,
        start_floors: Optional[Dict[str, float]] = None
    ) -> Dict[str, ScheduleNode]:
        """
        Вычисляет раннее начало и окончание каждой задачи.

        Args:
            durations: Длительности задач, по умолчанию наиболее вероятные
            start_floors: Самое раннее допустимое начало для задач

        Returns:
            Узлы с ранними сроками по идентификатору задачи
        """
        durations = durations or self.planned_durations()
        start_floors = start_floors or {}
        nodes: Dict[str, ScheduleNode] = {}
        for task_id in self.order:
            duration = durations[task_id]
            start = max(self.earliest_start(task_id, nodes), start_floors.get(task_id, 0.0))
            upper = self.latest_start_bound(task_id, nodes, duration)
            if start > upper + EPSILON:
                logger.debug(
                    f"Задача {task_id}: нижняя граница {start} больше границы FF/SF {upper}"
                )
            nodes[task_id] = ScheduleNode(
                taskId=task_id,
                duration=duration,
                earlyStart=start,
                earlyFinish=start + duration,
                segments=[Segment(start=start, finish=start + duration)],
            )
        return nodes

    def backward_pass(
        self,
        nodes: Dict[str, ScheduleNode],
        target_duration: Optional[float] = None,
        order: Optional[List[str]] = None
    ) -> float:
        """
        Вычисляет поздние сроки, резервы и признаки критичности на месте.

        Args:
            nodes: Узлы с рассчитанными ранними сроками
            target_duration: Директивный срок в рабочих днях; ограничивает окончание проекта
            order: Топологический порядок для обратного прохода, по умолчанию порядок движка

        Returns:
            Окончание проекта, использованное в проходе
        """
        order = order or self.order
        natural_finish = max((node.earlyFinish for node in nodes.values()), default=0.0)
        project_finish = natural_finish
        if target_duration is not None and target_duration < natural_finish:
            project_finish = target_duration

        for task_id in reversed(order):
            node = nodes[task_id]
            late_finish = project_finish
            for dependency in self.graph.successors(task_id):
                successor = nodes.get(dependency.targetTaskId)
                if successor is None:
                    continue
                lag = self.lags[dependency.id]
                if dependency.type == DependencyType.FS:
                    late_finish = min(late_finish, successor.lateStart - lag)
                elif dependency.type == DependencyType.SS:
                    late_finish = min(late_finish, successor.lateStart - lag + node.duration)
            node.lateFinish = late_finish
            node.lateStart = late_finish - node.duration
            node.slack = round(node.lateStart - node.earlyStart, 9)
            node.isCritical = node.slack <= 0
        return project_finish

    def critical_path(self, nodes: Dict[str, ScheduleNode]) -> List[str]:
        """
        Критические задачи по раннему началу; вехи включаются всегда.

        Args:
            nodes: Узлы после обратного прохода

        Returns:
            Идентификаторы задач критического пути
        """
        selected = [
            task_id for task_id in self.graph.task_ids
            if task_id in nodes
            and (nodes[task_id].isCritical or self.graph.tasks[task_id].isMilestone)
        ]
        return sorted(selected, key=lambda task_id: (nodes[task_id].earlyStart, self.index[task_id]))

    def run(
        self,
        durations: Optional[Dict[str, float]] = None,
        target_duration: Optional[float] = None
    ) -> CPMResult:
        """
        Выполняет прямой и обратный проходы.

        Args:
            durations: Длительности задач, по умолчанию наиболее вероятные
            target_duration: Директивный срок в рабочих днях

        Returns:
            Узлы, порядок, окончание проекта и критический путь
        """
        nodes = self.forward_pass(durations)
        project_finish = self.backward_pass(nodes, target_duration)
        natural_finish = max((node.earlyFinish for node in nodes.values()), default=0.0)
        logger.debug(f"CPM завершен: естественное окончание {natural_finish}, окончание проекта {project_finish}")
        return CPMResult(
            nodes=nodes,
            order=list(self.order),
            projectFinish=natural_finish,
            criticalPath=self.critical_path(nodes),
            fallbackUsed=self.fallback_used,
        )

    def batch_forward_pass(self, durations: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Прямой проход сразу по множеству выборок длительностей.

        Args:
            durations: Массив формы (samples, tasks), столбцы в порядке задач графа

        Returns:
            Длительность проекта для каждой выборки и булев массив (samples, tasks)
            с задачами критического пути каждой выборки
        """
        samples, task_count = durations.shape
        early_start = np.zeros((samples, task_count))
        early_finish = np.zeros((samples, task_count))
        processed = np.zeros(task_count, dtype=bool)

        for task_id in self.order:
            i = self.index[task_id]
            start = np.zeros(samples)
            for dependency in self.graph.predecessors(task_id):
                j = self.index[dependency.sourceTaskId]
                if not processed[j]:
                    continue
                lag = self.lags[dependency.id]
                if dependency.type == DependencyType.FS:
                    np.maximum(start, early_finish[:, j] + lag, out=start)
                elif dependency.type == DependencyType.SS:
                    np.maximum(start, early_start[:, j] + lag, out=start)
            early_start[:, i] = start
            early_finish[:, i] = start + durations[:, i]
            processed[i] = True

        if task_count == 0:
            return np.zeros(samples), np.zeros((samples, 0), dtype=bool)

        totals = early_finish.max(axis=1)
        critical = np.abs(early_finish - totals[:, None]) <= EPSILON
        # Обратный обход по определяющим связям от задач, завершающих проект
        for task_id in reversed(self.order):
            i = self.index[task_id]
            active = critical[:, i]
            if not active.any():
                continue
            for dependency in self.graph.predecessors(task_id):
                j = self.index[dependency.sourceTaskId]
                lag = self.lags[dependency.id]
                if dependency.type == DependencyType.FS:
                    contribution = early_finish[:, j] + lag
                elif dependency.type == DependencyType.SS:
                    contribution = early_start[:, j] + lag
                else:
                    continue
                critical[:, j] |= active & (np.abs(contribution - early_start[:, i]) <= EPSILON)
        return totals, critical

"""
Поиск конфликтов в размещенном расписании.

Проверяются четыре семейства конфликтов: несовместимые работы в одном
помещении, перегрузка ресурсов, нарушения регламентов и нарушенные
зависимости. Каждый конфликт содержит варианты разрешения для резолвера.
"""
import logging
from itertools import combinations
from typing import Dict, List, Optional

from sitescheduler.data.models import (
    EnvironmentFactors, RegulationKind, RegulatoryConstraint, ResourceRequirement,
    SchedulingConfig, Task
)
from sitescheduler.data.results import (
    AdjustmentType, Booking, Conflict, ConflictType, Resolution, ResolutionImpact,
    ResolutionType, ScheduleAdjustment, ScheduleDirectives, ScheduleNode,
    ScheduleState, Severity
)
from sitescheduler.models.cpm import EPSILON, CPMEngine, dependency_violation
from sitescheduler.models.resource_scheduler import (
    next_allowed_start, occupied_days, regulations_for, usage_at
)
from sitescheduler.models.task_graph import TaskGraph
from sitescheduler.utils.calendar_utils import WorkCalendar

logger = logging.getLogger(__name__)

# Таблица несовместимости работ в одном помещении
NOISE_LEVELS = {
    "demolition": "high",
    "drilling": "high",
    "hammering": "high",
    "carpentry": "medium",
    "electrical": "medium",
}
DUST_LEVELS = {
    "demolition": "high",
    "sanding": "high",
    "cutting": "high",
    "drilling": "medium",
    "flooring": "medium",
}
PRECISION_WORK = {"painting", "wallpaper", "electrical_finish"}
FINISHING_WORK = {"painting", "wallpaper", "flooring", "cleanup"}

# Категории, для которых есть более тихий способ выполнения
ALTERNATIVE_METHOD_CATEGORIES = {"demolition", "drilling", "cutting"}
METHOD_CHANGE_DURATION = 2.0
METHOD_CHANGE_COST = 3_000_000.0
METHOD_CHANGE_QUALITY = 0.1

SPACE_PARTITION_COST = 5_000_000.0
SPACE_PARTITION_QUALITY = -0.1
RESOURCE_ADD_QUALITY = 0.1
SPLIT_QUALITY = -0.05


def noise_level(task: Task, directives: ScheduleDirectives) -> str:
    if task.id in directives.methodChanged:
        return "low"
    return NOISE_LEVELS.get(task.category, "low")


def dust_level(task: Task) -> str:
    return DUST_LEVELS.get(task.category, "low")


def incompatible(first: Task, second: Task, directives: ScheduleDirectives) -> bool:
    """
    Проверяет таблицу несовместимости в обоих направлениях.

    Args:
        first: Задача
        second: Другая задача в том же помещении
        directives: Текущие директивы (смена метода снижает шум)

    Returns:
        True, если задачи не должны пересекаться
    """
    for loud, quiet in ((first, second), (second, first)):
        if noise_level(loud, directives) == "high" and quiet.category in PRECISION_WORK:
            return True
        if dust_level(loud) == "high" and quiet.category in FINISHING_WORK:
            return True
    return False


def overlap(first: ScheduleNode, second: ScheduleNode) -> float:
    """Суммарное время пересечения рабочих отрезков двух узлов."""
    total = 0.0
    for a in first.spans():
        for b in second.spans():
            total += max(0.0, min(a.finish, b.finish) - max(a.start, b.start))
    return total


class ConflictDetector:
    """
    Находит конфликты в размещенном расписании.
    """

    def __init__(
        self,
        graph: TaskGraph,
        cpm: CPMEngine,
        calendar: WorkCalendar,
        config: SchedulingConfig,
        regulations: Optional[List[RegulatoryConstraint]] = None,
        environment: Optional[EnvironmentFactors] = None,
        requirements: Optional[Dict[str, List[ResourceRequirement]]] = None,
        daily_costs: Optional[Dict[str, float]] = None
    ):
        self.graph = graph
        self.cpm = cpm
        self.calendar = calendar
        self.config = config
        self.regulations = regulations or []
        self.environment = environment
        self.requirements = requirements or {}
        self.daily_costs = daily_costs or {}

    def detect(self, state: ScheduleState, directives: Optional[ScheduleDirectives] = None) -> List[Conflict]:
        """
        Выполняет все проверки.

        Args:
            state: Размещенное расписание
            directives: Директивы, с которыми построено расписание

        Returns:
            Конфликты, начиная с самых серьезных
        """
        directives = directives or ScheduleDirectives()
        conflicts = (
            self.detect_space_conflicts(state, directives)
            + self.detect_resource_conflicts(state)
            + self.detect_regulatory_conflicts(state, directives)
            + self.detect_dependency_conflicts(state)
        )
        rank = {Severity.CRITICAL: 0, Severity.HIGH: 1, Severity.MEDIUM: 2, Severity.LOW: 3}
        conflicts.sort(key=lambda conflict: rank[conflict.severity])
        if conflicts:
            logger.debug(f"Найдено конфликтов: {len(conflicts)}")
        return conflicts

    def detect_space_conflicts(self, state: ScheduleState, directives: ScheduleDirectives) -> List[Conflict]:
        by_space: Dict[str, List[str]] = {}
        for task_id, task in self.graph.tasks.items():
            if task.space is not None and task_id in state.nodes:
                by_space.setdefault(task.space, []).append(task_id)

        conflicts = []
        for space, task_ids in by_space.items():
            for first_id, second_id in combinations(task_ids, 2):
                if directives.is_partitioned(first_id, second_id):
                    continue
                first, second = self.graph.tasks[first_id], self.graph.tasks[second_id]
                if not incompatible(first, second, directives):
                    continue
                shared = overlap(state.nodes[first_id], state.nodes[second_id])
                if shared <= EPSILON:
                    continue
                earlier, later = sorted(
                    (first_id, second_id), key=lambda task_id: state.nodes[task_id].earlyStart
                )
                conflict_id = f"space:{space}:{first_id}:{second_id}"
                conflicts.append(Conflict(
                    id=conflict_id,
                    type=ConflictType.SPACE,
                    severity=Severity.HIGH,
                    description=(
                        f"{first.category} ({first_id}) and {second.category} ({second_id}) "
                        f"overlap in space {space}"
                    ),
                    affectedTasks=[first_id, second_id],
                    time=max(state.nodes[first_id].earlyStart, state.nodes[second_id].earlyStart),
                    resolutions=[
                        Resolution(
                            id=f"{conflict_id}/sequence",
                            conflictId=conflict_id,
                            type=ResolutionType.SEQUENCE_CHANGE,
                            description=f"Start {later} after {earlier} finishes",
                            impact=ResolutionImpact(durationChange=shared),
                            adjustments=[ScheduleAdjustment(
                                taskId=later,
                                adjustmentType=AdjustmentType.MOVE,
                                newStart=state.nodes[earlier].earlyFinish,
                            )],
                        ),
                        Resolution(
                            id=f"{conflict_id}/partition",
                            conflictId=conflict_id,
                            type=ResolutionType.PARALLEL,
                            description=f"Partition space {space} and work in parallel",
                            impact=ResolutionImpact(
                                costChange=SPACE_PARTITION_COST,
                                qualityImpact=SPACE_PARTITION_QUALITY,
                            ),
                            partitionedTasks=[first_id, second_id],
                        ),
                    ],
                ))
        return conflicts

    def detect_resource_conflicts(self, state: ScheduleState) -> List[Conflict]:
        """
        Проход по событиям для каждого типа ресурса.

        События упорядочены по времени, освобождение раньше захвата; непрерывный
        интервал перегрузки считается одним конфликтом.
        """
        conflicts = []
        for resource_type, bookings in state.bookings.items():
            capacity = state.capacities.get(resource_type, 0)
            events = []
            for booking in bookings:
                events.append((booking.start, 1, booking))
                events.append((booking.finish, 0, booking))
            events.sort(key=lambda event: (event[0], event[1]))

            active: List[Booking] = []
            span_start: Optional[float] = None
            span_tasks: List[str] = []
            index = 0
            while index < len(events):
                instant = events[index][0]
                while index < len(events) and abs(events[index][0] - instant) <= EPSILON:
                    _, kind, booking = events[index]
                    if kind == 0:
                        active.remove(booking)
                    else:
                        active.append(booking)
                    index += 1
                usage = usage_at(active, instant)
                if usage > capacity:
                    if span_start is None:
                        span_start = instant
                        span_tasks = []
                    for booking in active:
                        if booking.taskId not in span_tasks:
                            span_tasks.append(booking.taskId)
                elif span_start is not None:
                    conflicts.append(self._resource_conflict(
                        resource_type, capacity, span_start, instant, span_tasks, state
                    ))
                    span_start = None
        return conflicts

    def _resource_conflict(
        self,
        resource_type: str,
        capacity: int,
        start: float,
        finish: float,
        task_ids: List[str],
        state: ScheduleState
    ) -> Conflict:
        conflict_id = f"resource:{resource_type}:{start:g}"

        def yield_order(task_id: str):
            requirement_priority = max(
                (requirement.priority for requirement in self.requirements.get(task_id, [])
                 if requirement.resourceType == resource_type),
                default=0,
            )
            return (requirement_priority, self.graph.tasks[task_id].priority, -state.nodes[task_id].earlyStart)

        delayed = min(task_ids, key=yield_order)
        shift = max(0.0, finish - state.nodes[delayed].earlyStart)
        daily_cost = self.daily_costs.get(resource_type, 0.0)
        return Conflict(
            id=conflict_id,
            type=ConflictType.RESOURCE,
            severity=Severity.CRITICAL,
            description=(
                f"{resource_type} over capacity {capacity} between day {start:g} and {finish:g}"
            ),
            affectedTasks=task_ids,
            time=start,
            resolutions=[
                Resolution(
                    id=f"{conflict_id}/add",
                    conflictId=conflict_id,
                    type=ResolutionType.RESOURCE_ADD,
                    description=f"Hire one more {resource_type}",
                    impact=ResolutionImpact(
                        costChange=daily_cost * (finish - start),
                        qualityImpact=RESOURCE_ADD_QUALITY,
                    ),
                    capacityChanges={resource_type: 1},
                ),
                Resolution(
                    id=f"{conflict_id}/delay",
                    conflictId=conflict_id,
                    type=ResolutionType.DELAY,
                    description=f"Delay {delayed} until day {finish:g}",
                    impact=ResolutionImpact(durationChange=shift),
                    adjustments=[ScheduleAdjustment(
                        taskId=delayed,
                        adjustmentType=AdjustmentType.MOVE,
                        newStart=finish,
                    )],
                ),
            ],
        )

    def detect_regulatory_conflicts(self, state: ScheduleState, directives: ScheduleDirectives) -> List[Conflict]:
        conflicts = []
        for task_id, task in self.graph.tasks.items():
            node = state.nodes.get(task_id)
            if node is None:
                continue
            for regulation in regulations_for(task, self.regulations, directives):
                conflicts.extend(self._window_conflicts(task, node, regulation, directives))
                conflicts.extend(self._sequence_conflicts(task, node, regulation, state))
        conflicts.extend(self._weather_conflicts())
        return conflicts

    def _method_change(self, task: Task, regulation: RegulatoryConstraint, conflict_id: str) -> List[Resolution]:
        if regulation.kind != RegulationKind.NOISE or task.category not in ALTERNATIVE_METHOD_CATEGORIES:
            return []
        duration = task.duration.mostLikely + METHOD_CHANGE_DURATION
        return [Resolution(
            id=f"{conflict_id}/method",
            conflictId=conflict_id,
            type=ResolutionType.METHOD_CHANGE,
            description=f"Use a low-noise method for {task.id}",
            impact=ResolutionImpact(
                durationChange=METHOD_CHANGE_DURATION,
                costChange=METHOD_CHANGE_COST,
                qualityImpact=METHOD_CHANGE_QUALITY,
            ),
            adjustments=[ScheduleAdjustment(
                taskId=task.id,
                adjustmentType=AdjustmentType.EXTEND,
                newDuration=duration,
            )],
            methodChangeTasks=[task.id],
        )]

    def _window_conflicts(
        self,
        task: Task,
        node: ScheduleNode,
        regulation: RegulatoryConstraint,
        directives: ScheduleDirectives
    ) -> List[Conflict]:
        restriction = regulation.timeRestriction
        if restriction is None:
            return []
        conflicts = []

        allowed = set(restriction.allowedDays)
        blocked = [
            day for segment in node.spans()
            for day in occupied_days(segment.start, segment.finish)
            if self.calendar.weekday(day) not in allowed
        ]
        if blocked:
            conflict_id = f"regulatory:{regulation.id}:{task.id}:days"
            resolutions = []
            if len(node.spans()) == 1:
                new_start = next_allowed_start(
                    self.calendar, node.earlyStart, node.duration, allowed, self.config.maxPlacementSteps
                )
                if new_start is not None:
                    resolutions.append(Resolution(
                        id=f"{conflict_id}/move",
                        conflictId=conflict_id,
                        type=ResolutionType.SEQUENCE_CHANGE,
                        description=f"Move {task.id} to the next allowed window",
                        impact=ResolutionImpact(durationChange=new_start - node.earlyStart),
                        adjustments=[ScheduleAdjustment(
                            taskId=task.id, adjustmentType=AdjustmentType.MOVE, newStart=new_start
                        )],
                    ))
            if node.duration > self.config.splitChunkDays and task.id not in directives.splitChunks:
                resolutions.append(Resolution(
                    id=f"{conflict_id}/split",
                    conflictId=conflict_id,
                    type=ResolutionType.SEQUENCE_CHANGE,
                    description=f"Split {task.id} around disallowed days",
                    impact=ResolutionImpact(
                        durationChange=float(len(blocked)), qualityImpact=SPLIT_QUALITY
                    ),
                    adjustments=[ScheduleAdjustment(
                        taskId=task.id,
                        adjustmentType=AdjustmentType.SPLIT,
                        chunkSize=self.config.splitChunkDays,
                    )],
                ))
            resolutions.extend(self._method_change(task, regulation, conflict_id))
            conflicts.append(Conflict(
                id=conflict_id,
                type=ConflictType.REGULATORY,
                severity=Severity.CRITICAL,
                description=f"{task.id} works on days disallowed by {regulation.id}",
                affectedTasks=[task.id],
                resolutions=resolutions,
                time=float(blocked[0]),
            ))

        if restriction.allowedHours is not None:
            hours = node.workHours or self.config.dailyHours
            if not restriction.allowedHours.contains(hours):
                conflict_id = f"regulatory:{regulation.id}:{task.id}:hours"
                conflicts.append(Conflict(
                    id=conflict_id,
                    type=ConflictType.REGULATORY,
                    severity=Severity.CRITICAL,
                    description=(
                        f"{task.id} works {hours.start:g}-{hours.end:g}h outside "
                        f"{restriction.allowedHours.start:g}-{restriction.allowedHours.end:g}h"
                    ),
                    affectedTasks=[task.id],
                    resolutions=self._method_change(task, regulation, conflict_id),
                    time=node.earlyStart,
                ))
        return conflicts

    def _sequence_conflicts(
        self,
        task: Task,
        node: ScheduleNode,
        regulation: RegulatoryConstraint,
        state: ScheduleState
    ) -> List[Conflict]:
        conflicts = []
        for rule in regulation.sequenceRules:
            for other_id, other in self.graph.tasks.items():
                if other_id == task.id or other_id not in state.nodes:
                    continue
                other_node = state.nodes[other_id]
                checks = []
                if other_id in rule.mustFollow or other.category in rule.mustFollow:
                    checks.append((other_id, other_node, task.id, node))
                if other_id in rule.mustPrecede or other.category in rule.mustPrecede:
                    checks.append((task.id, node, other_id, other_node))
                for first_id, first, then_id, then in checks:
                    required = first.earlyFinish + rule.minimumGap
                    if then.earlyStart + EPSILON >= required:
                        continue
                    conflict_id = f"regulatory:{regulation.id}:{first_id}->{then_id}"
                    conflicts.append(Conflict(
                        id=conflict_id,
                        type=ConflictType.REGULATORY,
                        severity=Severity.CRITICAL,
                        description=(
                            f"{then_id} must start {rule.minimumGap:g} days after {first_id} finishes"
                        ),
                        affectedTasks=[first_id, then_id],
                        time=then.earlyStart,
                        resolutions=[Resolution(
                            id=f"{conflict_id}/move",
                            conflictId=conflict_id,
                            type=ResolutionType.SEQUENCE_CHANGE,
                            description=f"Move {then_id} after {first_id}",
                            impact=ResolutionImpact(durationChange=required - then.earlyStart),
                            adjustments=[ScheduleAdjustment(
                                taskId=then_id, adjustmentType=AdjustmentType.MOVE, newStart=required
                            )],
                        )],
                    ))
        return conflicts

    def _weather_conflicts(self) -> List[Conflict]:
        if self.environment is None:
            return []
        conflicts = []
        for regulation in self.regulations:
            if regulation.weatherRestriction is None:
                continue
            problems = regulation.weatherRestriction.violations(self.environment)
            affected = [
                task_id for task_id, task in self.graph.tasks.items() if regulation.applies_to(task)
            ]
            if problems and affected:
                conflicts.append(Conflict(
                    id=f"regulatory:{regulation.id}:weather",
                    type=ConflictType.REGULATORY,
                    severity=Severity.MEDIUM,
                    description=f"Weather restriction {regulation.id}: {', '.join(problems)}",
                    affectedTasks=affected,
                ))
        return conflicts

    def detect_dependency_conflicts(self, state: ScheduleState) -> List[Conflict]:
        """Повторно проверяет неравенство каждой зависимости в размещенном расписании."""
        conflicts = []
        for dependency in self.graph.dependencies:
            predecessor = state.nodes.get(dependency.sourceTaskId)
            successor = state.nodes.get(dependency.targetTaskId)
            if predecessor is None or successor is None:
                continue
            lag = self.cpm.lags[dependency.id]
            violation = dependency_violation(dependency, lag, predecessor, successor)
            if violation <= 0:
                continue
            conflict_id = f"dependency:{dependency.id}"
            if dependency.type.value in ("FS", "SS"):
                moved_id, moved = dependency.targetTaskId, successor
            else:
                moved_id, moved = dependency.sourceTaskId, predecessor
            conflicts.append(Conflict(
                id=conflict_id,
                type=ConflictType.DEPENDENCY,
                severity=Severity.HIGH,
                description=(
                    f"{dependency.type.value} dependency {dependency.sourceTaskId} -> "
                    f"{dependency.targetTaskId} (lag {lag:g}) broken by {violation:g} days"
                ),
                affectedTasks=[dependency.sourceTaskId, dependency.targetTaskId],
                time=successor.earlyStart,
                resolutions=[Resolution(
                    id=f"{conflict_id}/delay",
                    conflictId=conflict_id,
                    type=ResolutionType.DELAY,
                    description=f"Delay {moved_id} by {violation:g} days",
                    impact=ResolutionImpact(durationChange=violation),
                    adjustments=[ScheduleAdjustment(
                        taskId=moved_id,
                        adjustmentType=AdjustmentType.MOVE,
                        newStart=moved.earlyStart + violation,
                    )],
                )],
            ))
        return conflicts

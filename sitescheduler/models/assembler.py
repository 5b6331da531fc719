"""
Сборка итогового расписания.

Переводит расписание в рабочих днях в календарные даты и собирает
предупреждения для пользователя.
"""
import logging
import math
from datetime import date
from typing import Dict, List, Optional

from sitescheduler.data.models import ResourceRequirement, SchedulingConfig
from sitescheduler.data.results import (
    AssignedResource, DateRange, ScheduledTask, ScheduleResult
)
from sitescheduler.models.conflict_resolver import ResolutionOutcome
from sitescheduler.models.cpm import EPSILON
from sitescheduler.models.task_graph import TaskGraph
from sitescheduler.utils.calendar_utils import WorkCalendar

logger = logging.getLogger(__name__)


class ScheduleAssembler:
    """
    Переводит смещения в даты и формирует предупреждения.
    """

    def __init__(
        self,
        graph: TaskGraph,
        calendar: WorkCalendar,
        config: SchedulingConfig,
        requirements: Optional[Dict[str, List[ResourceRequirement]]] = None
    ):
        self.graph = graph
        self.calendar = calendar
        self.config = config
        self.requirements = requirements or {}

    @staticmethod
    def start_offset(offset: float) -> int:
        """Рабочий день, в который начинается работа со смещением offset."""
        return max(0, math.floor(offset + EPSILON))

    def end_offset(self, start: float, finish: float) -> int:
        # Последний затронутый день [start, finish); для работ нулевой длины день начала
        if finish - start <= EPSILON:
            return self.start_offset(start)
        return max(0, math.ceil(finish - EPSILON) - 1)

    def start_date(self, offset: float) -> date:
        return self.calendar.date_for_offset(self.start_offset(offset))

    def end_date(self, start: float, finish: float) -> date:
        return self.calendar.date_for_offset(self.end_offset(start, finish))

    def assemble(self, outcome: ResolutionOutcome, project_id: str = "project") -> ScheduleResult:
        """
        Собирает итоговое расписание.

        Args:
            outcome: Результат разрешения конфликтов
            project_id: Идентификатор проекта

        Returns:
            Расписание с датами, конфликтами и предупреждениями
        """
        state = outcome.state
        tasks = []
        for task_id in state.order:
            task = self.graph.tasks[task_id]
            node = state.nodes[task_id]
            tasks.append(ScheduledTask(
                id=task_id,
                name=task.name or task_id,
                category=task.category,
                space=task.space,
                earlyStart=node.earlyStart,
                earlyFinish=node.earlyFinish,
                lateStart=node.lateStart,
                lateFinish=node.lateFinish,
                duration=node.duration,
                slack=node.slack,
                isCritical=node.isCritical,
                isMilestone=task.isMilestone,
                startDate=self.start_date(node.earlyStart),
                endDate=self.end_date(node.earlyStart, node.earlyFinish),
                segments=[
                    DateRange(
                        startDate=self.start_date(segment.start),
                        endDate=self.end_date(segment.start, segment.finish),
                    )
                    for segment in node.spans()
                ],
                assignedResources=[
                    AssignedResource(resourceType=requirement.resourceType, quantity=requirement.quantity)
                    for requirement in self.requirements.get(task_id, [])
                ],
                cost=task.cost,
            ))

        finish = state.projectFinish
        last_offset = self.end_offset(0.0, finish)
        task_cost = sum(task.cost for task in self.graph.tasks.values())
        total_cost = task_cost + outcome.extraCost

        result = ScheduleResult(
            projectId=project_id,
            startDate=self.calendar.start_date,
            endDate=self.calendar.date_for_offset(last_offset),
            tasks=tasks,
            criticalPath=state.criticalPath,
            totalWorkingDays=finish,
            totalCalendarDays=self.calendar.calendar_days(0, last_offset),
            totalCost=total_cost,
            resolutionCost=outcome.extraCost,
            qualityImpact=outcome.qualityImpact,
            conflicts=outcome.conflicts,
            appliedResolutions=outcome.appliedResolutions,
            alternativeUsed=outcome.alternativeUsed,
            unresolved=outcome.unresolved,
        )
        result.warnings = self.build_warnings(result, outcome)
        for warning in result.warnings:
            logger.warning(warning)
        return result

    def build_warnings(self, result: ScheduleResult, outcome: ResolutionOutcome) -> List[str]:
        """
        Предупреждения о сроке, бюджете, устойчивости и целостности данных.

        Args:
            result: Собранное расписание
            outcome: Результат разрешения, из которого получено расписание

        Returns:
            Тексты предупреждений
        """
        warnings = []
        target = self.config.targetDuration
        if target is not None and result.totalWorkingDays > target * (1 + self.config.tolerance) + EPSILON:
            warnings.append(
                f"Duration {result.totalWorkingDays:g} working days exceeds target {target:g} "
                f"by more than {self.config.tolerance:.0%}"
            )
        budget = self.config.budget
        if budget is not None and result.totalCost > budget + EPSILON:
            warnings.append(f"Total cost {result.totalCost:,.0f} exceeds budget {budget:,.0f}")
        if result.tasks:
            critical = sum(1 for task in result.tasks if task.isCritical)
            ratio = critical / len(result.tasks)
            if ratio > self.config.criticalRatioThreshold + EPSILON:
                warnings.append(
                    f"{ratio:.0%} of tasks are critical; the schedule has little room for delays"
                )
        if outcome.state.fallbackUsed:
            warnings.append(
                "Dependencies contain a cycle; cyclic tasks were ordered by input position"
            )
        if outcome.state.exhaustedPlacements:
            warnings.append(
                f"Placement search gave up for tasks: {', '.join(outcome.state.exhaustedPlacements)}"
            )
        if outcome.unresolved is not None:
            warnings.append(
                f"Best-effort schedule: {len(outcome.unresolved.remainingConflicts)} conflicts "
                f"unresolved ({outcome.unresolved.reason})"
            )
        return warnings

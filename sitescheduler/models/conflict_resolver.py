"""
Разрешение конфликтов.

Блокирующие конфликты устраняются применением варианта с лучшей оценкой к
директивам планирования и повторным расчетом расписания. Если раунды
закончились, а конфликты остались, строятся три альтернативных расписания
и выбирается лучшее. Все циклы ограничены, поэтому резолвер всегда завершается.
"""
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from sitescheduler.data.models import SchedulingConfig
from sitescheduler.data.results import (
    AdjustmentType, Conflict, Resolution, ScheduleDirectives, ScheduleState,
    UnresolvedConflict
)
from sitescheduler.models.conflict_detector import ConflictDetector, SPLIT_QUALITY
from sitescheduler.models.cpm import EPSILON
from sitescheduler.models.resource_scheduler import ResourceConstrainedScheduler

ALTERNATIVE_HEURISTICS = ("parallel-maximization", "resource-augmentation", "task-splitting")


class Alternative(BaseModel):
    """Альтернативное расписание, построенное именованной эвристикой."""
    name: str
    directives: ScheduleDirectives
    state: ScheduleState
    conflicts: List[Conflict]
    extraCost: float = 0.0
    qualityImpact: float = 0.0
    score: float = 0.0


class ResolutionOutcome(BaseModel):
    """Итоговое расписание процесса разрешения."""
    state: ScheduleState
    directives: ScheduleDirectives
    conflicts: List[Conflict]
    appliedResolutions: List[Resolution] = []
    baselineFinish: float = 0.0
    extraCost: float = 0.0
    qualityImpact: float = 0.0
    rounds: int = 0
    attempts: int = 0
    alternativeUsed: Optional[str] = None
    unresolved: Optional[UnresolvedConflict] = None


def apply_resolution(directives: ScheduleDirectives, resolution: Resolution) -> bool:
    """
    Записывает вариант разрешения в директивы.

    Args:
        directives: Директивы, изменяемые на месте
        resolution: Применяемый вариант разрешения

    Returns:
        True, если директивы изменились
    """
    before = directives.model_dump()
    for adjustment in resolution.adjustments:
        task_id = adjustment.taskId
        if adjustment.adjustmentType == AdjustmentType.MOVE and adjustment.newStart is not None:
            current = directives.startFloors.get(task_id, 0.0)
            directives.startFloors[task_id] = max(current, adjustment.newStart)
        elif adjustment.adjustmentType == AdjustmentType.EXTEND and adjustment.newDuration is not None:
            directives.durationOverrides[task_id] = adjustment.newDuration
        elif adjustment.adjustmentType == AdjustmentType.SPLIT and adjustment.chunkSize:
            directives.splitChunks[task_id] = adjustment.chunkSize
        elif adjustment.adjustmentType == AdjustmentType.MERGE:
            directives.splitChunks.pop(task_id, None)
    for resource_type, extra in resolution.capacityChanges.items():
        directives.extraCapacity[resource_type] = directives.extraCapacity.get(resource_type, 0) + extra
    for task_id in resolution.methodChangeTasks:
        if task_id not in directives.methodChanged:
            directives.methodChanged.append(task_id)
    if len(resolution.partitionedTasks) == 2:
        first, second = resolution.partitionedTasks
        if not directives.is_partitioned(first, second):
            directives.partitions.append((first, second))
    return directives.model_dump() != before


class ConflictResolver:
    """
    Применяет варианты разрешения, пока остаются блокирующие конфликты и не исчерпаны ограничения.
    """

    def __init__(
        self,
        scheduler: ResourceConstrainedScheduler,
        detector: ConflictDetector,
        config: SchedulingConfig,
        daily_costs: Optional[Dict[str, float]] = None,
        clock: Callable[[], float] = time.monotonic,
        log_level: int = logging.INFO
    ):
        """
        Args:
            scheduler: Планировщик для пересчета расписания
            detector: Детектор, запускаемый после каждого пересчета
            config: Настройки планирования (раунды, лимит времени, веса)
            daily_costs: Дневная стоимость типа ресурса для наращивания
            clock: Источник времени для лимита разрешения
            log_level: Уровень логирования
        """
        self.logger = logging.getLogger(__name__)
        self.logger.setLevel(log_level)
        self.scheduler = scheduler
        self.detector = detector
        self.config = config
        self.daily_costs = daily_costs or {}
        self.clock = clock

    def is_blocking(self, conflict: Conflict) -> bool:
        return conflict.severity.value in self.config.resolveSeverities

    def blocking(self, conflicts: List[Conflict]) -> List[Conflict]:
        return [conflict for conflict in conflicts if self.is_blocking(conflict)]

    def aggregate_score(self, finish: float, baseline: float, cost: float, quality: float) -> float:
        """
        Оценивает расписание целиком с теми же весами, что и отдельные решения.

        Args:
            finish: Окончание проекта в расписании
            baseline: Окончание до разрешения конфликтов
            cost: Стоимость, добавленная решениями
            quality: Суммарное влияние на качество

        Returns:
            Итоговая оценка, чем больше, тем лучше
        """
        quality = max(-1.0, min(1.0, quality))
        return (
            -0.5 * (finish - baseline)
            - 0.3 * (cost / self.config.referenceUnit)
            + 0.2 * quality
        )

    def _apply_best(self, conflict: Conflict, directives: ScheduleDirectives) -> Optional[Resolution]:
        ranked = sorted(
            conflict.resolutions,
            key=lambda resolution: resolution.score(self.config.referenceUnit),
            reverse=True,
        )
        for resolution in ranked:
            if apply_resolution(directives, resolution):
                self.logger.debug(
                    f"Применено {resolution.type.value} для {conflict.id} "
                    f"(оценка {resolution.score(self.config.referenceUnit):.3f})"
                )
                return resolution
        return None

    def _detect(self, directives: ScheduleDirectives) -> Tuple[ScheduleState, List[Conflict]]:
        state = self.scheduler.schedule(directives)
        return state, self.detector.detect(state, directives)

    def resolve(self, directives: Optional[ScheduleDirectives] = None) -> ResolutionOutcome:
        """
        Планирует проект и разрешает его конфликты.

        Args:
            directives: Начальные директивы, по умолчанию пустые

        Returns:
            Расписание без конфликтов или лучшее найденное с UnresolvedConflict
        """
        started = self.clock()
        directives = directives.model_copy(deep=True) if directives else ScheduleDirectives()
        state, conflicts = self._detect(directives)
        baseline = state.projectFinish
        attempts = 1
        rounds = 0
        applied: List[Resolution] = []
        extra_cost = 0.0
        quality = 0.0

        def outcome(**kwargs) -> ResolutionOutcome:
            return ResolutionOutcome(
                state=kwargs.pop("state", state),
                directives=kwargs.pop("directives", directives),
                conflicts=kwargs.pop("conflicts", conflicts),
                appliedResolutions=applied,
                baselineFinish=baseline,
                extraCost=kwargs.pop("extra_cost", extra_cost),
                qualityImpact=kwargs.pop("quality", quality),
                rounds=rounds,
                attempts=attempts,
                **kwargs,
            )

        while rounds < self.config.maxResolutionRounds:
            blocking = self.blocking(conflicts)
            if not blocking:
                self.logger.info(f"Расписание без конфликтов после {rounds} раундов разрешения")
                return outcome()
            if self._budget_exhausted(started):
                return outcome(unresolved=UnresolvedConflict(
                    reason="resolution time budget exhausted",
                    attempts=attempts,
                    remainingConflicts=blocking,
                ))

            rounds += 1
            changed = False
            for conflict in blocking:
                resolution = self._apply_best(conflict, directives)
                if resolution is None:
                    continue
                changed = True
                applied.append(resolution)
                extra_cost += resolution.impact.costChange
                quality += resolution.impact.qualityImpact
            if not changed:
                self.logger.debug(f"Раунд {rounds}: ни одно решение не изменило расписание")
                break
            state, conflicts = self._detect(directives)
            attempts += 1
            self.logger.debug(
                f"Раунд {rounds}: осталось блокирующих конфликтов: {len(self.blocking(conflicts))}"
            )

        blocking = self.blocking(conflicts)
        if not blocking:
            return outcome()

        self.logger.warning(
            f"После {rounds} раундов осталось {len(blocking)} блокирующих конфликтов, пробуем альтернативные расписания"
        )
        current_score = self.aggregate_score(state.projectFinish, baseline, extra_cost, quality)
        best: Optional[Alternative] = None
        for name in ALTERNATIVE_HEURISTICS:
            if self._budget_exhausted(started):
                break
            alternative = self.generate_alternative(name, directives, state, conflicts, baseline, extra_cost, quality)
            attempts += 1
            if alternative is None:
                continue
            if best is None or self._rank(alternative) < self._rank(best):
                best = alternative

        if best is not None and (
            len(self.blocking(best.conflicts)), -best.score
        ) < (len(blocking), -current_score):
            self.logger.info(f"Используется альтернативное расписание '{best.name}'")
            remaining = self.blocking(best.conflicts)
            unresolved = None
            if remaining:
                unresolved = UnresolvedConflict(
                    reason="alternative schedules still contain blocking conflicts",
                    attempts=attempts,
                    remainingConflicts=remaining,
                )
            return outcome(
                state=best.state,
                directives=best.directives,
                conflicts=best.conflicts,
                extra_cost=best.extraCost,
                quality=best.qualityImpact,
                alternativeUsed=best.name,
                unresolved=unresolved,
            )

        return outcome(unresolved=UnresolvedConflict(
            reason=f"blocking conflicts remain after {rounds} rounds and {len(ALTERNATIVE_HEURISTICS)} alternatives",
            attempts=attempts,
            remainingConflicts=blocking,
        ))

    def _budget_exhausted(self, started: float) -> bool:
        budget = self.config.resolutionTimeBudget
        return budget is not None and self.clock() - started >= budget

    def _rank(self, alternative: Alternative) -> Tuple[int, float]:
        return (len(self.blocking(alternative.conflicts)), -alternative.score)

    def bottleneck(self, state: ScheduleState, conflicts: List[Conflict]) -> Optional[str]:
        """
        Тип ресурса, сильнее всего ограничивающий расписание.

        В первую очередь берется тип из блокирующих ресурсных конфликтов, иначе
        тип с наибольшей загрузкой на единицу мощности.
        """
        for conflict in self.blocking(conflicts):
            for resolution in conflict.resolutions:
                if resolution.capacityChanges:
                    return next(iter(resolution.capacityChanges))
        best_type, best_ratio = None, 0.0
        for resource_type, bookings in state.bookings.items():
            capacity = state.capacities.get(resource_type, 0)
            if capacity <= 0 or not bookings:
                continue
            demand = sum((booking.finish - booking.start) * booking.quantity for booking in bookings)
            ratio = demand / capacity
            if ratio > best_ratio + EPSILON:
                best_type, best_ratio = resource_type, ratio
        return best_type

    def generate_alternative(
        self,
        name: str,
        directives: ScheduleDirectives,
        state: ScheduleState,
        conflicts: List[Conflict],
        baseline: float,
        extra_cost: float,
        quality: float
    ) -> Optional[Alternative]:
        """
        Строит одно альтернативное расписание.

        Args:
            name: Имя эвристики из ALTERNATIVE_HEURISTICS
            directives: Директивы после раундов разрешения
            state: Расписание после раундов разрешения
            conflicts: Конфликты этого расписания
            baseline: Окончание до разрешения конфликтов
            extra_cost: Уже добавленная стоимость
            quality: Уже накопленное влияние на качество

        Returns:
            Альтернатива или None, если эвристика неприменима
        """
        candidate = directives.model_copy(deep=True)
        if name == "parallel-maximization":
            candidate.startFloors = {}
            candidate.placementPriority = "longest_chain"
        elif name == "resource-augmentation":
            resource_type = self.bottleneck(state, conflicts)
            if resource_type is None:
                return None
            candidate.extraCapacity[resource_type] = candidate.extraCapacity.get(resource_type, 0) + 1
            bookings = state.bookings.get(resource_type, [])
            span = (
                max(booking.finish for booking in bookings) - min(booking.start for booking in bookings)
                if bookings else 0.0
            )
            extra_cost += self.daily_costs.get(resource_type, 0.0) * span
        elif name == "task-splitting":
            threshold = self.config.splitThresholdDays
            involved = {task_id for conflict in self.blocking(conflicts) for task_id in conflict.affectedTasks}
            long_tasks = [
                task_id for task_id, node in state.nodes.items()
                if node.duration > threshold and task_id not in candidate.splitChunks
            ]
            targets = [task_id for task_id in long_tasks if task_id in involved] or long_tasks
            if not targets:
                return None
            for task_id in targets:
                candidate.splitChunks[task_id] = self.config.splitChunkDays
            quality += SPLIT_QUALITY * len(targets)
        else:
            raise ValueError(f"неизвестная эвристика '{name}'")

        alternative_state, alternative_conflicts = self._detect(candidate)
        return Alternative(
            name=name,
            directives=candidate,
            state=alternative_state,
            conflicts=alternative_conflicts,
            extraCost=extra_cost,
            qualityImpact=max(-1.0, min(1.0, quality)),
            score=self.aggregate_score(alternative_state.projectFinish, baseline, extra_cost, quality),
        )

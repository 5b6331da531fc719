"""
Модели результатов движка планирования.

Узлы расписания, бронирования и директивы составляют рабочее состояние
детерминированного расчета; конфликты и варианты разрешения передаются от
детектора к резолверу; ScheduleResult и ProbabilisticForecast возвращаются
вызывающему коду.
"""
from datetime import date
from enum import Enum
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from sitescheduler.data.models import WorkHours


class Segment(BaseModel):
    """Непрерывный отрезок работы в смещениях дней."""
    start: float
    finish: float


class ScheduleNode(BaseModel):
    """Рассчитанные сроки CPM одной задачи в рабочих днях."""
    taskId: str
    duration: float
    earlyStart: float = 0.0
    earlyFinish: float = 0.0
    lateStart: float = 0.0
    lateFinish: float = 0.0
    slack: float = 0.0
    isCritical: bool = False
    segments: List[Segment] = []
    workHours: Optional[WorkHours] = None

    def spans(self) -> List[Segment]:
        """Отрезки работы; для неразбитой задачи все окно целиком."""
        if self.segments:
            return self.segments
        return [Segment(start=self.earlyStart, finish=self.earlyFinish)]


class CPMResult(BaseModel):
    nodes: Dict[str, ScheduleNode]
    order: List[str]
    projectFinish: float
    criticalPath: List[str]
    fallbackUsed: bool = False


class Booking(BaseModel):
    """Бронирование ресурса задачей на интервал [start, finish)."""
    taskId: str
    resourceType: str
    start: float
    finish: float
    quantity: int = 1
    canShare: bool = False
    space: Optional[str] = None


class ScheduleDirectives(BaseModel):
    """
    Накопленные изменения, которые резолвер передает планировщику.

    Планировщик читает их при каждом проходе, поэтому примененное решение
    сохраняется после пересчета.
    """
    startFloors: Dict[str, float] = {}
    durationOverrides: Dict[str, float] = {}
    splitChunks: Dict[str, float] = {}
    extraCapacity: Dict[str, int] = {}
    methodChanged: List[str] = []
    partitions: List[Tuple[str, str]] = []
    placementPriority: Literal["early_start", "longest_chain"] = "early_start"

    def is_partitioned(self, first: str, second: str) -> bool:
        return (first, second) in self.partitions or (second, first) in self.partitions


class ScheduleState(BaseModel):
    """Результат одного прохода планирования с учетом ресурсов."""
    nodes: Dict[str, ScheduleNode]
    order: List[str]
    bookings: Dict[str, List[Booking]] = {}
    capacities: Dict[str, int] = {}
    projectFinish: float = 0.0
    criticalPath: List[str] = []
    exhaustedPlacements: List[str] = []
    fallbackUsed: bool = False


class ConflictType(str, Enum):
    SPACE = "space"
    RESOURCE = "resource"
    REGULATORY = "regulatory"
    DEPENDENCY = "dependency"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ResolutionType(str, Enum):
    DELAY = "delay"
    PARALLEL = "parallel"
    RESOURCE_ADD = "resource-add"
    SEQUENCE_CHANGE = "sequence-change"
    METHOD_CHANGE = "method-change"


class AdjustmentType(str, Enum):
    MOVE = "move"
    EXTEND = "extend"
    SPLIT = "split"
    MERGE = "merge"


class ScheduleAdjustment(BaseModel):
    """Изменение одного узла расписания."""
    taskId: str
    adjustmentType: AdjustmentType
    newStart: Optional[float] = None
    newDuration: Optional[float] = None
    chunkSize: Optional[float] = None


class ResolutionImpact(BaseModel):
    durationChange: float = 0.0
    costChange: float = 0.0
    qualityImpact: float = Field(0.0, ge=-1, le=1)


class Resolution(BaseModel):
    """Вариант разрешения конфликта."""
    id: str
    conflictId: str
    type: ResolutionType
    description: str = ""
    impact: ResolutionImpact = Field(default_factory=ResolutionImpact)
    adjustments: List[ScheduleAdjustment] = []
    capacityChanges: Dict[str, int] = {}
    methodChangeTasks: List[str] = []
    partitionedTasks: List[str] = []

    def score(self, reference_unit: float) -> float:
        """
        Оценивает вариант разрешения; чем больше, тем лучше.

        Args:
            reference_unit: Стоимость, равная одной единице штрафа за стоимость

        Returns:
            -0.5 * durationChange - 0.3 * costChange / reference_unit + 0.2 * qualityImpact
        """
        return (
            -0.5 * self.impact.durationChange
            - 0.3 * (self.impact.costChange / reference_unit)
            + 0.2 * self.impact.qualityImpact
        )


class Conflict(BaseModel):
    id: str
    type: ConflictType
    severity: Severity
    description: str = ""
    affectedTasks: List[str]
    resolutions: List[Resolution] = []
    time: Optional[float] = None


class UnresolvedConflict(BaseModel):
    """
    Возвращается, когда разрешение конфликтов исчерпало свои ограничения.

    Сопровождающее расписание является лучшим найденным; принять ли его,
    решает вызывающий код.
    """
    reason: str
    attempts: int
    remainingConflicts: List[Conflict]


class AssignedResource(BaseModel):
    resourceType: str
    quantity: int


class DateRange(BaseModel):
    startDate: date
    endDate: date


class ScheduledTask(BaseModel):
    """Задача, размещенная в календаре."""
    id: str
    name: str
    category: str
    space: Optional[str] = None
    earlyStart: float
    earlyFinish: float
    lateStart: float
    lateFinish: float
    duration: float
    slack: float
    isCritical: bool
    isMilestone: bool = False
    startDate: date
    endDate: date
    segments: List[DateRange] = []
    assignedResources: List[AssignedResource] = []
    cost: float = 0.0


class ScheduleResult(BaseModel):
    """Детерминированное расписание для вывода."""
    projectId: str
    startDate: date
    endDate: date
    tasks: List[ScheduledTask]
    criticalPath: List[str]
    totalWorkingDays: float
    totalCalendarDays: int
    totalCost: float
    resolutionCost: float = 0.0
    qualityImpact: float = 0.0
    conflicts: List[Conflict] = []
    appliedResolutions: List[Resolution] = []
    alternativeUsed: Optional[str] = None
    unresolved: Optional[UnresolvedConflict] = None
    warnings: List[str] = []

    @property
    def is_best_effort(self) -> bool:
        return self.unresolved is not None

    def task(self, task_id: str) -> ScheduledTask:
        for scheduled in self.tasks:
            if scheduled.id == task_id:
                return scheduled
        raise KeyError(task_id)


class PertEstimate(BaseModel):
    """Скорректированная трехточечная оценка для сэмплирования."""
    optimistic: float
    mostLikely: float
    pessimistic: float
    complexity: float = 0.5

    @property
    def mean(self) -> float:
        return (self.optimistic + 4 * self.mostLikely + self.pessimistic) / 6

    @property
    def std(self) -> float:
        return (self.pessimistic - self.optimistic) / 6


class RiskFactor(BaseModel):
    category: Literal["weather", "labor", "complexity"]
    description: str
    impact: float = Field(ge=0, le=1)
    probability: float = Field(ge=0, le=1)
    affectedTasks: List[str] = []

    @property
    def weight(self) -> float:
        return self.impact * self.probability


class CompletionPoint(BaseModel):
    day: int
    probability: float


class ConfidenceInterval(BaseModel):
    min: float
    max: float


class ForecastScenario(BaseModel):
    name: Literal["optimistic", "realistic", "conservative"]
    duration: float
    cost: float
    reliability: int
    riskLevel: Literal["low", "medium", "high"]


class ProbabilisticForecast(BaseModel):
    """Прогноз длительности методом Монте-Карло."""
    p10: float
    p50: float
    p90: float
    expectedDuration: float
    confidence90: ConfidenceInterval
    completionCurve: List[CompletionPoint]
    highRiskTasks: List[str]
    totalRiskScore: float
    criticalityIndex: Dict[str, float] = {}
    riskFactors: List[RiskFactor] = []
    delayProbability: float = 0.0
    recommendations: List[str] = []
    scenarios: List[ForecastScenario] = []
    iterationsRequested: int
    iterationsCompleted: int
    timedOut: bool = False
    seed: Optional[int] = None

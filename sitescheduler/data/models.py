"""
Модели данных для движка календарного планирования.

Этот модуль содержит pydantic-модели входных данных проекта: задачи,
зависимости, ресурсы, регламенты, условия площадки, квалификацию бригады
и настройки планирования.
"""
from datetime import date, datetime
from enum import Enum
import operator
from typing import Any, Callable, Dict, List, Literal, Optional

from dateutil import parser
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


WEEKDAY_NAMES = [
    "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"
]

# Мощность ресурсов, которые требуются задачам, но не объявлены в проекте
DEFAULT_CAPACITIES = {
    "electrician": 1,
    "plumber": 1,
    "carpenter": 2,
    "painter": 3,
}
DEFAULT_CAPACITY = 1

# Дневная ставка для расчета стоимости дополнительных ресурсов
DEFAULT_DAILY_COSTS = {
    "electrician": 500_000.0,
    "plumber": 450_000.0,
    "carpenter": 400_000.0,
    "painter": 350_000.0,
}
DEFAULT_DAILY_COST = 400_000.0


class DependencyType(str, Enum):
    """Тип зависимости между двумя задачами."""
    FS = "FS"  # finish-to-start
    SS = "SS"  # start-to-start
    FF = "FF"  # finish-to-finish
    SF = "SF"  # start-to-finish


class LagKind(str, Enum):
    """Вид задержки зависимости."""
    MANDATORY = "mandatory"
    FLEXIBLE = "flexible"
    WEATHER_DEPENDENT = "weather-dependent"


class EnvironmentParameter(str, Enum):
    """Числовые параметры среды, которые проверяют условия зависимостей."""
    HUMIDITY = "humidity"
    TEMPERATURE = "temperature"
    RAIN_PROBABILITY = "rainProbability"
    BUILDING_AGE = "buildingAge"
    FLOOR_LEVEL = "floorLevel"


class ConditionOperator(str, Enum):
    """Операторы сравнения в условиях зависимостей."""
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    EQ = "=="
    NE = "!="


_OPERATORS: Dict[ConditionOperator, Callable[[Any, Any], bool]] = {
    ConditionOperator.GT: operator.gt,
    ConditionOperator.LT: operator.lt,
    ConditionOperator.GE: operator.ge,
    ConditionOperator.LE: operator.le,
    ConditionOperator.EQ: operator.eq,
    ConditionOperator.NE: operator.ne,
}


class Season(str, Enum):
    SPRING = "spring"
    SUMMER = "summer"
    FALL = "fall"
    WINTER = "winter"


class ExpertiseLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    EXPERT = "expert"


class RegulationKind(str, Enum):
    """Вид регламентного ограничения."""
    NOISE = "noise"
    DUST = "dust"
    SAFETY = "safety"
    WORK_HOURS = "work_hours"
    ENVIRONMENTAL = "environmental"


def parse_date(value: Any) -> Any:
    """
    Преобразует строку или datetime в дату.

    Args:
        value: Исходное значение из входных данных

    Returns:
        Объект date или исходное значение, если его нельзя интерпретировать
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        return parser.parse(value).date()
    return value


class DurationEstimate(BaseModel):
    """Трехточечная оценка длительности в рабочих днях."""
    model_config = ConfigDict(extra="ignore")

    optimistic: float = Field(ge=0)
    mostLikely: float = Field(ge=0)
    pessimistic: float = Field(ge=0)

    @model_validator(mode="after")
    def check_order(self) -> "DurationEstimate":
        if self.pessimistic < self.optimistic:
            raise ValueError(
                f"пессимистичная длительность {self.pessimistic} меньше оптимистичной {self.optimistic}"
            )
        if not self.optimistic <= self.mostLikely <= self.pessimistic:
            raise ValueError(
                f"наиболее вероятная длительность {self.mostLikely} должна лежать в "
                f"[{self.optimistic}, {self.pessimistic}]"
            )
        return self


class Task(BaseModel):
    """Модель задачи (единица работ на объекте)."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    name: str = ""
    duration: DurationEstimate
    category: str = "general"
    space: Optional[str] = None  # Помещение, в котором ведутся работы
    cost: float = Field(0.0, ge=0)
    isMilestone: bool = False
    priority: int = 1

    @field_validator("duration", mode="before")
    @classmethod
    def coerce_fixed_duration(cls, value: Any) -> Any:
        # Число без оценки означает фиксированную длительность
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return {"optimistic": value, "mostLikely": value, "pessimistic": value}
        return value


class DependencyCondition(BaseModel):
    """
    Масштабирует задержку зависимости, когда параметр среды переходит порог.

    Пример: humidity > 80 увеличивает задержку на высыхание в 1.5 раза.
    """
    model_config = ConfigDict(extra="ignore")

    parameter: EnvironmentParameter
    operator: ConditionOperator
    threshold: float
    adjustmentFactor: float = Field(1.0, ge=0)

    def holds(self, environment: "EnvironmentFactors") -> bool:
        """
        Проверяет условие для текущей среды.

        Args:
            environment: Текущие условия площадки

        Returns:
            True, если условие выполняется
        """
        value = environment.value_of(self.parameter)
        return _OPERATORS[self.operator](value, self.threshold)


class Dependency(BaseModel):
    """Зависимость между предшествующей и последующей задачей."""
    model_config = ConfigDict(extra="ignore")

    id: str
    sourceTaskId: str
    targetTaskId: str
    type: DependencyType = DependencyType.FS
    lag: float = 0.0  # В днях, отрицательное значение означает опережение
    lagKind: LagKind = LagKind.MANDATORY
    conditions: List[DependencyCondition] = []


class ResourceType(BaseModel):
    """Тип бригады или техники с ограниченной одновременной мощностью."""
    model_config = ConfigDict(extra="ignore")

    name: str
    capacity: int = 1
    dailyCost: Optional[float] = None

    @property
    def daily_cost(self) -> float:
        if self.dailyCost is not None:
            return self.dailyCost
        return DEFAULT_DAILY_COSTS.get(self.name, DEFAULT_DAILY_COST)


class ResourceRequirement(BaseModel):
    """Количество ресурса, которое задача занимает на всю длительность."""
    model_config = ConfigDict(extra="ignore")

    taskId: str
    resourceType: str
    quantity: int = 1
    canShare: bool = False  # Общие единицы делятся между задачами одного помещения
    priority: int = 1


class WorkHours(BaseModel):
    """Дневное окно работ в часах."""
    model_config = ConfigDict(extra="ignore")

    start: float = Field(8.0, ge=0, le=24)
    end: float = Field(17.0, ge=0, le=24)

    @model_validator(mode="after")
    def check_window(self) -> "WorkHours":
        if self.end <= self.start:
            raise ValueError(f"окончание рабочего окна {self.end} должно быть позже начала {self.start}")
        return self

    @property
    def length(self) -> float:
        return self.end - self.start

    def contains(self, other: "WorkHours") -> bool:
        return self.start <= other.start and other.end <= self.end


class TimeRestriction(BaseModel):
    """Дни недели (0 = понедельник) и часы, в которые разрешены работы."""
    model_config = ConfigDict(extra="ignore")

    allowedDays: List[int] = Field(default_factory=lambda: list(range(7)))
    allowedHours: Optional[WorkHours] = None

    @field_validator("allowedDays")
    @classmethod
    def check_days(cls, value: List[int]) -> List[int]:
        for day in value:
            if not 0 <= day <= 6:
                raise ValueError(f"день недели {day} вне диапазона 0..6")
        return sorted(set(value))


class SequenceRule(BaseModel):
    """
    Правило очередности работ из регламента.

    Элементы mustFollow / mustPrecede совпадают с идентификатором или категорией задачи.
    """
    model_config = ConfigDict(extra="ignore")

    mustFollow: List[str] = []
    mustPrecede: List[str] = []
    minimumGap: float = Field(0.0, ge=0)


class WeatherRestriction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    maxTemperature: Optional[float] = None
    minTemperature: Optional[float] = None
    maxHumidity: Optional[float] = None
    noRain: bool = False

    def violations(self, environment: "EnvironmentFactors") -> List[str]:
        """
        Перечисляет ограничения, которые нарушает текущая среда.

        Args:
            environment: Текущие условия площадки

        Returns:
            Описание каждого нарушенного ограничения
        """
        found = []
        if self.maxTemperature is not None and environment.temperature > self.maxTemperature:
            found.append(f"temperature {environment.temperature} above {self.maxTemperature}")
        if self.minTemperature is not None and environment.temperature < self.minTemperature:
            found.append(f"temperature {environment.temperature} below {self.minTemperature}")
        if self.maxHumidity is not None and environment.humidity > self.maxHumidity:
            found.append(f"humidity {environment.humidity} above {self.maxHumidity}")
        if self.noRain and environment.rainProbability > 0.5:
            found.append(f"rain probability {environment.rainProbability} with no-rain rule")
        return found


class RegulatoryConstraint(BaseModel):
    """Регламент: временные окна и очередность для набора категорий задач."""
    model_config = ConfigDict(extra="ignore")

    id: str
    kind: RegulationKind = RegulationKind.SAFETY
    description: str = ""
    categories: List[str]
    timeRestriction: Optional[TimeRestriction] = None
    sequenceRules: List[SequenceRule] = []
    weatherRestriction: Optional[WeatherRestriction] = None

    def applies_to(self, task: Task) -> bool:
        return task.category in self.categories


class EnvironmentFactors(BaseModel):
    """Условия площадки, влияющие на задержки и оценки длительности."""
    model_config = ConfigDict(extra="ignore")

    season: Season = Season.SPRING
    rainProbability: float = Field(0.0, ge=0, le=1)
    temperature: float = 20.0  # Градусы Цельсия
    humidity: float = Field(50.0, ge=0, le=100)  # Проценты
    buildingAge: float = Field(0.0, ge=0)  # Годы
    floorLevel: int = 0
    accessRestrictions: bool = False

    def value_of(self, parameter: EnvironmentParameter) -> float:
        return float(getattr(self, parameter.value))


class ExpertiseProfile(BaseModel):
    """Опыт бригады, выполняющей работы."""
    model_config = ConfigDict(extra="ignore")

    level: ExpertiseLevel = ExpertiseLevel.INTERMEDIATE
    years: float = Field(0.0, ge=0)
    projectsCompleted: int = Field(0, ge=0)
    historicalDelayRate: float = Field(0.0, ge=0)
    specialties: List[str] = []


class SchedulingConfig(BaseModel):
    """Настройки календаря, сроков, разрешения конфликтов и симуляции."""
    model_config = ConfigDict(extra="ignore")

    # Календарь
    startDate: date = Field(default_factory=date.today)
    workDays: List[str] = WEEKDAY_NAMES[:5]
    holidays: List[date] = []
    dailyHours: WorkHours = Field(default_factory=WorkHours)

    # Срок, бюджет и пороги предупреждений
    targetDuration: Optional[float] = Field(None, gt=0)  # Рабочие дни
    tolerance: float = Field(0.1, ge=0)
    budget: Optional[float] = Field(None, ge=0)
    criticalRatioThreshold: float = Field(0.8, ge=0, le=1)
    cyclePolicy: Literal["raise", "warn"] = "raise"

    # Разрешение конфликтов
    maxResolutionRounds: int = Field(5, ge=0)
    resolutionTimeBudget: Optional[float] = Field(None, gt=0)  # Секунды
    resolveSeverities: List[str] = ["critical"]
    referenceUnit: float = Field(10_000_000.0, gt=0)
    splitThresholdDays: float = Field(3.0, gt=0)
    splitChunkDays: float = Field(1.0, gt=0)
    maxPlacementSteps: int = Field(500, ge=1)

    # Симуляция Монте-Карло
    iterations: int = Field(1000, ge=1)
    seed: Optional[int] = None
    workers: int = Field(1, ge=1)
    timeout: Optional[float] = Field(None, gt=0)  # Секунды
    simulationBlockSize: int = Field(250, ge=1)
    estimationMode: Literal["derived", "direct"] = "derived"

    @field_validator("startDate", mode="before")
    @classmethod
    def parse_start_date(cls, value: Any) -> Any:
        return parse_date(value)

    @field_validator("holidays", mode="before")
    @classmethod
    def parse_holidays(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [parse_date(item) for item in value]
        return value

    @field_validator("workDays")
    @classmethod
    def check_work_days(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("требуется хотя бы один рабочий день")
        unknown = [day for day in value if day not in WEEKDAY_NAMES]
        if unknown:
            raise ValueError(f"неизвестные дни недели: {unknown}")
        return value

    @field_validator("resolveSeverities")
    @classmethod
    def check_severities(cls, value: List[str]) -> List[str]:
        allowed = {"critical", "high", "medium", "low"}
        unknown = [item for item in value if item not in allowed]
        if unknown:
            raise ValueError(f"неизвестные уровни серьезности: {unknown}")
        return value


class ProjectInput(BaseModel):
    """Входные данные для планирования и прогноза проекта."""
    model_config = ConfigDict(extra="ignore")

    projectId: str = "project"
    projectName: str = "Unnamed Project"
    tasks: List[Task]
    dependencies: List[Dependency] = []
    resourceTypes: List[ResourceType] = []
    resourceRequirements: List[ResourceRequirement] = []
    regulations: List[RegulatoryConstraint] = []
    environment: Optional[EnvironmentFactors] = None
    expertise: Optional[ExpertiseProfile] = None
    config: SchedulingConfig = Field(default_factory=SchedulingConfig)

    def resource_types(self) -> Dict[str, ResourceType]:
        """
        Возвращает все используемые типы ресурсов, объявленные или следующие из требований.

        Returns:
            Словарь: имя типа -> ResourceType
        """
        types = {resource.name: resource for resource in self.resourceTypes}
        for requirement in self.resourceRequirements:
            if requirement.resourceType not in types:
                types[requirement.resourceType] = ResourceType(
                    name=requirement.resourceType,
                    capacity=DEFAULT_CAPACITIES.get(requirement.resourceType, DEFAULT_CAPACITY),
                )
        return types

    def capacities(self) -> Dict[str, int]:
        return {name: resource.capacity for name, resource in self.resource_types().items()}

    def daily_costs(self) -> Dict[str, float]:
        return {name: resource.daily_cost for name, resource in self.resource_types().items()}

    def requirements_by_task(self) -> Dict[str, List[ResourceRequirement]]:
        grouped: Dict[str, List[ResourceRequirement]] = {task.id: [] for task in self.tasks}
        for requirement in self.resourceRequirements:
            grouped.setdefault(requirement.taskId, []).append(requirement)
        return grouped

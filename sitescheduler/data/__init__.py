"""
Модели данных, загрузка и хранение проектов.
"""

from sitescheduler.data.models import (
    Task, DurationEstimate, Dependency, DependencyType, DependencyCondition,
    LagKind, EnvironmentParameter, ConditionOperator, ResourceType,
    ResourceRequirement, RegulatoryConstraint, RegulationKind, TimeRestriction,
    SequenceRule, WeatherRestriction, WorkHours, EnvironmentFactors,
    ExpertiseProfile, ExpertiseLevel, Season, SchedulingConfig, ProjectInput
)
from sitescheduler.data.results import (
    ScheduleNode, Conflict, Resolution, ScheduleAdjustment, ScheduleResult,
    ScheduledTask, UnresolvedConflict, ProbabilisticForecast, PertEstimate
)
from sitescheduler.data.loader import parse_project, load_project, save_model
from sitescheduler.data.repository import (
    ProjectRepository, InMemoryProjectRepository, JsonProjectRepository
)

__all__ = [
    "Task",
    "DurationEstimate",
    "Dependency",
    "DependencyType",
    "DependencyCondition",
    "LagKind",
    "EnvironmentParameter",
    "ConditionOperator",
    "ResourceType",
    "ResourceRequirement",
    "RegulatoryConstraint",
    "RegulationKind",
    "TimeRestriction",
    "SequenceRule",
    "WeatherRestriction",
    "WorkHours",
    "EnvironmentFactors",
    "ExpertiseProfile",
    "ExpertiseLevel",
    "Season",
    "SchedulingConfig",
    "ProjectInput",
    "ScheduleNode",
    "Conflict",
    "Resolution",
    "ScheduleAdjustment",
    "ScheduleResult",
    "ScheduledTask",
    "UnresolvedConflict",
    "ProbabilisticForecast",
    "PertEstimate",
    "parse_project",
    "load_project",
    "save_model",
    "ProjectRepository",
    "InMemoryProjectRepository",
    "JsonProjectRepository",
]

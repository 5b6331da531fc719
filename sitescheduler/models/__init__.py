"""
Алгоритмы планирования: граф, CPM, ресурсы, конфликты и прогноз.
"""

from sitescheduler.models.task_graph import TaskGraph, would_create_cycle, validate_project
from sitescheduler.models.topological import topological_sort
from sitescheduler.models.cpm import CPMEngine, compute_lag
from sitescheduler.models.resource_scheduler import ResourceConstrainedScheduler
from sitescheduler.models.conflict_detector import ConflictDetector
from sitescheduler.models.conflict_resolver import ConflictResolver, ResolutionOutcome
from sitescheduler.models.pert import PertEstimator
from sitescheduler.models.monte_carlo import MonteCarloSimulator
from sitescheduler.models.forecaster import ProbabilisticForecaster
from sitescheduler.models.assembler import ScheduleAssembler

__all__ = [
    "TaskGraph",
    "would_create_cycle",
    "validate_project",
    "topological_sort",
    "CPMEngine",
    "compute_lag",
    "ResourceConstrainedScheduler",
    "ConflictDetector",
    "ConflictResolver",
    "ResolutionOutcome",
    "PertEstimator",
    "MonteCarloSimulator",
    "ProbabilisticForecaster",
    "ScheduleAssembler"
]

"""
Движок календарного планирования: CPM с учетом ресурсов и регламентов,
разрешение конфликтов и прогноз длительности методом Монте-Карло.
"""

from sitescheduler.errors import SchedulingError, ValidationError, CycleDetected
from sitescheduler.scheduler import ProjectScheduler, schedule_project

__version__ = "0.1.0"

__all__ = [
    "SchedulingError",
    "ValidationError",
    "CycleDetected",
    "ProjectScheduler",
    "schedule_project"
]

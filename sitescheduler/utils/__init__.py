"""
Утилиты движка планирования.
"""

from sitescheduler.utils.calendar_utils import (
    is_working_day,
    next_working_day,
    WorkCalendar
)

__all__ = [
    "is_working_day",
    "next_working_day",
    "WorkCalendar"
]

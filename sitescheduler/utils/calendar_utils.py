"""
Утилиты для работы с календарем проекта.

Движок планирует в смещениях рабочих дней; функции этого модуля переводят
смещения в календарные даты и дни недели с учетом рабочих дней и праздников.
"""
from datetime import date, datetime, timedelta
from typing import List, Optional

from sitescheduler.errors import ValidationError

# Сколько нерабочих дней подряд допустимо, прежде чем календарь считается
# некорректным (например, все дни года объявлены праздниками)
MAX_NON_WORKING_RUN = 366


def is_working_day(day: date, working_days: List[str], holidays: List[date]) -> bool:
    """
    Проверяет, является ли день рабочим с учетом выходных и праздников.

    Args:
        day: Проверяемая дата
        working_days: Список рабочих дней недели (например, ["Monday", "Tuesday", ...])
        holidays: Список праздничных дней

    Returns:
        True, если день является рабочим, False в противном случае
    """
    # Преобразуем дату к типу date, если передан datetime
    if isinstance(day, datetime):
        day = day.date()
    if day.strftime("%A") not in working_days:
        return False
    return day not in holidays


def next_working_day(
    day: date,
    working_days: List[str],
    holidays: List[date],
    include_current: bool = True
) -> date:
    """
    Находит первый рабочий день, начиная с указанной даты (или после нее).

    Args:
        day: Начальная дата
        working_days: Список рабочих дней недели
        holidays: Список праздничных дней
        include_current: Может ли быть возвращен сам указанный день

    Returns:
        Найденный рабочий день

    Raises:
        ValidationError: Если в течение года нет ни одного рабочего дня
    """
    current = day if include_current else day + timedelta(days=1)
    for _ in range(MAX_NON_WORKING_RUN):
        if is_working_day(current, working_days, holidays):
            return current
        current += timedelta(days=1)
    raise ValidationError(f"нет рабочих дней в пределах {MAX_NON_WORKING_RUN} дней от {day}")


class WorkCalendar:
    """
    Переводит смещения в рабочих днях в календарные даты.

    Смещение 0 соответствует первому рабочему дню начиная с даты старта.
    Даты вычисляются лениво и кэшируются.
    """

    def __init__(
        self,
        start_date: date,
        working_days: List[str],
        holidays: Optional[List[date]] = None
    ):
        self.working_days = list(working_days)
        self.holidays = set(holidays or [])
        self.start_date = next_working_day(start_date, self.working_days, self.holidays)
        self._dates: List[date] = [self.start_date]

    def date_for_offset(self, offset: int) -> date:
        """
        Возвращает календарную дату для смещения в рабочих днях.

        Args:
            offset: Неотрицательное смещение

        Returns:
            Календарная дата
        """
        if offset < 0:
            raise ValueError(f"отрицательное смещение {offset}")
        while len(self._dates) <= offset:
            self._dates.append(
                next_working_day(self._dates[-1], self.working_days, self.holidays, include_current=False)
            )
        return self._dates[offset]

    def weekday(self, offset: int) -> int:
        """День недели (0 = понедельник) для смещения."""
        return self.date_for_offset(offset).weekday()

    def calendar_days(self, first_offset: int, last_offset: int) -> int:
        """Количество календарных дней между двумя смещениями включительно."""
        return (self.date_for_offset(last_offset) - self.date_for_offset(first_offset)).days + 1

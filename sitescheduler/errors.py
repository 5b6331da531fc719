"""
Исключения движка планирования.

Все ошибки, которые движок выбрасывает намеренно, наследуются от
SchedulingError, поэтому вызывающий код может перехватить их одним блоком.
"""
from typing import Iterable, List, Optional, Union


class SchedulingError(Exception):
    """Базовый класс ошибок движка планирования."""


class ValidationError(SchedulingError, ValueError):
    """
    Входные данные отклонены до начала расчета.

    Attributes:
        errors: Описание каждой найденной проблемы
    """

    def __init__(self, errors: Union[str, Iterable[str]]):
        if isinstance(errors, str):
            errors = [errors]
        self.errors: List[str] = list(errors)
        super().__init__("; ".join(self.errors) or "некорректные данные проекта")


class CycleDetected(SchedulingError):
    """
    Граф зависимостей содержит цикл.

    Attributes:
        cycle: Идентификаторы задач цикла (или неотсортированный остаток)
    """

    def __init__(self, cycle: Iterable[str], message: Optional[str] = None):
        self.cycle: List[str] = list(cycle)
        super().__init__(
            message or f"Обнаружен цикл зависимостей: {' -> '.join(self.cycle)}"
        )

"""
Трехточечная оценка PERT.

Оценки строятся по базовой минимальной и максимальной длительности задачи,
оценке сложности и исторической поправке для категории работ.
"""
from typing import Dict, List, Optional

import numpy as np

from sitescheduler.data.models import Task
from sitescheduler.data.results import PertEstimate

# Отношение фактической длительности к плановой на прошлых проектах
HISTORICAL_DURATION_RATIOS: Dict[str, List[float]] = {
    "demolition": [0.9, 1.0, 1.1, 0.95, 1.05],
    "electrical": [1.1, 1.2, 1.0, 1.15, 1.05],
    "plumbing": [1.2, 1.3, 1.1, 1.25, 1.15],
    "painting": [0.95, 1.0, 1.1, 1.0, 1.05],
    "flooring": [1.0, 1.1, 0.9, 1.05, 0.95],
}

HIGH_COST_THRESHOLD = 5_000_000.0


class PertEstimator:
    """
    Строит оценки PERT для задач.
    """

    def __init__(self, historical_data: Optional[Dict[str, List[float]]] = None):
        """
        Args:
            historical_data: Отношения длительностей по категориям, по умолчанию встроенная таблица
        """
        self.historical_data = (
            historical_data if historical_data is not None else HISTORICAL_DURATION_RATIOS
        )

    def historical_factor(self, category: str) -> float:
        ratios = self.historical_data.get(category)
        if not ratios:
            return 1.0
        return float(np.mean(ratios))

    @staticmethod
    def complexity(task: Task, dependency_count: int) -> float:
        """
        Оценка сложности в диапазоне [0, 1].

        Args:
            task: Задача
            dependency_count: Количество предшественников задачи

        Returns:
            0.5 плюс 0.1 за зависимость, 0.2 за дорогие работы и 0.1 за веху
        """
        score = 0.5 + 0.1 * dependency_count
        if task.cost > HIGH_COST_THRESHOLD:
            score += 0.2
        if task.isMilestone:
            score += 0.1
        return min(1.0, score)

    def estimate(self, task: Task, dependency_count: int = 0, mode: str = "derived") -> PertEstimate:
        """
        Оценивает длительность задачи.

        Args:
            task: Задача
            dependency_count: Количество предшественников задачи
            mode: "derived" вычисляет O/M/P по базовому диапазону; "direct" берет
                три точки самой задачи

        Returns:
            Оценка PERT
        """
        complexity = self.complexity(task, dependency_count)
        if mode == "direct":
            return PertEstimate(
                optimistic=task.duration.optimistic,
                mostLikely=task.duration.mostLikely,
                pessimistic=task.duration.pessimistic,
                complexity=complexity,
            )

        base_min = task.duration.optimistic
        base_max = task.duration.pessimistic
        factor = self.historical_factor(task.category)
        spread = 1 + 0.5 * complexity
        return PertEstimate(
            optimistic=base_min * 0.8 * factor,
            mostLikely=(base_min + base_max) / 2 * spread * factor,
            pessimistic=base_max * 1.5 * spread * factor,
            complexity=complexity,
        )

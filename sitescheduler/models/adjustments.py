"""
Поправки оценок PERT на квалификацию бригады и условия площадки.
"""
from typing import Optional

from sitescheduler.data.models import (
    EnvironmentFactors, ExpertiseLevel, ExpertiseProfile, Season
)
from sitescheduler.data.results import PertEstimate

LEVEL_MULTIPLIERS = {
    ExpertiseLevel.BEGINNER: 1.3,
    ExpertiseLevel.INTERMEDIATE: 1.0,
    ExpertiseLevel.EXPERT: 0.85,
}
SPECIALTY_BONUS = 0.9

SEASON_MULTIPLIERS = {
    Season.SPRING: 1.0,
    Season.SUMMER: 1.1,
    Season.FALL: 1.0,
    Season.WINTER: 1.2,
}

WEATHER_SENSITIVITY = {
    "demolition": 0.3,
    "electrical": 0.2,
    "plumbing": 0.4,
    "carpentry": 0.5,
    "painting": 0.8,
    "flooring": 0.6,
    "cleanup": 0.1,
}
DEFAULT_WEATHER_SENSITIVITY = 0.5
HUMIDITY_SENSITIVE = {"painting", "flooring"}
ACCESS_RESTRICTION_MULTIPLIER = 1.1


def expertise_factor(profile: ExpertiseProfile, category: str) -> float:
    """
    Множитель длительности по квалификации бригады.

    Args:
        profile: Квалификация бригады
        category: Категория задачи

    Returns:
        уровень * поправка на стаж * бонус специализации * (1 + доля задержек)
    """
    factor = LEVEL_MULTIPLIERS[profile.level]
    factor *= max(0.8, 1 - profile.years * 0.02)
    if category in profile.specialties:
        factor *= SPECIALTY_BONUS
    factor *= 1 + profile.historicalDelayRate
    return factor


def environment_factor(environment: EnvironmentFactors, category: str) -> float:
    """
    Множитель длительности по условиям площадки.

    Args:
        environment: Условия площадки
        category: Категория задачи

    Returns:
        Произведение поправок на сезон, погоду, возраст здания, этаж и доступ
    """
    sensitivity = WEATHER_SENSITIVITY.get(category, DEFAULT_WEATHER_SENSITIVITY)
    factor = SEASON_MULTIPLIERS[environment.season]
    if environment.rainProbability > 0.5:
        factor *= 1 + sensitivity * 0.3
    if abs(environment.temperature - 20) > 10:
        factor *= 1 + sensitivity * 0.2
    if category in HUMIDITY_SENSITIVE and environment.humidity > 70:
        factor *= 1.3
    factor *= 1 + min(environment.buildingAge, 30) / 100
    factor *= 1 + environment.floorLevel / 50
    if environment.accessRestrictions:
        factor *= ACCESS_RESTRICTION_MULTIPLIER
    return factor


def adjust_estimate(
    estimate: PertEstimate,
    category: str,
    expertise: Optional[ExpertiseProfile] = None,
    environment: Optional[EnvironmentFactors] = None
) -> PertEstimate:
    """
    Применяет поправку на квалификацию, затем поправку на условия площадки.

    Этап пропускается, если его профиль не задан. Диапазон расширяется
    несимметрично: оптимистичная граница сдвигается меньше пессимистичной.

    Args:
        estimate: Базовая оценка
        category: Категория задачи
        expertise: Квалификация бригады
        environment: Условия площадки

    Returns:
        Adjusted estimate
    """
    optimistic = estimate.optimistic
    most_likely = estimate.mostLikely
    pessimistic = estimate.pessimistic

    if expertise is not None:
        factor = expertise_factor(expertise, category)
        optimistic *= factor * 0.9
        most_likely *= factor
        pessimistic *= factor * 1.1

    if environment is not None:
        factor = environment_factor(environment, category)
        optimistic *= factor * 0.95
        most_likely *= factor
        pessimistic *= factor * 1.15

    return PertEstimate(
        optimistic=optimistic,
        mostLikely=most_likely,
        pessimistic=pessimistic,
        complexity=estimate.complexity,
    )

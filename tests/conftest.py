"""Pytest configuration and fixtures."""
from typing import Any, Dict, List, Optional

import pytest

from sitescheduler.data.loader import parse_project
from sitescheduler.data.models import ProjectInput
from sitescheduler.models.cpm import CPMEngine
from sitescheduler.models.task_graph import TaskGraph
from sitescheduler.utils.calendar_utils import WorkCalendar

# A Monday
START_DATE = "2024-01-01"


def make_project(
    tasks: List[Dict[str, Any]],
    dependencies: Optional[List[Dict[str, Any]]] = None,
    **extra: Any
) -> ProjectInput:
    """Builds a validated project with a fixed start date."""
    config = {"startDate": START_DATE}
    config.update(extra.pop("config", {}))
    data = {
        "projectId": extra.pop("projectId", "test-project"),
        "tasks": tasks,
        "dependencies": dependencies or [],
        "config": config,
    }
    data.update(extra)
    return parse_project(data)


def build_engine(project: ProjectInput):
    """Task graph, CPM engine and calendar of a project."""
    graph = TaskGraph.from_project(project, allow_cycles=project.config.cyclePolicy == "warn")
    cpm = CPMEngine(graph, project.environment)
    calendar = WorkCalendar(project.config.startDate, project.config.workDays, project.config.holidays)
    return graph, cpm, calendar


@pytest.fixture
def literal_tasks() -> List[Dict[str, Any]]:
    """A (3 days), B (2 days) and C (4 days)."""
    return [
        {"id": "A", "name": "Demolition", "duration": 3, "category": "demolition"},
        {"id": "B", "name": "Wiring", "duration": 2, "category": "electrical"},
        {"id": "C", "name": "Plumbing", "duration": 4, "category": "plumbing"},
    ]


@pytest.fixture
def literal_dependencies() -> List[Dict[str, Any]]:
    """B finishes-to-start on A with one day lag, C starts with A."""
    return [
        {"id": "d1", "sourceTaskId": "A", "targetTaskId": "B", "type": "FS", "lag": 1},
        {"id": "d2", "sourceTaskId": "A", "targetTaskId": "C", "type": "SS", "lag": 0},
    ]


@pytest.fixture
def literal_project(literal_tasks, literal_dependencies) -> ProjectInput:
    return make_project(literal_tasks, literal_dependencies)


@pytest.fixture
def renovation_data() -> Dict[str, Any]:
    """A small apartment renovation with resources, regulations and site conditions."""
    return {
        "projectId": "renovation",
        "projectName": "Apartment renovation",
        "tasks": [
            {"id": "demo", "name": "Demolition", "category": "demolition", "space": "kitchen",
             "duration": {"optimistic": 2, "mostLikely": 3, "pessimistic": 5}, "cost": 2_000_000},
            {"id": "wiring", "name": "Wiring", "category": "electrical", "space": "kitchen",
             "duration": {"optimistic": 2, "mostLikely": 2, "pessimistic": 4}, "cost": 1_500_000},
            {"id": "pipes", "name": "Pipes", "category": "plumbing", "space": "bathroom",
             "duration": {"optimistic": 1, "mostLikely": 2, "pessimistic": 3}, "cost": 1_200_000},
            {"id": "paint", "name": "Painting", "category": "painting", "space": "kitchen",
             "duration": {"optimistic": 2, "mostLikely": 3, "pessimistic": 4}, "cost": 800_000},
            {"id": "done", "name": "Handover", "category": "cleanup", "duration": 0,
             "isMilestone": True},
        ],
        "dependencies": [
            {"id": "d1", "sourceTaskId": "demo", "targetTaskId": "wiring", "type": "FS"},
            {"id": "d2", "sourceTaskId": "demo", "targetTaskId": "pipes", "type": "SS", "lag": 1},
            {"id": "d3", "sourceTaskId": "wiring", "targetTaskId": "paint", "type": "FS",
             "lag": 1, "lagKind": "weather-dependent"},
            {"id": "d4", "sourceTaskId": "pipes", "targetTaskId": "paint", "type": "FS"},
            {"id": "d5", "sourceTaskId": "paint", "targetTaskId": "done", "type": "FS"},
        ],
        "resourceTypes": [
            {"name": "electrician", "capacity": 1},
            {"name": "plumber", "capacity": 1},
        ],
        "resourceRequirements": [
            {"taskId": "wiring", "resourceType": "electrician", "quantity": 1},
            {"taskId": "pipes", "resourceType": "plumber", "quantity": 1},
            {"taskId": "paint", "resourceType": "painter", "quantity": 2},
        ],
        "regulations": [
            {"id": "quiet-weekdays", "kind": "noise", "categories": ["demolition"],
             "timeRestriction": {"allowedDays": [0, 1, 2, 3, 4],
                                 "allowedHours": {"start": 9, "end": 17}}},
        ],
        "environment": {"season": "winter", "humidity": 60, "temperature": 5,
                        "rainProbability": 0.2},
        "expertise": {"level": "intermediate", "years": 5},
        "config": {"startDate": START_DATE, "iterations": 400, "seed": 7,
                   "simulationBlockSize": 100},
    }


@pytest.fixture
def renovation_project(renovation_data) -> ProjectInput:
    return parse_project(renovation_data)

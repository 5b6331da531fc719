"""
Граф зависимостей задач.

Граф хранит задачи и зависимости одного расчета и отклоняет связь, если она
ссылается на неизвестную задачу, имеет неизвестный тип или замыкает цикл.
"""
import logging
from typing import Dict, Iterable, List, Mapping, Optional

from sitescheduler.data.models import (
    Dependency, DependencyType, LagKind, ProjectInput, Task
)
from sitescheduler.errors import CycleDetected, ValidationError

logger = logging.getLogger(__name__)


def find_path(edges: Mapping[str, Iterable[str]], start: str, goal: str) -> Optional[List[str]]:
    """
    Поиск пути между двумя задачами обходом в глубину.

    Args:
        edges: Смежность: идентификатор задачи -> идентификаторы последователей
        start: Начальная задача
        goal: Целевая задача

    Returns:
        Идентификаторы задач от start до goal включительно или None, если goal недостижима
    """
    stack = [(start, [start])]
    seen = set()
    while stack:
        node, path = stack.pop()
        if node == goal:
            return path
        if node in seen:
            continue
        seen.add(node)
        for successor in edges.get(node, ()):
            if successor not in seen:
                stack.append((successor, path + [successor]))
    return None


def would_create_cycle(edges: Mapping[str, Iterable[str]], source: str, target: str) -> bool:
    """
    Проверяет, замкнет ли связь source -> target цикл.

    Набор связей только читается и не изменяется.

    Args:
        edges: Текущая смежность: идентификатор задачи -> идентификаторы последователей
        source: Начало проверяемой связи
        target: Конец проверяемой связи

    Returns:
        True, если source достижима из target (или source == target)
    """
    return find_path(edges, target, source) is not None


def validate_project(project: ProjectInput) -> None:
    """
    Отклоняет данные проекта, которые нельзя спланировать.

    Ссылки зависимостей и циклы проверяются при добавлении связей в TaskGraph;
    здесь проверяется все остальное.

    Args:
        project: Проверяемый проект

    Raises:
        ValidationError: Со списком всех найденных проблем
    """
    errors = []

    seen_tasks = set()
    for task in project.tasks:
        if task.id in seen_tasks:
            errors.append(f"повторный идентификатор задачи '{task.id}'")
        seen_tasks.add(task.id)

    seen_types = set()
    for resource in project.resourceTypes:
        if resource.name in seen_types:
            errors.append(f"повторный тип ресурса '{resource.name}'")
        seen_types.add(resource.name)
        if resource.capacity <= 0:
            errors.append(f"тип ресурса '{resource.name}' имеет мощность {resource.capacity}")

    capacities = project.capacities()
    for requirement in project.resourceRequirements:
        if requirement.taskId not in seen_tasks:
            errors.append(f"требование ресурса ссылается на неизвестную задачу '{requirement.taskId}'")
        if requirement.quantity <= 0:
            errors.append(
                f"задача '{requirement.taskId}' требует {requirement.quantity} "
                f"ед. '{requirement.resourceType}'"
            )
        elif requirement.quantity > capacities[requirement.resourceType] > 0:
            errors.append(
                f"задача '{requirement.taskId}' требует {requirement.quantity} "
                f"ед. '{requirement.resourceType}', но мощность равна {capacities[requirement.resourceType]}"
            )

    for task in project.tasks:
        if task.duration.pessimistic < task.duration.optimistic:
            errors.append(f"у задачи '{task.id}' пессимистичная длительность меньше оптимистичной")

    if errors:
        raise ValidationError(errors)


def _matches(task: Task, selector: str) -> bool:
    return task.id == selector or task.category == selector


class TaskGraph:
    """
    Ориентированный ациклический граф задач.

    Attributes:
        tasks: Задачи по идентификатору в порядке добавления
        dependencies: Принятые зависимости в порядке добавления
        allow_cycles: Принимать циклические связи (только для диагностики)
    """

    def __init__(self, allow_cycles: bool = False):
        self.tasks: Dict[str, Task] = {}
        self.dependencies: List[Dependency] = []
        self.allow_cycles = allow_cycles
        self._successors: Dict[str, List[str]] = {}
        self._incoming: Dict[str, List[Dependency]] = {}
        self._outgoing: Dict[str, List[Dependency]] = {}
        self._dependency_ids = set()

    @property
    def task_ids(self) -> List[str]:
        return list(self.tasks)

    def add_task(self, task: Task) -> None:
        if task.id in self.tasks:
            raise ValidationError(f"повторный идентификатор задачи '{task.id}'")
        self.tasks[task.id] = task
        self._successors[task.id] = []
        self._incoming[task.id] = []
        self._outgoing[task.id] = []

    def add_dependency(self, dependency: Dependency) -> None:
        """
        Добавляет зависимость после проверки.

        Args:
            dependency: Добавляемая зависимость

        Raises:
            ValidationError: Неизвестная задача, неизвестный тип или повторный идентификатор
            CycleDetected: Связь замыкает цикл; граф не изменяется
        """
        try:
            dependency_type = DependencyType(dependency.type)
        except ValueError:
            raise ValidationError(
                f"зависимость '{dependency.id}' имеет неизвестный тип '{dependency.type}'"
            ) from None
        if dependency_type is not dependency.type:
            dependency = dependency.model_copy(update={"type": dependency_type})

        missing = [
            task_id for task_id in (dependency.sourceTaskId, dependency.targetTaskId)
            if task_id not in self.tasks
        ]
        if missing:
            raise ValidationError(
                f"зависимость '{dependency.id}' ссылается на неизвестные задачи {missing}"
            )
        if dependency.id in self._dependency_ids:
            raise ValidationError(f"повторный идентификатор зависимости '{dependency.id}'")

        if not self.allow_cycles:
            path = find_path(self._successors, dependency.targetTaskId, dependency.sourceTaskId)
            if path is not None:
                raise CycleDetected([dependency.sourceTaskId] + path)

        self.dependencies.append(dependency)
        self._dependency_ids.add(dependency.id)
        self._successors[dependency.sourceTaskId].append(dependency.targetTaskId)
        self._outgoing[dependency.sourceTaskId].append(dependency)
        self._incoming[dependency.targetTaskId].append(dependency)

    def predecessors(self, task_id: str) -> List[Dependency]:
        """Зависимости, в которых задача является последователем."""
        return self._incoming[task_id]

    def successors(self, task_id: str) -> List[Dependency]:
        """Зависимости, в которых задача является предшественником."""
        return self._outgoing[task_id]

    def dependency_count(self, task_id: str) -> int:
        return len(self._incoming[task_id])

    def edges(self) -> Dict[str, List[str]]:
        return {task_id: list(successors) for task_id, successors in self._successors.items()}

    @classmethod
    def from_project(cls, project: ProjectInput, allow_cycles: bool = False) -> "TaskGraph":
        """
        Строит и проверяет граф проекта.

        Правила очередности из регламентов становятся зависимостями
        finish-to-start с минимальным интервалом правила в качестве задержки.

        Args:
            project: Входные данные проекта
            allow_cycles: Принимать циклические связи вместо CycleDetected

        Returns:
            Граф задач
        """
        validate_project(project)
        graph = cls(allow_cycles=allow_cycles)
        for task in project.tasks:
            graph.add_task(task)
        for dependency in project.dependencies:
            graph.add_dependency(dependency)
        for dependency in cls._regulatory_dependencies(project):
            graph.add_dependency(dependency)
        logger.debug(
            f"Граф задач построен: {len(graph.tasks)} задач, {len(graph.dependencies)} зависимостей"
        )
        return graph

    @staticmethod
    def _regulatory_dependencies(project: ProjectInput) -> List[Dependency]:
        derived: Dict[str, Dependency] = {}
        for regulation in project.regulations:
            affected = [task for task in project.tasks if regulation.applies_to(task)]
            for rule in regulation.sequenceRules:
                for task in affected:
                    for other in project.tasks:
                        if other.id == task.id:
                            continue
                        pairs = []
                        if any(_matches(other, selector) for selector in rule.mustFollow):
                            pairs.append((other.id, task.id))
                        if any(_matches(other, selector) for selector in rule.mustPrecede):
                            pairs.append((task.id, other.id))
                        for source, target in pairs:
                            dependency_id = f"reg:{regulation.id}:{source}->{target}"
                            existing = derived.get(dependency_id)
                            if existing is not None and existing.lag >= rule.minimumGap:
                                continue
                            derived[dependency_id] = Dependency(
                                id=dependency_id,
                                sourceTaskId=source,
                                targetTaskId=target,
                                type=DependencyType.FS,
                                lag=rule.minimumGap,
                                lagKind=LagKind.MANDATORY,
                            )
        return list(derived.values())

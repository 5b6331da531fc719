"""
Хранилища проектов.

Движок не хранит проекты в состоянии модуля; вызывающий код передает ему
репозиторий поверх собственного хранилища.
"""
from abc import ABC, abstractmethod
import os
from typing import Dict, List, Optional

from sitescheduler.data.loader import load_project, save_model
from sitescheduler.data.models import ProjectInput


class ProjectRepository(ABC):
    """Интерфейс хранения и получения входных данных проектов."""

    @abstractmethod
    def find_by_id(self, project_id: str) -> Optional[ProjectInput]:
        """
        Ищет проект по идентификатору.

        Args:
            project_id: Идентификатор проекта

        Returns:
            Проект или None, если он не сохранен
        """

    @abstractmethod
    def find_all(self) -> List[ProjectInput]:
        """Возвращает все сохраненные проекты."""

    @abstractmethod
    def save(self, project: ProjectInput) -> ProjectInput:
        """
        Сохраняет проект, заменяя проект с тем же идентификатором.

        Args:
            project: Сохраняемый проект

        Returns:
            Сохраненный проект
        """

    @abstractmethod
    def delete(self, project_id: str) -> bool:
        """
        Удаляет проект.

        Args:
            project_id: Идентификатор проекта

        Returns:
            True, если проект был удален
        """


class InMemoryProjectRepository(ProjectRepository):
    """Репозиторий поверх словаря, которым владеет вызывающий код."""

    def __init__(self, storage: Optional[Dict[str, ProjectInput]] = None):
        self._storage = storage if storage is not None else {}

    def find_by_id(self, project_id: str) -> Optional[ProjectInput]:
        return self._storage.get(project_id)

    def find_all(self) -> List[ProjectInput]:
        return list(self._storage.values())

    def save(self, project: ProjectInput) -> ProjectInput:
        self._storage[project.projectId] = project
        return project

    def delete(self, project_id: str) -> bool:
        return self._storage.pop(project_id, None) is not None


class JsonProjectRepository(ProjectRepository):
    """Репозиторий, хранящий по одному файлу <projectId>.json на проект в каталоге."""

    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, project_id: str) -> str:
        return os.path.join(self.directory, f"{project_id}.json")

    def find_by_id(self, project_id: str) -> Optional[ProjectInput]:
        path = self._path(project_id)
        if not os.path.exists(path):
            return None
        return load_project(path)

    def find_all(self) -> List[ProjectInput]:
        return [
            load_project(os.path.join(self.directory, name))
            for name in sorted(os.listdir(self.directory))
            if name.endswith(".json")
        ]

    def save(self, project: ProjectInput) -> ProjectInput:
        save_model(project, self._path(project.projectId))
        return project

    def delete(self, project_id: str) -> bool:
        path = self._path(project_id)
        if not os.path.exists(path):
            return False
        os.remove(path)
        return True

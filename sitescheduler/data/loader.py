"""
Чтение и запись файлов проекта.
"""
import json
import logging
import os
from typing import Any, Dict

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from sitescheduler.data.models import ProjectInput
from sitescheduler.errors import ValidationError

logger = logging.getLogger(__name__)


def parse_project(data: Dict[str, Any]) -> ProjectInput:
    """
    Создает ProjectInput из декодированного JSON.

    Args:
        data: Декодированное описание проекта

    Returns:
        Проверенные входные данные проекта

    Raises:
        ValidationError: Если данные не описывают корректный проект
    """
    try:
        return ProjectInput.model_validate(data)
    except PydanticValidationError as exc:
        errors = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        raise ValidationError(errors) from exc


def load_project(file_path: str) -> ProjectInput:
    """
    Загружает описание проекта из JSON-файла.

    Args:
        file_path: Путь к JSON-файлу

    Returns:
        Проверенные входные данные проекта

    Raises:
        ValidationError: Если файл не является корректным JSON или проектом
    """
    logger.info(f"Загрузка проекта из {file_path}")
    with open(file_path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"{file_path}: {exc}") from exc
    project = parse_project(data)
    logger.info(
        f"Загружен проект {project.projectId}: {len(project.tasks)} задач, "
        f"{len(project.dependencies)} зависимостей"
    )
    return project


def save_model(model: BaseModel, file_path: str) -> None:
    """
    Записывает модель в JSON-файл, создавая родительские каталоги.

    Args:
        model: Любая pydantic-модель (проект, расписание или прогноз)
        file_path: Путь назначения
    """
    directory = os.path.dirname(file_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(file_path, "w", encoding="utf-8") as f:
        json.dump(model.model_dump(mode="json"), f, indent=2, ensure_ascii=False)
    logger.info(f"{type(model).__name__} сохранен в {file_path}")

"""
Основной модуль движка календарного планирования.

Класс ProjectScheduler связывает компоненты: строит граф задач, запускает
расчет CPM с учетом ресурсов и разрешением конфликтов, собирает расписание
с датами и выполняет вероятностный прогноз.
"""
import logging
import threading
from typing import Callable, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from rich.logging import RichHandler

from sitescheduler.data.loader import load_project, save_model
from sitescheduler.data.models import ProjectInput
from sitescheduler.data.repository import ProjectRepository
from sitescheduler.data.results import ProbabilisticForecast, ScheduleResult
from sitescheduler.errors import ValidationError
from sitescheduler.models.assembler import ScheduleAssembler
from sitescheduler.models.conflict_detector import ConflictDetector
from sitescheduler.models.conflict_resolver import ConflictResolver
from sitescheduler.models.cpm import CPMEngine
from sitescheduler.models.forecaster import ProbabilisticForecaster
from sitescheduler.models.resource_scheduler import ResourceConstrainedScheduler
from sitescheduler.models.task_graph import TaskGraph
from sitescheduler.utils.calendar_utils import WorkCalendar


class ProjectScheduler:
    """
    Планирует и прогнозирует один проект.
    """

    def __init__(
        self,
        project_input: Optional[ProjectInput] = None,
        log_level: int = logging.INFO
    ):
        """
        Инициализирует планировщик.

        Args:
            project_input: Проект для планирования; может быть загружен позже
            log_level: Уровень логирования
        """
        # Настройка логирования
        self.logger = logging.getLogger(__name__)
        self.logger.setLevel(log_level)

        # Если обработчики еще не настроены
        if not self.logger.handlers:
            handler = RichHandler(rich_tracebacks=True)
            handler.setLevel(log_level)
            handler.setFormatter(logging.Formatter("%(message)s"))
            self.logger.addHandler(handler)

        self.log_level = log_level
        self.project_input = project_input
        self.graph: Optional[TaskGraph] = None
        self.cpm: Optional[CPMEngine] = None
        self.calendar: Optional[WorkCalendar] = None

    @classmethod
    def from_repository(
        cls,
        repository: ProjectRepository,
        project_id: str,
        log_level: int = logging.INFO
    ) -> "ProjectScheduler":
        """
        Создает планировщик для сохраненного проекта.

        Args:
            repository: Хранилище проектов
            project_id: Идентификатор проекта
            log_level: Уровень логирования

        Returns:
            Планировщик проекта

        Raises:
            ValidationError: Если проект не найден в хранилище
        """
        project = repository.find_by_id(project_id)
        if project is None:
            raise ValidationError(f"проект '{project_id}' не найден")
        return cls(project, log_level=log_level)

    def load_data_from_file(self, file_path: str) -> ProjectInput:
        """
        Загружает проект из JSON-файла.

        Args:
            file_path: Путь к файлу

        Returns:
            Загруженный проект
        """
        self.project_input = load_project(file_path)
        self.graph = None
        self.cpm = None
        return self.project_input

    def override_config(self, **overrides) -> None:
        """
        Заменяет поля конфигурации; значения None игнорируются.

        Args:
            **overrides: Имена и значения полей SchedulingConfig

        Raises:
            ValidationError: Если новое значение некорректно
        """
        project = self._require_project()
        overrides = {key: value for key, value in overrides.items() if value is not None}
        if not overrides:
            return
        try:
            config = project.config.model_validate({**project.config.model_dump(), **overrides})
        except PydanticValidationError as exc:
            raise ValidationError(str(exc)) from exc
        self.project_input = project.model_copy(update={"config": config})
        self.graph = None
        self.cpm = None

    def _require_project(self) -> ProjectInput:
        if self.project_input is None:
            raise ValidationError("проект не загружен")
        return self.project_input

    def build(self) -> TaskGraph:
        """
        Проверяет проект и строит граф задач и движок CPM.

        Returns:
            Граф задач

        Raises:
            ValidationError: Если данные проекта некорректны
            CycleDetected: Если зависимости образуют цикл, а циклы не допускаются
        """
        project = self._require_project()
        config = project.config
        allow_cycles = config.cyclePolicy == "warn"
        self.graph = TaskGraph.from_project(project, allow_cycles=allow_cycles)
        self.cpm = CPMEngine(self.graph, project.environment)
        self.calendar = WorkCalendar(config.startDate, config.workDays, config.holidays)
        self.logger.info(
            f"Проект {project.projectId}: {len(self.graph.tasks)} задач, "
            f"{len(self.graph.dependencies)} зависимостей, начало {self.calendar.start_date}"
        )
        return self.graph

    def compute_schedule(self) -> ScheduleResult:
        """
        Выполняет детерминированный расчет расписания.

        Returns:
            Расписание; при best-effort результате заполнено поле `unresolved`
        """
        if self.graph is None:
            self.build()
        project = self._require_project()
        config = project.config
        requirements = project.requirements_by_task()
        daily_costs = project.daily_costs()

        scheduler = ResourceConstrainedScheduler(
            self.graph,
            self.cpm,
            self.calendar,
            config,
            regulations=project.regulations,
            capacities=project.capacities(),
            requirements=requirements,
            log_level=self.log_level,
        )
        detector = ConflictDetector(
            self.graph,
            self.cpm,
            self.calendar,
            config,
            regulations=project.regulations,
            environment=project.environment,
            requirements=requirements,
            daily_costs=daily_costs,
        )
        resolver = ConflictResolver(
            scheduler, detector, config, daily_costs=daily_costs, log_level=self.log_level
        )
        outcome = resolver.resolve()
        assembler = ScheduleAssembler(self.graph, self.calendar, config, requirements)
        result = assembler.assemble(outcome, project.projectId)

        self.logger.info(
            f"Расписание: {result.totalWorkingDays:g} рабочих дней "
            f"({result.startDate} - {result.endDate}), "
            f"{len(result.criticalPath)} критических задач, {len(result.conflicts)} открытых конфликтов"
        )
        return result

    def forecast(
        self,
        progress_callback: Optional[Callable[[float], None]] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ProbabilisticForecast:
        """
        Выполняет прогноз методом Монте-Карло.

        Args:
            progress_callback: Получает долю выполненных итераций
            cancel_event: Досрочно останавливает симуляцию, если установлен

        Returns:
            Прогноз
        """
        if self.graph is None:
            self.build()
        project = self._require_project()
        forecaster = ProbabilisticForecaster(
            self.cpm,
            project.config,
            expertise=project.expertise,
            environment=project.environment,
            log_level=self.log_level,
        )
        return forecaster.forecast(progress_callback=progress_callback, cancel_event=cancel_event)

    def save_result(self, result, output_file: str) -> None:
        """
        Сохраняет расписание или прогноз в JSON.

        Args:
            result: ScheduleResult или ProbabilisticForecast
            output_file: Путь для сохранения
        """
        save_model(result, output_file)


def schedule_project(
    input_file: str,
    output_file: str,
    forecast_file: Optional[str] = None,
    iterations: Optional[int] = None,
    seed: Optional[int] = None,
    workers: Optional[int] = None,
    timeout: Optional[float] = None,
    start_date: Optional[str] = None,
    log_level: int = logging.INFO,
    progress_callback: Optional[Callable[[float], None]] = None
) -> Tuple[ScheduleResult, Optional[ProbabilisticForecast]]:
    """
    Планирует проект из файла и при необходимости строит прогноз.

    Args:
        input_file: JSON-файл проекта
        output_file: Путь для сохранения расписания
        forecast_file: Путь для сохранения прогноза; без прогноза, если None
        iterations: Заменяет количество итераций из конфигурации
        seed: Заменяет зерно генератора из конфигурации
        workers: Заменяет количество потоков из конфигурации
        timeout: Заменяет ограничение времени симуляции
        start_date: Заменяет дату начала проекта
        log_level: Уровень логирования
        progress_callback: Получает долю выполненных итераций симуляции

    Returns:
        Расписание и прогноз (None, если прогноз не запрошен)
    """
    scheduler = ProjectScheduler(log_level=log_level)
    scheduler.load_data_from_file(input_file)
    scheduler.override_config(
        iterations=iterations,
        seed=seed,
        workers=workers,
        timeout=timeout,
        startDate=start_date,
    )

    result = scheduler.compute_schedule()
    scheduler.save_result(result, output_file)

    forecast = None
    if forecast_file:
        forecast = scheduler.forecast(progress_callback=progress_callback)
        scheduler.save_result(forecast, forecast_file)
    return result, forecast

"""
Основной файл для запуска планирования проекта из командной строки.
"""
import argparse
import logging
import sys

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress
from rich.table import Table

from sitescheduler.data.repository import JsonProjectRepository
from sitescheduler.errors import SchedulingError
from sitescheduler.scheduler import ProjectScheduler, schedule_project


def print_summary(console: Console, result, forecast) -> None:
    """Выводит расписание и прогноз в виде таблиц."""
    table = Table(title=f"Расписание {result.projectId}")
    table.add_column("Задача")
    table.add_column("Начало")
    table.add_column("Окончание")
    table.add_column("Резерв", justify="right")
    table.add_column("Критическая")
    for task in result.tasks:
        table.add_row(
            task.id,
            task.startDate.isoformat(),
            task.endDate.isoformat(),
            f"{task.slack:g}",
            "да" if task.isCritical else "",
        )
    console.print(table)
    console.print(
        f"Итого: {result.totalWorkingDays:g} рабочих дней, "
        f"{result.totalCalendarDays} календарных дней, стоимость {result.totalCost:,.0f}"
    )
    for warning in result.warnings:
        console.print(f"[yellow]предупреждение:[/yellow] {warning}")
    if forecast is not None:
        console.print(
            f"Прогноз: P10 {forecast.p10:.1f} / P50 {forecast.p50:.1f} / P90 {forecast.p90:.1f} дней, "
            f"ожидаемо {forecast.expectedDuration:.1f}, риск {forecast.totalRiskScore:.2f} "
            f"({forecast.iterationsCompleted} итераций)"
        )


def main():
    """
    Основная функция: разбирает аргументы, строит расписание и сохраняет результаты.

    Returns:
        0 при успехе, 1 при ошибке, 2 если найдено только расписание best-effort
    """
    # Создание парсера аргументов командной строки
    parser = argparse.ArgumentParser(
        description="Календарное планирование строительного проекта: CPM и прогноз Монте-Карло"
    )
    parser.add_argument(
        "-i", "--input",
        type=str,
        default="project.json",
        help="Путь к входному файлу (по умолчанию: project.json)"
    )
    parser.add_argument(
        "-o", "--output",
        type=str,
        default="schedule.json",
        help="Путь для сохранения расписания (по умолчанию: schedule.json)"
    )
    parser.add_argument(
        "-f", "--forecast",
        type=str,
        help="Путь для сохранения прогноза Монте-Карло (без прогноза, если не задан)"
    )
    parser.add_argument(
        "--store",
        type=str,
        help="Каталог сохраненных проектов; используется с --project вместо --input"
    )
    parser.add_argument(
        "--project",
        type=str,
        help="Идентификатор сохраненного проекта"
    )
    parser.add_argument("-n", "--iterations", type=int, help="Количество итераций Монте-Карло")
    parser.add_argument("-s", "--seed", type=int, help="Зерно генератора случайных чисел")
    parser.add_argument("-w", "--workers", type=int, help="Количество потоков симуляции")
    parser.add_argument("-t", "--timeout", type=float, help="Ограничение времени симуляции в секундах")
    parser.add_argument("--start-date", type=str, help="Дата начала проекта")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Выводить отладочную информацию"
    )
    args = parser.parse_args()

    # Настройка логирования
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)]
    )
    logger = logging.getLogger("main")
    console = Console()

    try:
        with Progress(console=console, transient=True) as progress:
            task = progress.add_task("Симуляция...", total=1.0)

            def update(fraction: float) -> None:
                progress.update(task, completed=fraction)

            if args.store:
                if not args.project:
                    parser.error("--store требует --project")
                scheduler = ProjectScheduler.from_repository(
                    JsonProjectRepository(args.store), args.project, log_level=log_level
                )
                scheduler.override_config(
                    iterations=args.iterations,
                    seed=args.seed,
                    workers=args.workers,
                    timeout=args.timeout,
                    startDate=args.start_date,
                )
                result = scheduler.compute_schedule()
                scheduler.save_result(result, args.output)
                forecast = None
                if args.forecast:
                    forecast = scheduler.forecast(progress_callback=update)
                    scheduler.save_result(forecast, args.forecast)
            else:
                result, forecast = schedule_project(
                    input_file=args.input,
                    output_file=args.output,
                    forecast_file=args.forecast,
                    iterations=args.iterations,
                    seed=args.seed,
                    workers=args.workers,
                    timeout=args.timeout,
                    start_date=args.start_date,
                    log_level=log_level,
                    progress_callback=update,
                )
    except (SchedulingError, OSError) as e:
        logger.exception(f"Ошибка планирования: {e}")
        return 1

    print_summary(console, result, forecast)
    logger.info(f"Расписание сохранено в {args.output}")
    if result.unresolved is not None:
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())

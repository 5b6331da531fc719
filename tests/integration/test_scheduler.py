"""End-to-end tests for the project scheduler, the assembler and the CLI."""
import json
import sys
from datetime import date

import pytest

import main
from sitescheduler import ProjectScheduler, schedule_project
from sitescheduler.data.loader import load_project, save_model
from sitescheduler.data.repository import InMemoryProjectRepository, JsonProjectRepository
from sitescheduler.errors import CycleDetected, ValidationError
from sitescheduler.models.resource_scheduler import ResourceConstrainedScheduler, usage_at
from tests.conftest import make_project


def write_project(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


class TestScheduleAssembly:
    def test_literal_example_dates(self, literal_project):
        result = ProjectScheduler(literal_project).compute_schedule()
        assert result.startDate == date(2024, 1, 1)
        a, b, c = result.task("A"), result.task("B"), result.task("C")
        assert (a.startDate, a.endDate) == (date(2024, 1, 1), date(2024, 1, 3))
        # Offset 4 is Friday, offset 5 the following Monday
        assert (b.startDate, b.endDate) == (date(2024, 1, 5), date(2024, 1, 8))
        assert (c.startDate, c.endDate) == (date(2024, 1, 1), date(2024, 1, 4))
        assert result.endDate == date(2024, 1, 8)
        assert result.totalWorkingDays == 6
        assert result.totalCalendarDays == 8
        assert result.criticalPath == ["A", "B"]
        assert result.warnings == []
        assert not result.is_best_effort

    def test_start_on_weekend_moves_to_monday(self, literal_tasks, literal_dependencies):
        project = make_project(literal_tasks, literal_dependencies, config={"startDate": "2024-01-06"})
        result = ProjectScheduler(project).compute_schedule()
        assert result.startDate == date(2024, 1, 8)

    def test_holidays_are_skipped(self, literal_tasks, literal_dependencies):
        project = make_project(
            literal_tasks, literal_dependencies, config={"holidays": ["2024-01-02"]}
        )
        result = ProjectScheduler(project).compute_schedule()
        assert result.task("A").endDate == date(2024, 1, 4)

    def test_milestone_has_single_day(self, renovation_project):
        result = ProjectScheduler(renovation_project).compute_schedule()
        done = result.task("done")
        assert done.duration == 0
        assert done.startDate == done.endDate
        assert "done" in result.criticalPath

    def test_deadline_budget_and_brittleness_warnings(self, literal_tasks, literal_dependencies):
        for task in literal_tasks:
            task["cost"] = 1_000_000
        project = make_project(
            literal_tasks, literal_dependencies,
            config={"targetDuration": 4, "budget": 2_000_000},
        )
        result = ProjectScheduler(project).compute_schedule()
        assert any("exceeds target" in warning for warning in result.warnings)
        assert any("exceeds budget" in warning for warning in result.warnings)
        assert any("critical" in warning for warning in result.warnings)
        assert result.totalCost == 3_000_000

    def test_within_tolerance_no_deadline_warning(self, literal_project):
        project = literal_project.model_copy(
            update={"config": literal_project.config.model_copy(update={"targetDuration": 5.5})}
        )
        result = ProjectScheduler(project).compute_schedule()
        assert not any("exceeds target" in warning for warning in result.warnings)

    def test_cycle_raises_by_default(self):
        project = make_project(
            [{"id": "a", "duration": 1}, {"id": "b", "duration": 1}],
            [{"id": "d1", "sourceTaskId": "a", "targetTaskId": "b"},
             {"id": "d2", "sourceTaskId": "b", "targetTaskId": "a"}],
        )
        with pytest.raises(CycleDetected):
            ProjectScheduler(project).compute_schedule()

    def test_cycle_warns_when_opted_in(self):
        project = make_project(
            [{"id": "a", "duration": 1}, {"id": "b", "duration": 1}, {"id": "c", "duration": 1}],
            [{"id": "d1", "sourceTaskId": "a", "targetTaskId": "b"},
             {"id": "d2", "sourceTaskId": "b", "targetTaskId": "a"}],
            config={"cyclePolicy": "warn"},
        )
        result = ProjectScheduler(project).compute_schedule()
        assert any("cycle" in warning for warning in result.warnings)
        assert len(result.tasks) == 3


class TestProjectScheduler:
    def test_renovation_schedule(self, renovation_project):
        scheduler = ProjectScheduler(renovation_project)
        result = scheduler.compute_schedule()
        assert result.projectId == "renovation"
        assert {task.id for task in result.tasks} == {"demo", "wiring", "pipes", "paint", "done"}
        for task in result.tasks:
            assert task.startDate.weekday() < 5
            assert task.endDate.weekday() < 5
            assert task.startDate <= task.endDate
            assert task.isCritical == (task.slack <= 0)

    def test_renovation_respects_capacity(self, renovation_project):
        scheduler = ProjectScheduler(renovation_project)
        scheduler.compute_schedule()
        placed = ResourceConstrainedScheduler(
            scheduler.graph, scheduler.cpm, scheduler.calendar, renovation_project.config,
            regulations=renovation_project.regulations,
            capacities=renovation_project.capacities(),
            requirements=renovation_project.requirements_by_task(),
        ).schedule()
        for resource_type, bookings in placed.bookings.items():
            for booking in bookings:
                assert usage_at(bookings, booking.start) <= placed.capacities[resource_type]

    def test_forecast(self, renovation_project):
        scheduler = ProjectScheduler(renovation_project)
        forecast = scheduler.forecast()
        assert forecast.iterationsRequested == 400
        assert forecast.iterationsCompleted == 400
        assert forecast.seed == 7
        assert forecast.p10 <= forecast.p50 <= forecast.p90

    def test_override_config(self, renovation_project):
        scheduler = ProjectScheduler(renovation_project)
        scheduler.override_config(iterations=50, seed=None, startDate="2024-02-05")
        config = scheduler.project_input.config
        assert config.iterations == 50
        assert config.seed == 7
        assert config.startDate == date(2024, 2, 5)

    def test_invalid_override(self, renovation_project):
        scheduler = ProjectScheduler(renovation_project)
        with pytest.raises(ValidationError):
            scheduler.override_config(iterations=0)

    def test_no_project_loaded(self):
        with pytest.raises(ValidationError, match="проект не загружен"):
            ProjectScheduler().compute_schedule()

    def test_from_repository(self, renovation_project):
        repository = InMemoryProjectRepository()
        repository.save(renovation_project)
        scheduler = ProjectScheduler.from_repository(repository, "renovation")
        assert scheduler.project_input is renovation_project
        with pytest.raises(ValidationError, match="не найден"):
            ProjectScheduler.from_repository(repository, "missing")

    def test_schedule_project_writes_outputs(self, tmp_path, renovation_data):
        input_file = write_project(tmp_path / "project.json", renovation_data)
        output_file = str(tmp_path / "out" / "schedule.json")
        forecast_file = str(tmp_path / "out" / "forecast.json")
        result, forecast = schedule_project(
            input_file, output_file, forecast_file, iterations=120, seed=3
        )
        assert forecast.iterationsRequested == 120
        with open(output_file, encoding="utf-8") as f:
            saved = json.load(f)
        assert saved["projectId"] == "renovation"
        assert saved["startDate"] == "2024-01-01"
        assert len(saved["tasks"]) == len(result.tasks)
        with open(forecast_file, encoding="utf-8") as f:
            assert json.load(f)["seed"] == 3

    def test_schedule_project_without_forecast(self, tmp_path, renovation_data):
        input_file = write_project(tmp_path / "project.json", renovation_data)
        _, forecast = schedule_project(input_file, str(tmp_path / "schedule.json"))
        assert forecast is None


class TestLoaderAndRepositories:
    def test_missing_tasks(self, tmp_path):
        path = write_project(tmp_path / "bad.json", {"projectId": "x"})
        with pytest.raises(ValidationError) as excinfo:
            load_project(path)
        assert any(error.startswith("tasks") for error in excinfo.value.errors)
        assert isinstance(excinfo.value, ValueError)

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ValidationError, match="broken.json"):
            load_project(str(path))

    @pytest.mark.parametrize("task", [
        {"id": "a", "duration": {"optimistic": 5, "mostLikely": 4, "pessimistic": 3}},
        {"id": "a", "duration": -1},
    ])
    def test_bad_durations(self, task):
        with pytest.raises(ValidationError):
            make_project([task])

    def test_unknown_dependency_type(self):
        with pytest.raises(ValidationError):
            make_project(
                [{"id": "a", "duration": 1}, {"id": "b", "duration": 1}],
                [{"id": "d", "sourceTaskId": "a", "targetTaskId": "b", "type": "XX"}],
            )

    def test_round_trip_through_file(self, tmp_path, renovation_project):
        path = str(tmp_path / "renovation.json")
        save_model(renovation_project, path)
        assert load_project(path) == renovation_project

    def test_in_memory_repository_uses_caller_storage(self, renovation_project):
        storage = {}
        repository = InMemoryProjectRepository(storage)
        repository.save(renovation_project)
        assert storage == {"renovation": renovation_project}
        assert repository.find_all() == [renovation_project]
        assert repository.delete("renovation") is True
        assert repository.delete("renovation") is False
        assert repository.find_by_id("renovation") is None

    def test_json_repository(self, tmp_path, renovation_project, literal_project):
        repository = JsonProjectRepository(str(tmp_path / "store"))
        repository.save(renovation_project)
        repository.save(literal_project)
        assert repository.find_by_id("renovation") == renovation_project
        assert [project.projectId for project in repository.find_all()] == ["renovation", "test-project"]
        assert repository.delete("test-project") is True
        assert repository.find_by_id("test-project") is None
        assert repository.delete("test-project") is False


class TestCommandLine:
    def test_main_writes_schedule(self, tmp_path, monkeypatch, renovation_data):
        input_file = write_project(tmp_path / "project.json", renovation_data)
        output_file = tmp_path / "schedule.json"
        forecast_file = tmp_path / "forecast.json"
        monkeypatch.setattr(sys, "argv", [
            "main.py", "-i", input_file, "-o", str(output_file), "-f", str(forecast_file),
            "-n", "100", "-s", "1",
        ])
        assert main.main() == 0
        assert output_file.exists()
        assert json.loads(forecast_file.read_text(encoding="utf-8"))["iterationsRequested"] == 100

    def test_main_from_store(self, tmp_path, monkeypatch, renovation_project):
        store = tmp_path / "store"
        JsonProjectRepository(str(store)).save(renovation_project)
        output_file = tmp_path / "schedule.json"
        monkeypatch.setattr(sys, "argv", [
            "main.py", "--store", str(store), "--project", "renovation", "-o", str(output_file),
        ])
        assert main.main() == 0
        assert json.loads(output_file.read_text(encoding="utf-8"))["projectId"] == "renovation"

    def test_main_reports_missing_file(self, tmp_path, monkeypatch):
        monkeypatch.setattr(sys, "argv", [
            "main.py", "-i", str(tmp_path / "missing.json"), "-o", str(tmp_path / "schedule.json"),
        ])
        assert main.main() == 1

    def test_main_reports_malformed_json(self, tmp_path, monkeypatch):
        input_file = tmp_path / "broken.json"
        input_file.write_text("{not json", encoding="utf-8")
        monkeypatch.setattr(sys, "argv", [
            "main.py", "-i", str(input_file), "-o", str(tmp_path / "schedule.json"),
        ])
        assert main.main() == 1
        assert not (tmp_path / "schedule.json").exists()

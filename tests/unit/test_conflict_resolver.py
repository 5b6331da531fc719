"""Tests for conflict resolution."""
import itertools

import pytest

from sitescheduler.data.results import (
    AdjustmentType, Resolution, ResolutionImpact, ResolutionType, ScheduleAdjustment,
    ScheduleDirectives
)
from sitescheduler.models.conflict_resolver import ConflictResolver, apply_resolution
from tests.conftest import make_project
from tests.unit.test_conflict_detector import pipeline


def resolver_for(project, **kwargs):
    scheduler, detector = pipeline(project)
    return ConflictResolver(scheduler, detector, project.config, daily_costs=project.daily_costs(), **kwargs)


def space_project(**config):
    return make_project(
        [
            {"id": "drill", "duration": 2, "category": "drilling", "space": "kitchen"},
            {"id": "paint", "duration": 3, "category": "painting", "space": "kitchen"},
        ],
        config=config,
    )


class TestResolutionScore:
    @pytest.mark.parametrize("duration,cost,quality,expected", [
        (0, 0, 0, 0.0),
        (2, 0, 0, -1.0),
        (0, 10_000_000, 0, -0.3),
        (0, 0, 0.5, 0.1),
        (1, 5_000_000, -0.1, -0.5 - 0.15 - 0.02),
    ])
    def test_weights(self, duration, cost, quality, expected):
        resolution = Resolution(
            id="r", conflictId="c", type=ResolutionType.DELAY,
            impact=ResolutionImpact(durationChange=duration, costChange=cost, qualityImpact=quality),
        )
        assert resolution.score(10_000_000) == pytest.approx(expected)


class TestApplyResolution:
    def test_move_keeps_highest_floor(self):
        directives = ScheduleDirectives(startFloors={"a": 4})
        resolution = Resolution(
            id="r", conflictId="c", type=ResolutionType.DELAY,
            adjustments=[ScheduleAdjustment(taskId="a", adjustmentType=AdjustmentType.MOVE, newStart=2)],
        )
        assert apply_resolution(directives, resolution) is False
        assert directives.startFloors == {"a": 4}

    def test_split_then_merge(self):
        directives = ScheduleDirectives()
        split = Resolution(
            id="s", conflictId="c", type=ResolutionType.SEQUENCE_CHANGE,
            adjustments=[ScheduleAdjustment(taskId="a", adjustmentType=AdjustmentType.SPLIT, chunkSize=1)],
        )
        merge = Resolution(
            id="m", conflictId="c", type=ResolutionType.SEQUENCE_CHANGE,
            adjustments=[ScheduleAdjustment(taskId="a", adjustmentType=AdjustmentType.MERGE)],
        )
        assert apply_resolution(directives, split) is True
        assert directives.splitChunks == {"a": 1}
        assert apply_resolution(directives, merge) is True
        assert directives.splitChunks == {}

    def test_capacity_method_and_partition(self):
        directives = ScheduleDirectives()
        resolution = Resolution(
            id="r", conflictId="c", type=ResolutionType.RESOURCE_ADD,
            capacityChanges={"plumber": 1},
            methodChangeTasks=["a"],
            partitionedTasks=["a", "b"],
        )
        assert apply_resolution(directives, resolution) is True
        assert directives.extraCapacity == {"plumber": 1}
        assert directives.methodChanged == ["a"]
        assert directives.is_partitioned("b", "a")


class TestConflictResolver:
    def test_advisory_conflicts_are_left_alone(self):
        outcome = resolver_for(space_project()).resolve()
        assert outcome.unresolved is None
        assert outcome.rounds == 0
        assert outcome.appliedResolutions == []
        assert len(outcome.conflicts) == 1

    def test_best_scoring_resolution_is_applied(self):
        outcome = resolver_for(space_project(resolveSeverities=["critical", "high"])).resolve()
        assert outcome.unresolved is None
        assert outcome.conflicts == []
        assert outcome.rounds == 1
        assert [r.type for r in outcome.appliedResolutions] == [ResolutionType.PARALLEL]
        assert outcome.extraCost == pytest.approx(5_000_000)
        assert outcome.qualityImpact == pytest.approx(-0.1)
        assert outcome.directives.is_partitioned("drill", "paint")

    def test_dependency_conflict_resolved_by_delay(self):
        project = make_project(
            [{"id": "p", "duration": 3}, {"id": "s", "duration": 5}],
            [{"id": "ff", "sourceTaskId": "p", "targetTaskId": "s", "type": "FF"}],
            config={"resolveSeverities": ["critical", "high"]},
        )
        outcome = resolver_for(project).resolve()
        assert outcome.unresolved is None
        assert outcome.state.nodes["p"].earlyStart == 2
        assert outcome.state.nodes["p"].earlyFinish <= outcome.state.nodes["s"].earlyFinish
        assert outcome.baselineFinish == 5

    def test_zero_rounds_returns_best_effort(self):
        project = space_project(resolveSeverities=["high"], maxResolutionRounds=0)
        outcome = resolver_for(project).resolve()
        assert outcome.rounds == 0
        assert outcome.unresolved is not None
        assert [c.id for c in outcome.unresolved.remainingConflicts] == ["space:kitchen:drill:paint"]
        assert outcome.unresolved.attempts == 4
        assert outcome.alternativeUsed is None

    def test_time_budget(self):
        project = space_project(resolveSeverities=["high"], resolutionTimeBudget=0.5)
        clock = itertools.count()
        outcome = resolver_for(project, clock=lambda: float(next(clock))).resolve()
        assert outcome.unresolved is not None
        assert outcome.unresolved.reason == "resolution time budget exhausted"
        assert outcome.rounds == 0

    def test_conflict_without_resolutions_terminates(self):
        project = make_project(
            [{"id": "hammer", "duration": 2, "category": "hammering"}],
            regulations=[
                {"id": "morning", "kind": "noise", "categories": ["hammering"],
                 "timeRestriction": {"allowedHours": {"start": 8, "end": 11}}},
                {"id": "evening", "kind": "noise", "categories": ["hammering"],
                 "timeRestriction": {"allowedHours": {"start": 14, "end": 17}}},
            ],
        )
        outcome = resolver_for(project).resolve()
        assert outcome.unresolved is not None
        assert {c.id for c in outcome.unresolved.remainingConflicts} == {
            "regulatory:morning:hammer:hours", "regulatory:evening:hammer:hours"
        }
        assert outcome.rounds == 1

    def test_resource_augmentation_alternative(self):
        project = make_project(
            [{"id": "a", "duration": 2}, {"id": "b", "duration": 2}],
            resourceTypes=[{"name": "electrician", "capacity": 1}],
            resourceRequirements=[
                {"taskId": "a", "resourceType": "electrician"},
                {"taskId": "b", "resourceType": "electrician"},
            ],
        )
        resolver = resolver_for(project)
        state = resolver.scheduler.schedule()
        assert resolver.bottleneck(state, []) == "electrician"
        alternative = resolver.generate_alternative(
            "resource-augmentation", ScheduleDirectives(), state, [], state.projectFinish, 0.0, 0.0
        )
        assert alternative.directives.extraCapacity == {"electrician": 1}
        assert alternative.state.projectFinish == 2
        assert alternative.extraCost == pytest.approx(500_000 * 4)

    def test_unknown_alternative(self):
        resolver = resolver_for(space_project())
        state = resolver.scheduler.schedule()
        with pytest.raises(ValueError):
            resolver.generate_alternative("guesswork", ScheduleDirectives(), state, [], 0.0, 0.0, 0.0)


def hammering_project(**config):
    return make_project(
        [{"id": "hammer", "duration": 5, "category": "hammering"}],
        regulations=[{
            "id": "quiet",
            "kind": "noise",
            "categories": ["hammering"],
            "timeRestriction": {"allowedDays": [0, 1, 2]},
        }],
        config=config,
    )


class TestAlternativeSchedules:
    def test_task_splitting_is_selected_when_rounds_run_out(self):
        outcome = resolver_for(hammering_project(maxResolutionRounds=0)).resolve()
        assert outcome.rounds == 0
        assert outcome.alternativeUsed == "task-splitting"
        assert outcome.unresolved is None
        assert outcome.directives.splitChunks == {"hammer": 1.0}
        hammer = outcome.state.nodes["hammer"]
        # Monday to Wednesday, then the following Monday and Tuesday
        assert [segment.start for segment in hammer.segments] == [0, 1, 2, 5, 6]
        assert outcome.qualityImpact == pytest.approx(-0.05)
        assert outcome.baselineFinish == 5
        assert outcome.state.projectFinish == 7

    def test_unsplit_task_breaks_the_weekday_rule(self):
        resolver = resolver_for(hammering_project())
        state = resolver.scheduler.schedule()
        conflicts = resolver.detector.detect(state)
        assert [c.id for c in resolver.blocking(conflicts)] == ["regulatory:quiet:hammer:days"]

    def test_task_splitting_alternative(self):
        resolver = resolver_for(hammering_project())
        state = resolver.scheduler.schedule()
        conflicts = resolver.detector.detect(state)
        alternative = resolver.generate_alternative(
            "task-splitting", ScheduleDirectives(), state, conflicts, state.projectFinish, 0.0, 0.0
        )
        assert alternative.name == "task-splitting"
        assert alternative.directives.splitChunks == {"hammer": 1.0}
        assert resolver.blocking(alternative.conflicts) == []
        assert alternative.qualityImpact == pytest.approx(-0.05)
        assert alternative.score == pytest.approx(-0.5 * 2 + 0.2 * -0.05)

    def test_task_splitting_needs_a_long_task(self):
        resolver = resolver_for(space_project())
        state = resolver.scheduler.schedule()
        alternative = resolver.generate_alternative(
            "task-splitting", ScheduleDirectives(), state, [], state.projectFinish, 0.0, 0.0
        )
        assert alternative is None

    def test_parallel_maximization_alternative(self):
        project = make_project([{"id": "a", "duration": 2}, {"id": "b", "duration": 3}])
        resolver = resolver_for(project)
        directives = ScheduleDirectives(startFloors={"b": 4.0})
        state = resolver.scheduler.schedule(directives)
        assert state.projectFinish == 7
        alternative = resolver.generate_alternative(
            "parallel-maximization", directives, state, [], 3.0, 0.0, 0.0
        )
        assert alternative.directives.startFloors == {}
        assert alternative.directives.placementPriority == "longest_chain"
        assert directives.startFloors == {"b": 4.0}
        assert alternative.state.nodes["b"].earlyStart == 0
        assert alternative.state.projectFinish == 3
        assert alternative.score == pytest.approx(0.0)

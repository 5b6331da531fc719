"""Tests for resource-constrained scheduling."""
import pytest

from sitescheduler.data.models import ResourceRequirement
from sitescheduler.data.results import Booking, ScheduleDirectives
from sitescheduler.models.resource_scheduler import (
    ResourceConstrainedScheduler, first_available_slot, occupied_days, peak_usage, usage_at
)
from tests.conftest import build_engine, make_project


def scheduler_for(project):
    graph, cpm, calendar = build_engine(project)
    scheduler = ResourceConstrainedScheduler(
        graph,
        cpm,
        calendar,
        project.config,
        regulations=project.regulations,
        capacities=project.capacities(),
        requirements=project.requirements_by_task(),
    )
    return scheduler, calendar


def assert_within_capacity(state):
    for resource_type, bookings in state.bookings.items():
        for booking in bookings:
            assert usage_at(bookings, booking.start) <= state.capacities[resource_type]


def electrician_project(capacity, quantity=1, can_share=False, space=None, **extra):
    return make_project(
        [
            {"id": "a", "duration": 2, "space": space},
            {"id": "b", "duration": 3, "space": space},
        ],
        resourceTypes=[{"name": "electrician", "capacity": capacity}],
        resourceRequirements=[
            {"taskId": "a", "resourceType": "electrician", "quantity": quantity, "canShare": can_share},
            {"taskId": "b", "resourceType": "electrician", "quantity": quantity, "canShare": can_share},
        ],
        **extra,
    )


class TestUsage:
    def test_usage_counts_active_bookings(self):
        bookings = [
            Booking(taskId="a", resourceType="r", start=0, finish=2, quantity=1),
            Booking(taskId="b", resourceType="r", start=1, finish=3, quantity=2),
        ]
        assert usage_at(bookings, 0) == 1
        assert usage_at(bookings, 1.5) == 3
        assert usage_at(bookings, 2) == 2
        assert peak_usage(bookings, 0, 3) == 3

    def test_shared_bookings_pool_per_space(self):
        bookings = [
            Booking(taskId="a", resourceType="r", start=0, finish=2, quantity=1, canShare=True, space="k"),
            Booking(taskId="b", resourceType="r", start=0, finish=2, quantity=2, canShare=True, space="k"),
            Booking(taskId="c", resourceType="r", start=0, finish=2, quantity=1, canShare=True, space="x"),
        ]
        assert usage_at(bookings, 1) == 3

    def test_first_available_slot_waits_for_release(self):
        bookings = [Booking(taskId="a", resourceType="r", start=0, finish=4, quantity=1)]
        requirement = ResourceRequirement(taskId="b", resourceType="r")
        assert first_available_slot(bookings, 0, 2, requirement, capacity=1) == 4
        assert first_available_slot(bookings, 0, 2, requirement, capacity=2) == 0

    @pytest.mark.parametrize("start,finish,expected", [
        (0, 2, [0, 1]),
        (0.5, 2, [0, 1]),
        (3, 3, [3]),
        (1, 1.5, [1]),
    ])
    def test_occupied_days(self, start, finish, expected):
        assert list(occupied_days(start, finish)) == expected


class TestResourceConstrainedScheduler:
    def test_capacity_serializes_tasks(self):
        scheduler, _ = scheduler_for(electrician_project(capacity=1))
        state = scheduler.schedule()
        assert state.nodes["a"].earlyStart == 0
        assert state.nodes["b"].earlyStart == 2
        assert state.projectFinish == 5
        assert_within_capacity(state)

    def test_spare_capacity_runs_in_parallel(self):
        scheduler, _ = scheduler_for(electrician_project(capacity=2))
        state = scheduler.schedule()
        assert state.nodes["b"].earlyStart == 0
        assert state.projectFinish == 3

    def test_shared_units_in_one_space(self):
        scheduler, _ = scheduler_for(electrician_project(capacity=1, can_share=True, space="kitchen"))
        state = scheduler.schedule()
        assert state.nodes["a"].earlyStart == state.nodes["b"].earlyStart == 0
        assert_within_capacity(state)

    def test_extra_capacity_directive(self):
        scheduler, _ = scheduler_for(electrician_project(capacity=1))
        state = scheduler.schedule(ScheduleDirectives(extraCapacity={"electrician": 1}))
        assert state.capacities["electrician"] == 2
        assert state.projectFinish == 3

    def test_dependencies_hold_after_resource_delays(self, renovation_project):
        scheduler, _ = scheduler_for(renovation_project)
        state = scheduler.schedule()
        for dependency in scheduler.graph.dependencies:
            pred = state.nodes[dependency.sourceTaskId]
            succ = state.nodes[dependency.targetTaskId]
            lag = scheduler.cpm.lags[dependency.id]
            if dependency.type.value == "FS":
                assert succ.earlyStart >= pred.earlyFinish + lag
            elif dependency.type.value == "SS":
                assert succ.earlyStart >= pred.earlyStart + lag
        assert_within_capacity(state)

    def test_slack_and_critical_agree(self, renovation_project):
        scheduler, _ = scheduler_for(renovation_project)
        state = scheduler.schedule()
        for n in state.nodes.values():
            assert n.isCritical == (n.slack <= 0)
        assert state.criticalPath


class TestRegulatoryWindows:
    def weekday_project(self, allowed_days, duration=2, **config):
        return make_project(
            [
                {"id": "prep", "duration": 2},
                {"id": "demo", "duration": duration, "category": "demolition"},
            ],
            [{"id": "d", "sourceTaskId": "prep", "targetTaskId": "demo"}],
            regulations=[{
                "id": "quiet",
                "kind": "noise",
                "categories": ["demolition"],
                "timeRestriction": {"allowedDays": allowed_days},
            }],
            config=config,
        )

    def test_task_moves_to_allowed_days(self):
        scheduler, calendar = scheduler_for(self.weekday_project([0, 1, 2]))
        state = scheduler.schedule()
        demo = state.nodes["demo"]
        # Wednesday-Thursday is not allowed, so the task waits for Monday
        assert demo.earlyStart == 5
        for day in occupied_days(demo.earlyStart, demo.earlyFinish):
            assert calendar.weekday(day) in {0, 1, 2}
        assert state.exhaustedPlacements == []

    def test_split_task_skips_disallowed_days(self):
        scheduler, calendar = scheduler_for(self.weekday_project([0, 1, 2], duration=4))
        state = scheduler.schedule(ScheduleDirectives(splitChunks={"demo": 1.0}))
        demo = state.nodes["demo"]
        assert [segment.start for segment in demo.segments] == [2, 5, 6, 7]
        for segment in demo.segments:
            assert calendar.weekday(int(segment.start)) in {0, 1, 2}
        assert demo.duration == demo.earlyFinish - demo.earlyStart

    def test_unsatisfiable_window_is_reported(self):
        scheduler, _ = scheduler_for(self.weekday_project([5], maxPlacementSteps=20))
        state = scheduler.schedule()
        assert state.exhaustedPlacements == ["demo"]

    def test_method_change_lifts_noise_rules(self):
        scheduler, _ = scheduler_for(self.weekday_project([0, 1, 2]))
        state = scheduler.schedule(ScheduleDirectives(methodChanged=["demo"]))
        assert state.nodes["demo"].earlyStart == 2

    def test_allowed_hours_stretch_duration(self):
        project = make_project(
            [{"id": "drill", "duration": 2, "category": "drilling"}],
            regulations=[{
                "id": "hours",
                "kind": "noise",
                "categories": ["drilling"],
                "timeRestriction": {"allowedHours": {"start": 8, "end": 14}},
            }],
        )
        scheduler, _ = scheduler_for(project)
        state = scheduler.schedule()
        drill = state.nodes["drill"]
        assert drill.duration == 3
        assert (drill.workHours.start, drill.workHours.end) == (8, 14)


class TestPlacementOrder:
    def chain_project(self):
        # "short" outranks "long" by priority, but "long" heads the longer chain
        return make_project(
            [
                {"id": "short", "duration": 1, "priority": 5},
                {"id": "long", "duration": 2},
                {"id": "tail", "duration": 3},
            ],
            [{"id": "d", "sourceTaskId": "long", "targetTaskId": "tail"}],
            resourceTypes=[{"name": "electrician", "capacity": 1}],
            resourceRequirements=[
                {"taskId": "short", "resourceType": "electrician"},
                {"taskId": "long", "resourceType": "electrician"},
            ],
        )

    def test_default_order_follows_priority(self):
        scheduler, _ = scheduler_for(self.chain_project())
        durations = {"short": 1.0, "long": 2.0, "tail": 3.0}
        assert scheduler.placement_order(ScheduleDirectives(), durations) == ["short", "long", "tail"]
        state = scheduler.schedule()
        assert state.nodes["long"].earlyStart == 1
        assert state.projectFinish == 6

    def test_longest_chain_goes_first(self):
        scheduler, _ = scheduler_for(self.chain_project())
        directives = ScheduleDirectives(placementPriority="longest_chain")
        durations = {"short": 1.0, "long": 2.0, "tail": 3.0}
        assert scheduler.placement_order(directives, durations) == ["long", "tail", "short"]
        state = scheduler.schedule(directives)
        assert state.nodes["long"].earlyStart == 0
        assert state.nodes["short"].earlyStart == 2
        assert state.projectFinish == 5
        assert_within_capacity(state)

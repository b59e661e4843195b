"""Tests for dispatch statistics and grouping."""
from conftest import make_dispatch, run
from src.models.dispatch import DispatchState
from src.services.dispatch_statistics import compute_dispatch_statistics, group_by_state


def test_statistics_counts_and_rates():
    dispatches = [
        make_dispatch(1, DispatchState.COMPLETED, actual_duration_min=10),
        make_dispatch(2, DispatchState.COMPLETED, actual_duration_min=21),
        make_dispatch(3, DispatchState.EN_ROUTE),
    ]
    stats = compute_dispatch_statistics(dispatches)
    assert stats.total == 3
    assert stats.by_state["completed"] == 2
    assert stats.by_state["cancelled"] == 0
    assert stats.by_priority["high"] == 3
    assert stats.completion_rate == 66.7
    assert stats.average_actual_duration_min == 15.5


def test_empty_window():
    stats = compute_dispatch_statistics([])
    assert stats.total == 0
    assert stats.completion_rate == 0.0
    assert stats.average_actual_duration_min is None
    assert stats.to_dict()["byState"]["requested"] == 0


def test_group_by_state(store):
    dispatches = run(store.get_recent_dispatches(hours=24 * 365 * 10, limit=100))
    grouped = group_by_state(dispatches)
    assert set(grouped) == {"requested", "assigned", "en_route", "on_scene", "completed", "cancelled"}
    assert [d.id for d in grouped["assigned"]] == [2]


def test_overview_combines_statistics_and_records(orchestrator):
    overview = run(orchestrator.get_dispatch_overview(hours=24 * 365 * 10))
    assert overview["statistics"].total == 6
    assert len(overview["dispatches"]) == 6

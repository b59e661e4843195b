"""Tests for the dispatch stores."""
from unittest.mock import AsyncMock

import pytest

from conftest import at, make_dispatch, run
from src.models.dispatch import DispatchFilter, DispatchState, GpsPing, Priority
from src.models.errors import NotFound, StaleStateConflict
from src.services.dispatch_store import HttpDispatchStore, InMemoryDispatchStore, fields_to_api


def backend_record(**overrides):
    record = make_dispatch(2, DispatchState.ASSIGNED).to_api()
    record.update(overrides)
    return record


def http_store():
    client = AsyncMock()
    return HttpDispatchStore(client), client


def test_fields_to_api_uses_backend_names():
    payload = fields_to_api({"en_route_at": at(10, 7), "ambulance_id": 3, "priority": Priority.HIGH})
    assert payload == {"enRouteAt": "2025-11-05T10:07:00+00:00", "ambulanceId": 3, "priority": "high"}


def test_http_fetch_parses_record():
    store, client = http_store()
    client.get.return_value = backend_record()
    dispatch = run(store.fetch_dispatch(2))
    assert dispatch.state == DispatchState.ASSIGNED
    assert dispatch.assigned_at == at(10, 5)
    client.get.assert_awaited_once_with("/dispatches/2")


def test_http_fetch_not_found_names_dispatch():
    store, client = http_store()
    client.get.side_effect = NotFound("Resource", "/dispatches/9")
    with pytest.raises(NotFound) as exc:
        run(store.fetch_dispatch(9))
    assert exc.value.resource == "Dispatch"
    assert exc.value.identifier == 9


def test_http_state_write_sends_expected_state():
    store, client = http_store()
    client.patch.return_value = backend_record(state="en_route", enRouteAt="2025-11-05T10:07:00+00:00")
    updated = run(store.set_dispatch_state(2, DispatchState.ASSIGNED, DispatchState.EN_ROUTE, {"en_route_at": at(10, 7)}))
    assert updated.state == DispatchState.EN_ROUTE
    path, payload = client.patch.await_args.args
    assert path == "/dispatches/2/state"
    assert payload == {"expectedState": "assigned", "state": "en_route", "changes": {"enRouteAt": "2025-11-05T10:07:00+00:00"}}


def test_http_conflict_is_rewrapped_with_dispatch_id():
    store, client = http_store()
    client.patch.side_effect = StaleStateConflict(None, None, "cancelled")
    with pytest.raises(StaleStateConflict) as exc:
        run(store.set_dispatch_state(2, "assigned", "en_route", {}))
    assert (exc.value.dispatch_id, exc.value.expected, exc.value.actual) == (2, "assigned", "cancelled")


def test_http_list_accepts_wrapped_payload():
    store, client = http_store()
    client.get.return_value = {"content": [backend_record(), backend_record(id=3)]}
    dispatches = run(store.list_dispatches(DispatchFilter(state="assigned", limit=5)))
    assert [d.id for d in dispatches] == [2, 3]
    client.get.assert_awaited_once_with("/dispatches", {"limit": 5, "offset": 0, "state": "assigned"})


def test_http_gps_ping_payload():
    store, client = http_store()
    client.post.return_value = None
    ping = GpsPing(3, 4.70, -74.07, speed=40.0, recorded_at=at(10, 9))
    assert run(store.record_gps_ping(ping)) == ping
    path, payload = client.post.await_args.args
    assert path == "/dispatches/3/gps"
    assert payload["recordedAt"] == "2025-11-05T10:09:00+00:00"


def test_memory_compare_and_set_rejects_stale_writer():
    store = InMemoryDispatchStore([make_dispatch(2, DispatchState.ASSIGNED)])
    run(store.set_dispatch_state(2, DispatchState.ASSIGNED, DispatchState.EN_ROUTE, {"en_route_at": at(10, 7)}))
    with pytest.raises(StaleStateConflict):
        run(store.set_dispatch_state(2, DispatchState.ASSIGNED, DispatchState.CANCELLED, {}))
    assert run(store.fetch_dispatch(2)).state == DispatchState.EN_ROUTE


def test_memory_store_returns_copies():
    store = InMemoryDispatchStore([make_dispatch(1)])
    first = run(store.fetch_dispatch(1))
    first.extra["touched"] = True
    assert run(store.fetch_dispatch(1)).extra == {}


def test_memory_assign_checks_current_ambulance():
    store = InMemoryDispatchStore([make_dispatch(2, DispatchState.ASSIGNED, ambulance_id=1)])
    with pytest.raises(StaleStateConflict):
        run(store.assign_ambulance(2, 8, DispatchState.ASSIGNED, expected_ambulance_id=5))
    assert run(store.assign_ambulance(2, 8, DispatchState.ASSIGNED, expected_ambulance_id=1)).ambulance_id == 8


def test_memory_list_pagination(store):
    page = run(store.list_dispatches(DispatchFilter(limit=2, offset=2)))
    assert [d.id for d in page] == [3, 4]


def test_memory_unknown_dispatch(store):
    with pytest.raises(NotFound):
        run(store.list_gps_pings(404))


def test_memory_ambulance_conflict_reports_ambulances():
    store = InMemoryDispatchStore([make_dispatch(2, DispatchState.ASSIGNED, ambulance_id=1)])
    with pytest.raises(StaleStateConflict) as exc:
        run(store.assign_ambulance(2, 8, DispatchState.ASSIGNED, expected_ambulance_id=5))
    assert exc.value.expected_ambulance_id == 5
    assert exc.value.actual_ambulance_id == 1
    assert "expected ambulance 5, found 1" in str(exc.value)
    assert "expected state" not in str(exc.value)


def test_http_ambulance_conflict_keeps_ambulance_detail():
    store, client = http_store()
    client.patch.side_effect = StaleStateConflict(None, None, "assigned", actual_ambulance_id=3)
    with pytest.raises(StaleStateConflict) as exc:
        run(store.assign_ambulance(2, 8, "assigned", expected_ambulance_id=1))
    assert (exc.value.expected_ambulance_id, exc.value.actual_ambulance_id) == (1, 3)

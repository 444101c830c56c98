"""Unit tests for execution mode resolution."""

from scriptstep.engines.mode import resolve_requests
from scriptstep.models import ExecutionMode, ScriptUnit
from tests.utils.script import make_records


def test_all_items_single_request() -> None:
    records = make_records({"a": 1}, {"a": 2}, {"a": 3})
    requests = resolve_requests(ScriptUnit(source="return items"), records)
    assert len(requests) == 1
    assert requests[0].records == tuple(records)
    assert requests[0].indexes == (0, 1, 2)
    assert requests[0].item_index is None


def test_all_items_empty_input_still_runs_once() -> None:
    requests = resolve_requests(ScriptUnit(source="return []"), [])
    assert len(requests) == 1
    assert requests[0].records == ()


def test_per_item_one_request_per_record_in_order() -> None:
    records = make_records({"a": 1}, {"a": 2})
    script = ScriptUnit(source="return item", mode=ExecutionMode.PER_ITEM)
    requests = resolve_requests(script, records)
    assert [r.item_index for r in requests] == [0, 1]
    assert [r.records[0].data for r in requests] == [{"a": 1}, {"a": 2}]
    assert len({r.invocation_id for r in requests}) == 2


def test_per_item_empty_input_has_no_requests() -> None:
    script = ScriptUnit(source="return item", mode=ExecutionMode.PER_ITEM)
    assert resolve_requests(script, []) == []


def test_records_by_index() -> None:
    records = make_records({"a": 1})
    script = ScriptUnit(source="return item", mode=ExecutionMode.PER_ITEM)
    request = resolve_requests(script, make_records({"a": 0}) + records)[1]
    assert request.records_by_index() == {1: records[0]}

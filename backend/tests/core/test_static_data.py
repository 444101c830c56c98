"""Unit tests for the execution-scoped static-data store."""

import json
import threading
from datetime import date
from unittest.mock import MagicMock, patch

import pytest

from scriptstep.core import static_data
from scriptstep.core.static_data import (
    MemoryStaticData,
    RecordingStaticData,
    RedisStaticData,
    RedisStaticDataArena,
    StaticDataArena,
    StaticDataView,
)


class TestStaticDataArena:
    def test_same_execution_shares_handle(self) -> None:
        arena = StaticDataArena()
        a = arena.handle("exec-1")
        a["count"] = 1
        b = arena.handle("exec-1")
        assert b is a
        assert b["count"] == 1

    def test_executions_are_isolated(self) -> None:
        arena = StaticDataArena()
        arena.handle("exec-1").set("k", "one")
        assert arena.handle("exec-2").get("k") is None
        assert "k" not in arena.handle("exec-2")

    def test_release_drops_store(self) -> None:
        arena = StaticDataArena()
        arena.handle("exec-1").set("k", 1)
        arena.release("exec-1")
        assert "exec-1" not in arena
        assert arena.handle("exec-1").get("k") is None


class TestMemoryStaticData:
    def test_mapping_surface(self) -> None:
        h = MemoryStaticData("e")
        h["a"] = 1
        h.set("b", [1, 2])
        assert h["a"] == 1
        assert sorted(h.keys()) == ["a", "b"]
        assert h.to_dict() == {"a": 1, "b": [1, 2]}
        assert len(h) == 2
        del h["a"]
        assert "a" not in h
        with pytest.raises(KeyError):
            h["a"]

    def test_concurrent_writes_last_write_wins(self) -> None:
        h = MemoryStaticData("e")

        def writer(n: int) -> None:
            for i in range(200):
                h["shared"] = (n, i)
                h[f"own-{n}"] = i

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert h["shared"][1] == 199
        assert all(h[f"own-{n}"] == 199 for n in range(4))

    def test_apply_changes(self) -> None:
        h = MemoryStaticData("e", {"keep": 1, "gone": 2})
        h.apply_changes({"new": 3}, ["gone"])
        assert h.to_dict() == {"keep": 1, "new": 3}


class TestRecordingStaticData:
    def test_records_sets_and_deletes(self) -> None:
        h = RecordingStaticData("e", {"a": 1, "b": 2})
        h["c"] = 3
        h.delete("a")
        h["b"] = 20
        assert h.to_dict() == {"b": 20, "c": 3}
        assert h.changes() == {"set": {"c": 3, "b": 20}, "deleted": ["a"]}

    def test_set_after_delete_clears_delete(self) -> None:
        h = RecordingStaticData("e", {"a": 1})
        h.delete("a")
        h["a"] = 5
        assert h.changes() == {"set": {"a": 5}, "deleted": []}


class TestStaticDataView:
    def test_reads_and_writes_reach_the_handle(self) -> None:
        h = MemoryStaticData("e", {"a": 1})
        view = StaticDataView(h)
        view["b"] = (1, date(2024, 5, 6))
        del view["a"]
        assert h.to_dict() == {"b": [1, "2024-05-06"]}
        assert view.get("b") == [1, "2024-05-06"]
        assert list(view) == ["b"]
        assert len(view) == 1

    def test_guarded_item_hooks(self) -> None:
        h = MemoryStaticData("e")
        view = StaticDataView(h)
        view.__guarded_setitem__("k", 1)
        assert h["k"] == 1
        view.__guarded_delitem__("k")
        assert "k" not in h

    def test_methods_cannot_be_rebound(self) -> None:
        view = StaticDataView(MemoryStaticData("e"))
        with pytest.raises(AttributeError):
            view.get = lambda key, default=None: "x"  # type: ignore[method-assign]
        assert not hasattr(view, "__guarded_setattr__")

    def test_revoked_view_refuses_everything(self) -> None:
        h = MemoryStaticData("e", {"a": 1})
        view = StaticDataView(h)
        view.revoke()
        with pytest.raises(RuntimeError, match="invocation has ended"):
            view["late"] = 1
        with pytest.raises(RuntimeError):
            view.get("a")
        with pytest.raises(RuntimeError):
            del view["a"]
        assert h.to_dict() == {"a": 1}

class TestRedisStaticData:
    def test_values_are_json_in_one_hash(self) -> None:
        client = MagicMock()
        h = RedisStaticData("exec-9", client, ttl_seconds=60)
        h.set("k", {"n": 1})
        client.hset.assert_called_once_with("static:exec-9", "k", json.dumps({"n": 1}))
        client.expire.assert_called_once_with("static:exec-9", 60)

        client.hget.return_value = '{"n": 1}'
        assert h.get("k") == {"n": 1}
        client.hget.return_value = None
        assert h.get("missing", "d") == "d"

    def test_items_decodes_all(self) -> None:
        client = MagicMock()
        client.hgetall.return_value = {"a": "1", "b": '"x"'}
        h = RedisStaticData("e", client, ttl_seconds=0)
        assert h.to_dict() == {"a": 1, "b": "x"}

    def test_arena_release_deletes_key(self) -> None:
        client = MagicMock()
        arena = RedisStaticDataArena(client, ttl_seconds=10)
        arena.release("exec-1")
        client.delete.assert_called_once_with("static:exec-1")


def test_get_static_data_arena_falls_back_to_memory() -> None:
    with patch.object(static_data, "_arena", None), patch.object(
        static_data, "get_redis", return_value=None
    ):
        arena = static_data.get_static_data_arena()
        assert type(arena) is StaticDataArena


def test_get_static_data_arena_prefers_redis() -> None:
    with patch.object(static_data, "_arena", None), patch.object(
        static_data, "get_redis", return_value=MagicMock()
    ):
        assert isinstance(static_data.get_static_data_arena(), RedisStaticDataArena)

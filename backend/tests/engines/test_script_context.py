"""Unit tests for the capability context and log sink selection."""

import logging
from collections.abc import Callable

import pytest

from scriptstep.core.static_data import MemoryStaticData, StaticDataView
from scriptstep.engines.script import CapabilityContext, select_log_sink
from scriptstep.engines.script.context import host_log_sink, record_view
from scriptstep.models import BinaryAttachment, ExecutionMode, InputRecord, RunMode
from tests.utils.script import make_records, make_request, make_settings

ContextFactory = Callable[..., CapabilityContext]


class TestRecordView:
    def test_view_is_a_copy_with_positional_lineage(self) -> None:
        record = InputRecord(data={"nested": {"a": 1}}, lineage=9)
        view = record_view(record, 4)
        view["data"]["nested"]["a"] = 2
        assert record.data == {"nested": {"a": 1}}
        assert view["lineage"] == 4

    def test_attachment_view_has_metadata(self) -> None:
        att = BinaryAttachment(mimeType="text/plain", fileName="a.txt", data="aGk=", size=2)
        view = record_view(InputRecord(data={}, attachments={"file": att}), 0)
        assert view["attachments"]["file"] == {
            "mime_type": "text/plain",
            "file_name": "a.txt",
            "handle": None,
            "size": 2,
            "data": "aGk=",
        }


class TestCapabilityContext:
    def test_all_items_namespace(self, make_context: ContextFactory) -> None:
        ns = make_context(make_request("", make_records({"a": 1}, {"a": 2}))).to_dict()
        assert [v["data"] for v in ns["items"]] == [{"a": 1}, {"a": 2}]
        assert {"params", "static_data", "log", "http", "binary"} <= set(ns)
        assert "item" not in ns
        assert "item_index" not in ns

    def test_per_item_namespace(self, make_context: ContextFactory) -> None:
        request = make_request("", make_records({"a": 5}), mode=ExecutionMode.PER_ITEM, index=2)
        ns = make_context(request).to_dict()
        assert ns["item"]["data"] == {"a": 5}
        assert ns["item"]["lineage"] == 2
        assert ns["item_index"] == 2
        assert len(ns["items"]) == 1

    def test_projection(self, make_context: ContextFactory, static_data: MemoryStaticData) -> None:
        static_data["k"] = "v"
        request = make_request("", make_records({"a": 1}, {"a": 2}))
        ctx = make_context(request, parameters={"c": 1, "idx": lambda i: i * 10})
        projection = ctx.projection()
        assert projection["parameters"] == {"0": {"c": 1, "idx": 0}, "1": {"c": 1, "idx": 10}}
        assert projection["staticData"] == {"k": "v"}
        assert projection["helpers"] == {"http": True, "binary": True, "log": True}

    def test_helpers_reflect_settings(self, static_data: MemoryStaticData) -> None:
        from scriptstep.engines.script import build_capability_context

        ctx = build_capability_context(
            make_request(""),
            parameters=None,
            static_data=static_data,
            log_sink=None,
            settings=make_settings(SCRIPT_HTTP_ENABLED=False, SCRIPT_BINARY_HELPERS_ENABLED=False),
        )
        assert ctx.helpers == {"http": False, "binary": False, "log": False}
        with pytest.raises(PermissionError):
            ctx.http.get("https://example.com")
        with pytest.raises(PermissionError):
            ctx.binary.encode(b"x")

    def test_guest_gets_a_view_not_the_handle(
        self, make_context: ContextFactory, static_data: MemoryStaticData
    ) -> None:
        ctx = make_context(make_request(""))
        guest = ctx.to_dict()["static_data"]
        assert isinstance(guest, StaticDataView)
        assert ctx.static_data is static_data
        guest["k"] = 1
        assert static_data["k"] == 1

    def test_revoke_cuts_guest_capabilities(
        self,
        make_context: ContextFactory,
        static_data: MemoryStaticData,
        log_events: list[tuple[str, str]],
    ) -> None:
        ctx = make_context(make_request(""))
        ns = ctx.to_dict()
        ns["log"].info("before")
        ctx.revoke()
        assert ctx.revoked
        with pytest.raises(RuntimeError):
            ns["static_data"]["late"] = 1
        with pytest.raises(RuntimeError):
            ns["log"].info("after")
        with pytest.raises(RuntimeError):
            ns["http"].get("https://example.com")
        assert "late" not in static_data
        assert log_events == [("info", "before")]
        # Host-side replay still works
        ctx.static_data["host"] = 1
        ctx.log_sink("info", "host")
        assert log_events[-1] == ("info", "host")

    def test_close_swallows_http_close_failure(
        self, make_context: ContextFactory, caplog: pytest.LogCaptureFixture
    ) -> None:
        ctx = make_context(make_request(""))

        class _Broken:
            def close(self) -> None:
                raise RuntimeError("socket gone")

        ctx.http = _Broken()
        with caplog.at_level(logging.WARNING):
            ctx.close()
        assert "socket gone" in caplog.text


class TestSelectLogSink:
    def test_disabled(self) -> None:
        assert select_log_sink(RunMode.MANUAL, lambda level, msg: None, enabled=False) is None

    def test_manual_with_ui_sink(self) -> None:
        def ui(level: str, msg: str) -> None:
            pass

        assert select_log_sink(RunMode.MANUAL, ui) is ui

    def test_production_uses_host_log(self, caplog: pytest.LogCaptureFixture) -> None:
        def ui(level: str, msg: str) -> None:
            raise AssertionError("UI sink must not be used in production runs")

        sink = select_log_sink(RunMode.PRODUCTION, ui, extra={"step": "s1"})
        assert sink is not None
        with caplog.at_level(logging.DEBUG, logger="scriptstep.guest"):
            sink("warn", "careful")
        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.getMessage() == "careful"
        assert record.step == "s1"  # type: ignore[attr-defined]

    def test_host_sink_unknown_level_is_info(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.DEBUG, logger="scriptstep.guest"):
            host_log_sink()("trace", "x")
        assert caplog.records[-1].levelno == logging.INFO

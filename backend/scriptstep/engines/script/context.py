"""
CapabilityContext: the bounded set of host callbacks guest code may call
(items/item, params, static_data, log, http, binary).

Built once per invocation, never shared, closed when the invocation ends.
revoke() cuts a still-running guest off once the host has stopped waiting.
The same object shape is handed to every backend; the external worker gets
the transport-safe projection().
"""

import copy
import logging
from collections.abc import Mapping
from typing import Any

from scriptstep.core.config import settings as default_settings
from scriptstep.core.static_data import StaticDataHandle, StaticDataView
from scriptstep.engines.mode import ExecutionRequest
from scriptstep.models import ExecutionMode, InputRecord, RunMode

from .modules import (
    make_binary_module,
    make_http_module,
    make_log_module,
    make_params_module,
)
from .modules.binary import BinaryResolver, attachment_view
from .modules.log import LogSink
from .modules.params import project_parameters

_log = logging.getLogger(__name__)
_guest_log = logging.getLogger("scriptstep.guest")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def host_log_sink(extra: dict[str, Any] | None = None) -> LogSink:
    """Sink that writes guest log calls as host log lines."""
    ext = dict(extra or {})

    def sink(level: str, message: str) -> None:
        _guest_log.log(_LEVELS.get(level, logging.INFO), message, extra=ext)

    return sink


def select_log_sink(
    run_mode: RunMode,
    ui_sink: LogSink | None = None,
    *,
    enabled: bool = True,
    extra: dict[str, Any] | None = None,
) -> LogSink | None:
    """Manual runs with a UI channel log to the UI; everything else to host log lines."""
    if not enabled:
        return None
    if run_mode == RunMode.MANUAL and ui_sink is not None:
        return ui_sink
    return host_log_sink(extra)


def record_view(record: InputRecord, index: int) -> dict[str, Any]:
    """
    Guest-side copy of an input record. ``lineage`` is the record's position
    in this step's input, so a returned view links back to it.
    """
    return {
        "data": copy.deepcopy(record.data),
        "attachments": {name: attachment_view(att) for name, att in record.attachments.items()},
        "lineage": index,
    }


class CapabilityContext:
    def __init__(
        self,
        *,
        request: ExecutionRequest,
        params: Any,
        static_data: StaticDataHandle,
        log_sink: LogSink | None,
        http: Any,
        binary: Any,
        helpers: Mapping[str, bool],
        parameters: Mapping[str, Any] | None = None,
    ) -> None:
        self.request = request
        self.params = params
        self.static_data = static_data
        self.log_sink = log_sink
        self._revoked = False
        self.guest_log_sink = self._gated(log_sink)
        self.log = make_log_module(sink=self.guest_log_sink)
        self.http = http
        self.binary = binary
        self.helpers = dict(helpers)
        self._parameters = parameters
        self._static_view = StaticDataView(static_data)

    def _gated(self, sink: LogSink | None) -> LogSink | None:
        if sink is None:
            return None

        def gated(level: str, message: str) -> None:
            if self._revoked:
                raise RuntimeError("log is no longer available: the invocation has ended")
            sink(level, message)

        return gated

    def to_dict(self) -> dict[str, Any]:
        """Guest namespace for exec(compiled, globals)."""
        views = [record_view(r, i) for i, r in zip(self.request.indexes, self.request.records)]
        ns: dict[str, Any] = {
            "items": views,
            "params": self.params,
            "static_data": self._static_view,
            "log": self.log,
            "http": self.http,
            "binary": self.binary,
        }
        if self.request.mode == ExecutionMode.PER_ITEM:
            ns["item"] = views[0]
            ns["item_index"] = self.request.item_index
        return ns

    def projection(self) -> dict[str, Any]:
        """Transport-safe subset for the external worker."""
        return {
            "parameters": project_parameters(self._parameters, list(self.request.indexes)),
            "staticData": self.static_data.to_dict(),
            "helpers": dict(self.helpers),
        }

    def revoke(self) -> None:
        """
        Cut guest code off from static data, logging and http. Used when the
        host stops waiting for an invocation that may still be running.
        """
        self._revoked = True
        self._static_view.revoke()
        self.http.revoke()

    @property
    def revoked(self) -> bool:
        return self._revoked

    def close(self) -> None:
        try:
            self.http.close()
        except Exception as e:
            _log.warning("closing http helper failed: %s", e)


def build_capability_context(
    request: ExecutionRequest,
    *,
    parameters: Mapping[str, Any] | None,
    static_data: StaticDataHandle,
    log_sink: LogSink | None,
    binary_resolver: BinaryResolver | None = None,
    settings: Any = None,
) -> CapabilityContext:
    """
    Assemble the capability object for one invocation. ``static_data`` is the
    execution-scoped handle, shared by every invocation of the execution.
    """
    s = settings or default_settings
    default_index = request.item_index or 0
    helpers = {
        "http": bool(s.SCRIPT_HTTP_ENABLED),
        "binary": bool(s.SCRIPT_BINARY_HELPERS_ENABLED),
        "log": log_sink is not None,
    }
    return CapabilityContext(
        request=request,
        params=make_params_module(parameters=parameters, default_index=default_index),
        static_data=static_data,
        log_sink=log_sink,
        http=make_http_module(
            enabled=helpers["http"],
            timeout=s.SCRIPT_HTTP_TIMEOUT,
            allowed_hosts=s.http_allowed_hosts,
        ),
        binary=make_binary_module(
            records=request.records_by_index(),
            default_index=default_index,
            resolver=binary_resolver,
            enabled=helpers["binary"],
        ),
        helpers=helpers,
        parameters=parameters,
    )

"""
Worker-side execution of one WorkerRequest.

Rebuilds a CapabilityContext from the transport-safe projection, runs the
in-process sandbox, validates the output and packs everything (outcome, raw
value or error detail, captured log calls, static-data writes) into a
WorkerResponse.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from scriptstep.core.config import settings as default_settings
from scriptstep.core.static_data import RecordingStaticData
from scriptstep.engines.backends import InProcessBackend
from scriptstep.engines.errors import ScriptEngineError, ValidationError
from scriptstep.engines.mode import ExecutionRequest
from scriptstep.engines.policy import as_engine_error
from scriptstep.engines.script import CapabilityContext, ModulePolicy
from scriptstep.engines.script.modules import make_binary_module, make_http_module
from scriptstep.engines.script.modules.params import make_projected_params_module
from scriptstep.engines.validator import validate_output
from scriptstep.models import ExecutionMode
from scriptstep.schemas import (
    LogEntry,
    StaticDataChanges,
    WorkerOutcome,
    WorkerRequest,
    WorkerResponse,
)

logger = logging.getLogger(__name__)


class InvocationRegistry:
    """Tracks running invocation ids and the ones a client asked to cancel."""

    def __init__(self) -> None:
        self._running: set[str] = set()
        self._cancelled: set[str] = set()
        self._lock = threading.Lock()

    def start(self, invocation_id: str) -> bool:
        with self._lock:
            if invocation_id in self._running:
                return False
            self._running.add(invocation_id)
            return True

    def finish(self, invocation_id: str) -> bool:
        """Mark done; True if the invocation had been cancelled meanwhile."""
        with self._lock:
            self._running.discard(invocation_id)
            if invocation_id in self._cancelled:
                self._cancelled.discard(invocation_id)
                return True
            return False

    def cancel(self, invocation_id: str) -> bool:
        with self._lock:
            if invocation_id not in self._running:
                return False
            self._cancelled.add(invocation_id)
            return True

    def is_running(self, invocation_id: str) -> bool:
        return invocation_id in self._running


def _to_request(body: WorkerRequest) -> ExecutionRequest:
    script = body.script_unit
    if script.mode != body.mode:
        script = script.model_copy(update={"mode": body.mode})
    indexes = body.indexes or list(range(len(body.input_records)))
    if len(indexes) != len(body.input_records):
        raise ValidationError("'indexes' must have one entry per input record")
    return ExecutionRequest(
        script=script,
        records=tuple(body.input_records),
        indexes=tuple(indexes),
        invocation_id=body.invocation_id,
    )


def _build_context(
    request: ExecutionRequest,
    body: WorkerRequest,
    static_data: RecordingStaticData,
    logs: list[LogEntry],
    settings: Any,
) -> CapabilityContext:
    projection = body.capability_context
    default_index = request.item_index or 0
    helpers = {
        "http": projection.helpers.get("http", False) and bool(settings.SCRIPT_HTTP_ENABLED),
        "binary": projection.helpers.get("binary", False)
        and bool(settings.SCRIPT_BINARY_HELPERS_ENABLED),
        "log": projection.helpers.get("log", True),
    }

    def sink(level: str, message: str) -> None:
        logs.append(LogEntry(level=level, message=message))

    return CapabilityContext(
        request=request,
        params=make_projected_params_module(projection.parameters, default_index),
        static_data=static_data,
        log_sink=sink if helpers["log"] else None,
        http=make_http_module(
            enabled=helpers["http"],
            timeout=settings.SCRIPT_HTTP_TIMEOUT,
            allowed_hosts=settings.http_allowed_hosts,
        ),
        # Handles of by-reference attachments cannot be resolved from here
        binary=make_binary_module(
            records=request.records_by_index(),
            default_index=default_index,
            resolver=None,
            enabled=helpers["binary"],
        ),
        helpers=helpers,
    )


def _raw_value(records: list[Any], mode: ExecutionMode) -> Any:
    dumped = [r.model_dump(by_alias=True, mode="json") for r in records]
    return dumped[0] if mode == ExecutionMode.PER_ITEM else dumped


async def run_worker_request(
    body: WorkerRequest,
    *,
    settings: Any = None,
    module_policy: ModulePolicy | None = None,
) -> WorkerResponse:
    s = settings or default_settings
    logs: list[LogEntry] = []
    static_data = RecordingStaticData(body.invocation_id, body.capability_context.static_data)
    extra = {"invocation_id": body.invocation_id}

    def reply(outcome: WorkerOutcome, **fields: Any) -> WorkerResponse:
        changes = static_data.changes()
        return WorkerResponse(
            invocation_id=body.invocation_id,
            outcome=outcome,
            logs=logs,
            static_data_changes=StaticDataChanges(**changes),
            **fields,
        )

    try:
        request = _to_request(body)
        context = _build_context(request, body, static_data, logs, s)
        backend = InProcessBackend(
            timeout=s.SCRIPT_EXEC_TIMEOUT,
            module_policy=module_policy or ModulePolicy.from_settings(s),
        )
        raw = await backend.execute(request, context)
        records = validate_output(raw, request)
        value = _raw_value(records, request.mode)
    except ValidationError as e:
        return reply(WorkerOutcome.VALIDATION_ERROR, error_detail=e.to_dict())
    except ScriptEngineError as e:
        return reply(WorkerOutcome.GUEST_ERROR, error_detail=e.to_dict())
    except Exception as e:
        logger.exception("worker execution failed", extra=extra)
        return reply(WorkerOutcome.GUEST_ERROR, error_detail=as_engine_error(e).to_dict())
    return reply(WorkerOutcome.SUCCESS, raw_return_value=value)

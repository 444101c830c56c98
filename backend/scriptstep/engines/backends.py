"""
Execution backends. Exactly two: the in-process RestrictedPython sandbox and
the external worker. Both take an ExecutionRequest plus its CapabilityContext
and return the guest's raw return value, raising ScriptEngineError subclasses.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable

from scriptstep.engines.errors import BackendTimeoutError, ValidationError, error_from_dict
from scriptstep.engines.mode import ExecutionRequest
from scriptstep.engines.script import CapabilityContext, ModulePolicy, ScriptExecutor
from scriptstep.engines.worker import ExternalWorkerClient
from scriptstep.schemas import WorkerOutcome, WorkerResponse

_log = logging.getLogger(__name__)


class BackendKind(str, Enum):
    IN_PROCESS = "in_process"
    EXTERNAL_WORKER = "external_worker"


class SandboxBackend(ABC):
    kind: BackendKind

    @abstractmethod
    async def execute(self, request: ExecutionRequest, context: CapabilityContext) -> Any:
        """Run the request; return the raw guest value."""


def _run_in_daemon_thread(fn: Callable[..., Any], *args: Any) -> "asyncio.Future[Any]":
    """
    Run fn on its own daemon thread and expose the result as a future of the
    running loop. A thread that never returns does not block shutdown; a late
    result for a finished or closed loop is dropped.
    """
    loop = asyncio.get_running_loop()
    fut: asyncio.Future[Any] = loop.create_future()

    def settle(result: Any, error: BaseException | None) -> None:
        if fut.done():
            return
        if error is not None:
            fut.set_exception(error)
        else:
            fut.set_result(result)

    def target() -> None:
        result, error = None, None
        try:
            result = fn(*args)
        except BaseException as e:
            error = e
        try:
            loop.call_soon_threadsafe(settle, result, error)
        except RuntimeError:
            _log.debug("sandbox result discarded: event loop already closed")

    threading.Thread(target=target, name="script-sandbox", daemon=True).start()
    return fut


class InProcessBackend(SandboxBackend):
    """
    Runs ScriptExecutor on a daemon thread, bounded by a wall-clock timeout.
    On expiry or cancellation the context is revoked, the thread is left to
    finish and its result is discarded.
    """

    kind = BackendKind.IN_PROCESS

    def __init__(self, *, timeout: float | None, module_policy: ModulePolicy | None = None) -> None:
        self._timeout = timeout if timeout and timeout > 0 else None
        self._executor = ScriptExecutor(module_policy=module_policy)

    async def execute(self, request: ExecutionRequest, context: CapabilityContext) -> Any:
        run = _run_in_daemon_thread(self._executor.execute, request.script, context)
        try:
            return await asyncio.wait_for(run, self._timeout)
        except asyncio.TimeoutError as e:
            context.revoke()
            _log.warning(
                "in-process script timed out after %ss",
                self._timeout,
                extra={"invocation_id": request.invocation_id},
            )
            raise BackendTimeoutError(
                f"Script execution timed out after {self._timeout}s"
            ) from e
        except asyncio.CancelledError:
            context.revoke()
            raise


class ExternalWorkerBackend(SandboxBackend):
    kind = BackendKind.EXTERNAL_WORKER

    def __init__(self, client: ExternalWorkerClient) -> None:
        self._client = client

    async def execute(self, request: ExecutionRequest, context: CapabilityContext) -> Any:
        try:
            reply = await self._client.execute(request, context.projection())
        finally:
            context.close()
        _replay(reply, context)
        if reply.outcome == WorkerOutcome.SUCCESS:
            return reply.raw_return_value
        detail = reply.error_detail or {}
        if reply.outcome == WorkerOutcome.VALIDATION_ERROR:
            raise ValidationError(
                str(detail.get("message") or "Invalid script output"),
                item_index=detail.get("itemIndex"),
            )
        raise error_from_dict(detail)


def _replay(reply: WorkerResponse, context: CapabilityContext) -> None:
    """Deliver worker-side log calls and static-data writes to the host, in order."""
    if context.log_sink is not None:
        for entry in reply.logs:
            context.log_sink(entry.level, entry.message)
    changes = reply.static_data_changes
    if changes is not None:
        context.static_data.apply_changes(changes.set, changes.deleted)

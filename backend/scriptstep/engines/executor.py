"""
ScriptStepExecutor: runs a Script Unit as a workflow step.

mode resolution -> capability context -> backend dispatch -> execute
-> output validation -> continuation policy -> records in input order.

PerItem invocations may run concurrently (``SCRIPT_MAX_CONCURRENCY``); results
are emitted in input order regardless of completion order. AllItems runs
exactly once. Cancelling the task that awaits run() cancels in-flight worker
requests; in-process runs finish on their thread and their output is dropped.
"""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

import httpx

from scriptstep.core.config import settings as default_settings
from scriptstep.core.static_data import StaticDataHandle
from scriptstep.engines.dispatcher import BackendDispatcher, Invocation
from scriptstep.engines.errors import ScriptEngineError
from scriptstep.engines.mode import ExecutionRequest, resolve_requests
from scriptstep.engines.policy import ContinuationPolicy, as_engine_error
from scriptstep.engines.script import ModulePolicy, build_capability_context, select_log_sink
from scriptstep.engines.script.modules.binary import BinaryResolver
from scriptstep.engines.script.modules.log import LogSink
from scriptstep.engines.validator import validate_output
from scriptstep.models import (
    ErrorRecord,
    ExecutionMode,
    InputRecord,
    OutputRecord,
    RunMode,
    ScriptUnit,
)

_log = logging.getLogger(__name__)

StepResult = list[OutputRecord | ErrorRecord]


class ScriptStepExecutor:
    """
    One configured script step. ``parameters`` maps names to constants or to
    callables ``value(index)``; ``ui_sink(level, message)`` receives guest
    log calls during manual runs.
    """

    def __init__(
        self,
        step_name: str,
        script: ScriptUnit,
        *,
        parameters: Mapping[str, Any] | None = None,
        continue_on_fail: bool = False,
        run_mode: RunMode = RunMode.PRODUCTION,
        ui_sink: LogSink | None = None,
        binary_resolver: BinaryResolver | None = None,
        settings: Any = None,
        module_policy: ModulePolicy | None = None,
        worker_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.step_name = step_name
        self.script = script
        self._parameters = dict(parameters or {})
        self._run_mode = run_mode
        self._ui_sink = ui_sink
        self._binary_resolver = binary_resolver
        self._settings = settings or default_settings
        self._policy = ContinuationPolicy(step_name, continue_on_fail)
        self._dispatcher = BackendDispatcher(
            settings=self._settings,
            module_policy=module_policy,
            worker_transport=worker_transport,
        )

    async def run(self, records: list[InputRecord], *, static_data: StaticDataHandle) -> StepResult:
        """
        Execute the step over ``records``. ``static_data`` is the handle of the
        current workflow execution. Raises StepExecutionError on a fatal failure.
        """
        requests = resolve_requests(self.script, records)
        _log.info(
            "running script step %s: mode=%s records=%d",
            self.step_name,
            self.script.mode.value,
            len(records),
            extra={"step": self.step_name},
        )
        if self.script.mode == ExecutionMode.ALL_ITEMS:
            return await self._run_request(requests[0], static_data)

        limit = max(1, int(self._settings.SCRIPT_MAX_CONCURRENCY or 1))
        sem = asyncio.Semaphore(limit)

        async def bounded(request: ExecutionRequest) -> StepResult:
            async with sem:
                return await self._run_request(request, static_data)

        tasks = [asyncio.ensure_future(bounded(r)) for r in requests]
        try:
            per_record = await asyncio.gather(*tasks)
        except BaseException:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return [rec for result in per_record for rec in result]

    async def _run_request(self, request: ExecutionRequest, static_data: StaticDataHandle) -> StepResult:
        extra = {
            "step": self.step_name,
            "invocation_id": request.invocation_id,
            "item_index": request.item_index,
        }
        invocation = Invocation(request)
        try:
            context = build_capability_context(
                request,
                parameters=self._parameters,
                static_data=static_data,
                log_sink=select_log_sink(
                    self._run_mode,
                    self._ui_sink,
                    enabled=self._settings.SCRIPT_LOG_ENABLED,
                    extra=extra,
                ),
                binary_resolver=self._binary_resolver,
                settings=self._settings,
            )
            raw = await self._dispatcher.dispatch(invocation, context)
            return list(validate_output(raw, request))
        except ScriptEngineError as e:
            error = e
        except Exception as e:
            _log.error("unexpected failure in script step: %s", e, exc_info=True, extra=extra)
            error = as_engine_error(e)
        return [
            self._policy.handle(
                error,
                item_index=request.item_index if request.item_index is not None else error.item_index,
                lineage=request.item_index,
            )
        ]

"""
Backend dispatch.

Picks exactly one backend per invocation from (guest language, host flag
``SCRIPT_USE_EXTERNAL_WORKER``) and runs it. An unreachable or unconfigured
worker fails the invocation; there is no fallback to the in-process sandbox.

Invocation state: IDLE -> BACKEND_SELECTED -> DISPATCHED -> COMPLETED | FAILED
"""

import logging
from enum import Enum
from typing import Any

import httpx

from scriptstep.core.config import settings as default_settings
from scriptstep.engines.backends import (
    BackendKind,
    ExternalWorkerBackend,
    InProcessBackend,
    SandboxBackend,
)
from scriptstep.engines.errors import ConfigurationError
from scriptstep.engines.mode import ExecutionRequest
from scriptstep.engines.script import CapabilityContext, ModulePolicy
from scriptstep.engines.worker import ExternalWorkerClient
from scriptstep.models import GuestLanguage

_log = logging.getLogger(__name__)

# Languages the in-process sandbox can host
IN_PROCESS_LANGUAGES = frozenset({GuestLanguage.PYTHON})


class InvocationState(str, Enum):
    IDLE = "idle"
    BACKEND_SELECTED = "backend_selected"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS = {
    InvocationState.IDLE: {InvocationState.BACKEND_SELECTED, InvocationState.FAILED},
    InvocationState.BACKEND_SELECTED: {InvocationState.DISPATCHED},
    InvocationState.DISPATCHED: {InvocationState.COMPLETED, InvocationState.FAILED},
    InvocationState.COMPLETED: set(),
    InvocationState.FAILED: set(),
}


class Invocation:
    """One execution request on its way through a single backend."""

    def __init__(self, request: ExecutionRequest) -> None:
        self.request = request
        self.state = InvocationState.IDLE
        self.backend: SandboxBackend | None = None

    def transition(self, new: InvocationState) -> None:
        if new not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid invocation transition {self.state.value} -> {new.value}")
        self.state = new


def select_backend_kind(language: GuestLanguage, settings: Any) -> BackendKind:
    """Raises ConfigurationError when no backend can serve this language."""
    if settings.SCRIPT_USE_EXTERNAL_WORKER:
        if not settings.SCRIPT_WORKER_URL:
            raise ConfigurationError(
                "SCRIPT_USE_EXTERNAL_WORKER is on but SCRIPT_WORKER_URL is not set"
            )
        return BackendKind.EXTERNAL_WORKER
    if language not in IN_PROCESS_LANGUAGES:
        raise ConfigurationError(
            f"'{language.value}' scripts need an external worker "
            "(set SCRIPT_USE_EXTERNAL_WORKER and SCRIPT_WORKER_URL)"
        )
    return BackendKind.IN_PROCESS


class BackendDispatcher:
    def __init__(
        self,
        *,
        settings: Any = None,
        module_policy: ModulePolicy | None = None,
        worker_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or default_settings
        self._module_policy = module_policy or ModulePolicy.from_settings(self._settings)
        self._worker_transport = worker_transport

    def _new_backend(self, kind: BackendKind) -> SandboxBackend:
        s = self._settings
        if kind == BackendKind.EXTERNAL_WORKER:
            return ExternalWorkerBackend(
                ExternalWorkerClient(
                    s.SCRIPT_WORKER_URL,
                    timeout=s.SCRIPT_WORKER_TIMEOUT,
                    cancel_timeout=s.SCRIPT_WORKER_CANCEL_TIMEOUT,
                    auth_token=s.SCRIPT_WORKER_AUTH_TOKEN,
                    transport=self._worker_transport,
                )
            )
        return InProcessBackend(timeout=s.SCRIPT_EXEC_TIMEOUT, module_policy=self._module_policy)

    def select(self, invocation: Invocation) -> SandboxBackend:
        try:
            kind = select_backend_kind(invocation.request.script.language, self._settings)
        except ConfigurationError:
            invocation.transition(InvocationState.FAILED)
            raise
        invocation.backend = self._new_backend(kind)
        invocation.transition(InvocationState.BACKEND_SELECTED)
        return invocation.backend

    async def dispatch(self, invocation: Invocation, context: CapabilityContext) -> Any:
        """Select (if needed) and run the backend; returns the raw guest value."""
        backend = invocation.backend or self.select(invocation)
        invocation.transition(InvocationState.DISPATCHED)
        _log.debug(
            "dispatching invocation to %s backend",
            backend.kind.value,
            extra={"invocation_id": invocation.request.invocation_id},
        )
        try:
            raw = await backend.execute(invocation.request, context)
        except BaseException:
            invocation.transition(InvocationState.FAILED)
            raise
        invocation.transition(InvocationState.COMPLETED)
        return raw

"""
Script step engine: ScriptStepExecutor (entry point), BackendDispatcher,
ScriptExecutor (in-process sandbox), ExternalWorkerClient, output validation,
continuation policy.
"""

from scriptstep.engines.dispatcher import BackendDispatcher, Invocation, InvocationState
from scriptstep.engines.errors import (
    BackendTimeoutError,
    BackendUnavailableError,
    ConfigurationError,
    GuestExecutionError,
    ScriptEngineError,
    StepExecutionError,
    ValidationError,
)
from scriptstep.engines.executor import ScriptStepExecutor
from scriptstep.engines.mode import ExecutionRequest, resolve_requests
from scriptstep.engines.policy import ContinuationPolicy, Outcome
from scriptstep.engines.script import CapabilityContext, ScriptExecutor, build_capability_context
from scriptstep.engines.validator import validate_output
from scriptstep.engines.worker import ExternalWorkerClient

__all__ = [
    "BackendDispatcher",
    "BackendTimeoutError",
    "BackendUnavailableError",
    "CapabilityContext",
    "ConfigurationError",
    "ContinuationPolicy",
    "ExecutionRequest",
    "ExternalWorkerClient",
    "GuestExecutionError",
    "Invocation",
    "InvocationState",
    "Outcome",
    "ScriptEngineError",
    "ScriptExecutor",
    "ScriptStepExecutor",
    "StepExecutionError",
    "ValidationError",
    "build_capability_context",
    "resolve_requests",
    "validate_output",
]

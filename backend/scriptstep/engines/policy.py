"""
Error/continuation policy.

A failed invocation is RECOVERABLE or FATAL. With continue-on-fail every
failure kind is RECOVERABLE and becomes an ErrorRecord; otherwise it is FATAL
and raised as StepExecutionError.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from scriptstep.engines.errors import GuestExecutionError, ScriptEngineError, StepExecutionError
from scriptstep.models import ErrorRecord

_log = logging.getLogger(__name__)


class Outcome(str, Enum):
    RECOVERABLE = "recoverable"
    FATAL = "fatal"


def as_engine_error(exc: Exception) -> ScriptEngineError:
    """Anything that is not already an engine error is reported as a guest failure."""
    if isinstance(exc, ScriptEngineError):
        return exc
    return GuestExecutionError(f"{type(exc).__name__}: {exc}")


@dataclass(frozen=True)
class ContinuationPolicy:
    step_name: str
    continue_on_fail: bool = False

    def classify(self, error: ScriptEngineError) -> Outcome:
        return Outcome.RECOVERABLE if self.continue_on_fail else Outcome.FATAL

    def handle(
        self,
        error: ScriptEngineError,
        *,
        item_index: int | None = None,
        lineage: int | None = None,
    ) -> ErrorRecord:
        """Return the ErrorRecord that replaces the failed output, or raise StepExecutionError."""
        extra = {"step": self.step_name, "item_index": item_index, "kind": error.kind}
        if self.classify(error) == Outcome.FATAL:
            _log.warning("script step failed: %s", error.message, extra=extra)
            raise StepExecutionError(self.step_name, error, item_index=item_index) from error
        _log.info("script step continuing after failure: %s", error.message, extra=extra)
        info = error.to_dict()
        if item_index is not None:
            info["itemIndex"] = item_index
        return ErrorRecord(data={"error": error.message}, lineage=lineage, error_info=info)

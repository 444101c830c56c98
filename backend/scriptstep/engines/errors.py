"""
Error taxonomy for script execution.

Every failure that crosses the sandbox boundary is one of these; the
continuation policy decides whether it aborts the step or becomes an
ErrorRecord.
"""

from typing import Any


class ScriptEngineError(Exception):
    """Base for all engine failures. ``kind`` is the operator-visible error kind."""

    kind = "ScriptEngineError"

    def __init__(
        self,
        message: str,
        *,
        line: int | None = None,
        item_index: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.line = line
        self.item_index = item_index

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.line is not None:
            out["line"] = self.line
        if self.item_index is not None:
            out["itemIndex"] = self.item_index
        return out

    def __str__(self) -> str:
        return self.message


class GuestExecutionError(ScriptEngineError):
    """Guest code raised, failed to compile, or faulted inside the interpreter."""

    kind = "GuestExecutionError"


class ValidationError(ScriptEngineError):
    """Guest return value violates the output contract."""

    kind = "ValidationError"


class BackendTimeoutError(ScriptEngineError, TimeoutError):
    """Execution did not finish within the configured timeout."""

    kind = "BackendTimeoutError"


class BackendUnavailableError(ScriptEngineError):
    """External worker could not be reached or answered unusably."""

    kind = "BackendUnavailableError"


class ConfigurationError(ScriptEngineError):
    """Host configuration cannot serve this Script Unit."""

    kind = "ConfigurationError"


_KINDS: dict[str, type[ScriptEngineError]] = {
    cls.kind: cls
    for cls in (
        GuestExecutionError,
        ValidationError,
        BackendTimeoutError,
        BackendUnavailableError,
        ConfigurationError,
    )
}


def error_from_dict(detail: dict[str, Any]) -> ScriptEngineError:
    """Rebuild an engine error from its to_dict() form (worker responses)."""
    cls = _KINDS.get(str(detail.get("kind")), GuestExecutionError)
    return cls(
        str(detail.get("message") or "Unknown error"),
        line=detail.get("line"),
        item_index=detail.get("itemIndex"),
    )


class StepExecutionError(Exception):
    """Fatal failure of a script step; propagates to the workflow's failure handling."""

    def __init__(
        self,
        step_name: str,
        error: ScriptEngineError,
        *,
        item_index: int | None = None,
    ) -> None:
        self.step_name = step_name
        self.error = error
        self.kind = error.kind
        self.line = error.line
        self.item_index = item_index if item_index is not None else error.item_index
        super().__init__(self._format())

    def _format(self) -> str:
        msg = f"{self.step_name}: {self.kind}: {self.error.message}"
        where = []
        if self.line is not None:
            where.append(f"line {self.line}")
        if self.item_index is not None:
            where.append(f"item {self.item_index}")
        if where:
            msg += f" [{', '.join(where)}]"
        return msg

"""
ScriptExecutor: the in-process sandbox adapter.

Compiles a Python Script Unit with RestrictedPython, execs it in a fresh
restricted globals dict built from the CapabilityContext, and returns what
``script_main()`` returned. Neither the code object nor the globals outlive
the call. Every guest failure (compile error, raised exception, recursion or
memory exhaustion) comes back as GuestExecutionError.

Not preemptible: the caller enforces wall-clock limits around execute().
"""

import logging
from types import TracebackType
from typing import Any

from scriptstep.engines.errors import ConfigurationError, GuestExecutionError
from scriptstep.models import GuestLanguage, ScriptUnit

from .context import CapabilityContext
from .sandbox import (
    SCRIPT_ENTRYPOINT,
    SCRIPT_FILENAME,
    ModulePolicy,
    build_restricted_globals,
    compile_script,
)

_log = logging.getLogger(__name__)


def guest_line(tb: TracebackType | None) -> int | None:
    """Line of the innermost traceback frame that belongs to guest code."""
    line = None
    while tb is not None:
        if tb.tb_frame.f_code.co_filename == SCRIPT_FILENAME:
            line = tb.tb_lineno
        tb = tb.tb_next
    return line


class ScriptExecutor:
    """Run one Script Unit in a RestrictedPython sandbox with a CapabilityContext."""

    def __init__(self, *, module_policy: ModulePolicy | None = None) -> None:
        self._module_policy = module_policy or ModulePolicy()

    def execute(self, script: ScriptUnit, context: CapabilityContext) -> Any:
        """
        Compile, exec in restricted globals, call the wrapped body, return its
        value. Always closes the context in finally.
        """
        try:
            if script.language != GuestLanguage.PYTHON:
                raise ConfigurationError(
                    f"The in-process sandbox cannot run '{script.language.value}' scripts"
                )
            try:
                code = compile_script(script.source)
            except SyntaxError as e:
                raise GuestExecutionError(f"SyntaxError: {e.msg}", line=e.lineno) from e

            g = build_restricted_globals(
                context.to_dict(),
                module_policy=self._module_policy,
                log_sink=context.guest_log_sink,
            )
            try:
                exec(code, g)  # noqa: S102 - RestrictedPython compiled code
                return g[SCRIPT_ENTRYPOINT]()
            except RecursionError as e:
                raise GuestExecutionError(
                    "Maximum recursion depth exceeded", line=guest_line(e.__traceback__)
                ) from e
            except MemoryError as e:
                raise GuestExecutionError("Script ran out of memory") from e
            except (SystemExit, KeyboardInterrupt, GeneratorExit) as e:
                raise GuestExecutionError(
                    f"{type(e).__name__} raised by script", line=guest_line(e.__traceback__)
                ) from e
            except Exception as e:
                raise GuestExecutionError(
                    f"{type(e).__name__}: {e}", line=guest_line(e.__traceback__)
                ) from e
        finally:
            context.close()

"""
In-process script sandbox (Python, RestrictedPython).

Exports: ScriptExecutor, CapabilityContext, build_capability_context,
compile_script, build_restricted_globals, ModulePolicy.
"""

from .context import CapabilityContext, build_capability_context, select_log_sink
from .executor import ScriptExecutor
from .sandbox import ModulePolicy, build_restricted_globals, compile_script

__all__ = [
    "CapabilityContext",
    "ModulePolicy",
    "ScriptExecutor",
    "build_capability_context",
    "build_restricted_globals",
    "compile_script",
    "select_log_sink",
]

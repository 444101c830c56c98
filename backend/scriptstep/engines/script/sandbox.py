"""
RestrictedPython sandbox for guest scripts.

Guest source is a function body (top-level ``return`` allowed). It is parsed,
wrapped into ``script_main()`` with its line numbers intact, and compiled with
RestrictedPython's policy.

Allowed: safe builtins, dict, list, set, tuple, len, range, min, max, sum, abs,
sorted, json, datetime/date/time/timedelta, and the capability objects
(items, item, params, static_data, log, http, binary).

Blocked: open, exec, eval, compile, underscore attributes, and every import
that is not on the module allow-list.
"""

import ast
import builtins
import json
import operator
import re
import sys
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from types import SimpleNamespace
from typing import Any, Callable

from RestrictedPython import compile_restricted_exec
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safe_builtins,
    safer_getattr,
)

SCRIPT_FILENAME = "<script>"
SCRIPT_ENTRYPOINT = "script_main"

_ERROR_LINE_RE = re.compile(r"^Line (\d+):")

_STDLIB_MODULES = frozenset(sys.stdlib_module_names)

_CONTAINER_BUILTINS = (
    "list", "dict", "set", "frozenset", "tuple", "len", "range", "min", "max",
    "sum", "abs", "sorted", "enumerate", "any", "all", "reversed", "map", "filter",
)

_INPLACE_OPS: dict[str, Callable[[Any, Any], Any]] = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "|=": operator.ior,
    "&=": operator.iand,
    "^=": operator.ixor,
}


@dataclass(frozen=True)
class ModulePolicy:
    """
    Import allow-list. ``builtin`` holds standard-library names, ``external``
    everything else; ``*`` allows the whole category. Empty means deny.
    """

    builtin: frozenset[str] = field(default_factory=frozenset)
    external: frozenset[str] = field(default_factory=frozenset)
    allow_transitive: bool = False

    @classmethod
    def from_settings(cls, settings: Any) -> "ModulePolicy":
        return cls(
            builtin=frozenset(settings.allowed_builtin_modules),
            external=frozenset(settings.allowed_external_modules),
            allow_transitive=bool(settings.SCRIPT_ALLOW_TRANSITIVE_IMPORTS),
        )

    def allows(self, name: str) -> bool:
        top = name.split(".", 1)[0]
        if top in _STDLIB_MODULES:
            return "*" in self.builtin or top in self.builtin
        if "*" in self.external:
            return True
        if name in self.external:
            return True
        return self.allow_transitive and top in self.external


def _make_import_guard(policy: ModulePolicy) -> Callable[..., Any]:
    def guarded_import(
        name: str,
        globals: dict[str, Any] | None = None,
        locals: dict[str, Any] | None = None,
        fromlist: tuple[str, ...] = (),
        level: int = 0,
    ) -> Any:
        if level != 0:
            raise ImportError("Relative imports are not allowed in scripts")
        if not policy.allows(name):
            raise ImportError(f"Module '{name}' is not allowed in scripts")
        return builtins.__import__(name, globals, locals, fromlist, level)

    return guarded_import


def _inplacevar(op: str, x: Any, y: Any) -> Any:
    fn = _INPLACE_OPS.get(op)
    if fn is None:
        raise SyntaxError(f"Augmented assignment '{op}' is not allowed")
    return fn(x, y)


def _apply(f: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    return f(*args, **kwargs)


class SinkPrinter:
    """
    Stands in for RestrictedPython's PrintCollector: each ``print(...)`` call
    becomes one ``info`` event on the log sink instead of touching stdout.
    """

    def __init__(self, sink: Callable[[str, str], None] | None, _getattr_: Any = None) -> None:
        self._sink = sink
        self._txt: list[str] = []

    def _call_print(self, *objects: Any, sep: str | None = " ", end: str | None = "\n", **_: Any) -> None:
        line = (" " if sep is None else sep).join(str(o) for o in objects)
        self._txt.append(line + ("\n" if end is None else end))
        if self._sink is not None:
            self._sink("info", line)

    def __call__(self) -> str:
        return "".join(self._txt)


def _make_safe_builtins(policy: ModulePolicy) -> dict[str, Any]:
    """safe_builtins plus the guarded __import__."""
    safe = dict(safe_builtins)
    safe["__import__"] = _make_import_guard(policy)
    return safe


def _make_guard_globals(log_sink: Callable[[str, str], None] | None) -> dict[str, Any]:
    """Guards required by RestrictedPython's rewritten bytecode."""
    return {
        "_getattr_": safer_getattr,
        "_getiter_": default_guarded_getiter,
        "_getitem_": default_guarded_getitem,
        "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
        "_unpack_sequence_": guarded_unpack_sequence,
        "_write_": full_write_guard,
        "_inplacevar_": _inplacevar,
        "_apply_": _apply,
        "_print_": lambda _getattr_=None: SinkPrinter(log_sink, _getattr_),
        "__metaclass__": type,
    }


def _make_extra_globals() -> dict[str, Any]:
    """Extra safe symbols: json (dumps/loads only), datetime, date, time, timedelta."""
    return {
        "json": SimpleNamespace(dumps=json.dumps, loads=json.loads),
        "datetime": datetime,
        "date": date,
        "time": time,
        "timedelta": timedelta,
    }


def _wrap_body(tree: ast.Module) -> ast.Module:
    """Move the module body into ``def script_main():`` keeping line numbers."""
    fn = ast.parse(f"def {SCRIPT_ENTRYPOINT}():\n    pass\n").body[0]
    assert isinstance(fn, ast.FunctionDef)
    if tree.body:
        fn.body = tree.body
        ast.copy_location(fn, tree.body[0])
    tree.body = [fn]
    return ast.fix_missing_locations(tree)


def error_line(message: str) -> int | None:
    m = _ERROR_LINE_RE.match(message)
    return int(m.group(1)) if m else None


def compile_script(script: str, filename: str = SCRIPT_FILENAME) -> Any:
    """
    Compile guest source with RestrictedPython. Raises SyntaxError on failure
    (``lineno`` set when known).

    Returns a code object that defines ``script_main`` when exec'd.
    """
    try:
        tree = ast.parse(script, filename, "exec")
    except SyntaxError as e:
        raise SyntaxError(e.msg, (filename, e.lineno, e.offset, e.text)) from None
    result = compile_restricted_exec(_wrap_body(tree), filename)
    if result.errors or result.code is None:
        message = "; ".join(result.errors) or "RestrictedPython: compile failed"
        lineno = error_line(result.errors[0]) if result.errors else None
        raise SyntaxError(message, (filename, lineno, None, None))
    return result.code


def build_restricted_globals(
    context_dict: dict[str, Any],
    *,
    module_policy: ModulePolicy | None = None,
    log_sink: Callable[[str, str], None] | None = None,
) -> dict[str, Any]:
    """
    Build the globals dict for exec(compiled, globals): safe builtins with the
    import guard, RestrictedPython guards, extras (json, datetime) and the
    capability objects in ``context_dict``.
    """
    safe = _make_safe_builtins(module_policy or ModulePolicy())
    g: dict[str, Any] = {
        "__builtins__": safe,
        "__name__": "script",
    }
    g.update(_make_guard_globals(log_sink))
    g.update(_make_extra_globals())
    # Common container/utility types as top-level names
    for name in _CONTAINER_BUILTINS:
        obj = safe.get(name, getattr(builtins, name, None))
        if obj is not None:
            g[name] = obj
    g.update(context_dict)
    return g

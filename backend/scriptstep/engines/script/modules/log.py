"""
Log module for guest scripts: debug, info, warn, error.

Every call is forwarded, in call order, to the invocation's log sink
``sink(level, message)``. With no sink the calls are dropped.
"""

from types import SimpleNamespace
from typing import Any, Callable

LogSink = Callable[[str, str], None]

LEVELS = ("debug", "info", "warn", "error")


def _render(msg: Any, args: tuple[Any, ...]) -> str:
    text = str(msg)
    if args:
        try:
            text = text % args
        except (TypeError, ValueError):
            text = " ".join([text, *(str(a) for a in args)])
    return text


def make_log_module(*, sink: LogSink | None = None) -> Any:
    """Build the `log` object: debug, info, warn, error."""

    def _log(level: str, msg: Any, *args: Any) -> None:
        if sink is None:
            return
        sink(level, _render(msg, args))

    def debug(msg: Any, *args: Any) -> None:
        _log("debug", msg, *args)

    def info(msg: Any, *args: Any) -> None:
        _log("info", msg, *args)

    def warn(msg: Any, *args: Any) -> None:
        _log("warn", msg, *args)

    def error(msg: Any, *args: Any) -> None:
        _log("error", msg, *args)

    return SimpleNamespace(debug=debug, info=info, warn=warn, warning=warn, error=error)

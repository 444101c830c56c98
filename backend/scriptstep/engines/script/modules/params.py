"""
Params module for guest scripts: read step parameters by name.

Parameter values are either constants or callables ``value(index)`` resolved
for a record index (expression parameters).
"""

from collections.abc import Mapping
from types import SimpleNamespace
from typing import Any


def resolve_parameter(parameters: Mapping[str, Any], name: str, index: int, default: Any = None) -> Any:
    if name not in parameters:
        return default
    v = parameters[name]
    if callable(v):
        return v(index)
    return v


def make_params_module(*, parameters: Mapping[str, Any] | None, default_index: int = 0) -> Any:
    """
    Build the `params` object: get(name, default=None, index=None), names().
    index defaults to the record the invocation runs for.
    """
    params = dict(parameters or {})

    def get(name: str, default: Any = None, index: int | None = None) -> Any:
        return resolve_parameter(params, name, default_index if index is None else int(index), default)

    def names() -> list[str]:
        return sorted(params)

    return SimpleNamespace(get=get, names=names)


def project_parameters(parameters: Mapping[str, Any] | None, indexes: list[int]) -> dict[str, dict[str, Any]]:
    """Resolve every parameter at each index: {str(index): {name: value}}."""
    params = dict(parameters or {})
    return {
        str(i): {name: resolve_parameter(params, name, i) for name in params}
        for i in indexes
    }


def make_projected_params_module(projection: Mapping[str, Mapping[str, Any]], default_index: int = 0) -> Any:
    """`params` object backed by a projection from project_parameters()."""

    def get(name: str, default: Any = None, index: int | None = None) -> Any:
        i = default_index if index is None else int(index)
        return projection.get(str(i), {}).get(name, default)

    def names() -> list[str]:
        found: set[str] = set()
        for values in projection.values():
            found.update(values)
        return sorted(found)

    return SimpleNamespace(get=get, names=names)

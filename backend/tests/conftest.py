"""Shared fixtures for scriptstep tests."""

from collections.abc import Callable
from typing import Any

import pytest

from scriptstep.core.config import Settings
from scriptstep.core.static_data import MemoryStaticData
from scriptstep.engines.mode import ExecutionRequest
from scriptstep.engines.script import CapabilityContext, build_capability_context
from tests.utils.script import make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def static_data() -> MemoryStaticData:
    return MemoryStaticData("exec-test")


@pytest.fixture
def log_events() -> list[tuple[str, str]]:
    return []


@pytest.fixture
def make_context(
    settings: Settings,
    static_data: MemoryStaticData,
    log_events: list[tuple[str, str]],
) -> Callable[..., CapabilityContext]:
    """Factory: build_capability_context with test defaults (events land in log_events)."""

    def _make(request: ExecutionRequest, **kwargs: Any) -> CapabilityContext:
        kwargs.setdefault("parameters", None)
        kwargs.setdefault("static_data", static_data)
        kwargs.setdefault("log_sink", lambda level, msg: log_events.append((level, msg)))
        kwargs.setdefault("settings", settings)
        return build_capability_context(request, **kwargs)

    return _make

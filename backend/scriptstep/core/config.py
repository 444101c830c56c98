"""
Process-wide settings, read once from the environment (or .env) at host startup.
"""

from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_csv(raw: str | None) -> frozenset[str]:
    return frozenset(s.strip() for s in (raw or "").split(",") if s.strip())


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "scriptstep"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    SENTRY_DSN: str | None = None

    # Static-data store (Redis preferred, in-memory otherwise)
    CACHE_ENABLED: bool = False
    REDIS_URL: str = "redis://localhost:6379/0"
    STATIC_DATA_TTL_SECONDS: int = 3600

    # In-process sandbox
    SCRIPT_EXEC_TIMEOUT: float | None = 60.0
    SCRIPT_MAX_CONCURRENCY: int = 4
    SCRIPT_ALLOWED_BUILTIN_MODULES: str = ""
    SCRIPT_ALLOWED_EXTERNAL_MODULES: str = ""
    SCRIPT_ALLOW_TRANSITIVE_IMPORTS: bool = False

    # Host helpers exposed to guest code
    SCRIPT_HTTP_ENABLED: bool = True
    SCRIPT_HTTP_ALLOWED_HOSTS: str = ""
    SCRIPT_HTTP_TIMEOUT: float = 30.0
    SCRIPT_BINARY_HELPERS_ENABLED: bool = True
    SCRIPT_LOG_ENABLED: bool = True

    # External worker
    SCRIPT_USE_EXTERNAL_WORKER: bool = False
    SCRIPT_WORKER_URL: str | None = None
    SCRIPT_WORKER_TIMEOUT: float = 60.0
    SCRIPT_WORKER_CANCEL_TIMEOUT: float = 2.0
    SCRIPT_WORKER_AUTH_TOKEN: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def allowed_builtin_modules(self) -> frozenset[str]:
        return _parse_csv(self.SCRIPT_ALLOWED_BUILTIN_MODULES)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def allowed_external_modules(self) -> frozenset[str]:
        return _parse_csv(self.SCRIPT_ALLOWED_EXTERNAL_MODULES)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def http_allowed_hosts(self) -> frozenset[str]:
        return frozenset(h.lower() for h in _parse_csv(self.SCRIPT_HTTP_ALLOWED_HOSTS))


settings = Settings()  # type: ignore

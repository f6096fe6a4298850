"""Application Configuration — per-instance settings via pydantic-settings.

Invariants:
    - build_settings() returns a fresh CakoSettings on every call (no shared mutable default)
    - Explicit constructor values win over CAKO_* environment variables and .env
    - Section keys accepted in camelCase (useModel, publicUrlPrefix) or snake_case
    - useModel=true without a connection URL or dialect is a ConfigurationError

Design Decisions:
    - pydantic-settings over hand-merged dicts: nested validation, env support,
      deep merge of sources (CAKO_SERVER__PORT=8080)
    - Sequelize-style engine options (logging, pool.max, pool.acquire) translated
      to their SQLAlchemy equivalents; everything else passed to create_async_engine
"""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

from cako.core.errors import ConfigurationError

_URL_OPTIONS = ("url", "dialect", "host", "port", "query")


class _Section(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid",
    )


class ModelConfig(_Section):
    """Persistence section; `options` holds the engine's own settings."""
    use_model: bool = False
    database: str | None = None
    username: str | None = None
    password: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)

    def database_url(self) -> URL | str:
        if self.options.get("url"):
            return self.options["url"]
        dialect = self.options.get("dialect")
        if not dialect:
            raise ConfigurationError(
                "model.useModel is set but neither options.url nor options.dialect is given",
            )
        if self.password and not self.username:
            raise ConfigurationError("model.password requires model.username")
        if not self.database and not dialect.startswith("sqlite"):
            raise ConfigurationError(f"model.database is required for dialect '{dialect}'")
        return URL.create(
            dialect,
            username=self.username,
            password=self.password,
            host=self.options.get("host"),
            port=self.options.get("port"),
            database=self.database,
            query=self.options.get("query") or {},
        )

    def engine_options(self) -> dict[str, Any]:
        options = {k: v for k, v in self.options.items() if k not in _URL_OPTIONS}
        if "logging" in options:
            options["echo"] = bool(options.pop("logging"))
        pool = options.pop("pool", None) or {}
        if "max" in pool:
            options["pool_size"] = pool["max"]
        if "acquire" in pool:
            options["pool_timeout"] = pool["acquire"] / 1000
        options.pop("operatorsAliases", None)
        return options


class ControllerConfig(_Section):
    pass


class ViewConfig(_Section):
    public_url_prefix: str = ""

    @field_validator("public_url_prefix")
    @classmethod
    def normalize_prefix(cls, v: str) -> str:
        """`/blog/` -> `/blog`; the prefix must be empty or start with '/'."""
        v = v.strip().rstrip("/")
        if v and not v.startswith("/"):
            raise ValueError("publicUrlPrefix must start with '/'")
        return v


class ServerConfig(_Section):
    port: int = Field(25000, ge=0, le=65535)
    host: str = "0.0.0.0"


class MiddlewareConfig(_Section):
    cors_origins: list[str] = Field(default_factory=list)


class CakoSettings(BaseSettings):
    """Full Cako configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CAKO_",
        env_nested_delimiter="__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    model: ModelConfig = Field(default_factory=ModelConfig)
    controller: ControllerConfig = Field(default_factory=ControllerConfig)
    view: ViewConfig = Field(default_factory=ViewConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    middleware: MiddlewareConfig = Field(default_factory=MiddlewareConfig)

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"


def build_settings(config: Mapping[str, Any] | CakoSettings | None = None) -> CakoSettings:
    """Produce a fresh settings value from user config, environment and defaults."""
    if isinstance(config, CakoSettings):
        return config.model_copy(deep=True)
    try:
        return CakoSettings(**dict(config or {}))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

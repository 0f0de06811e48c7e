"""Centralized configuration for entity-index using Pydantic Settings."""

from typing import Annotated, Literal

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from entity_index.search.identifiers import sanitize_identifier


class Settings(BaseSettings):
    """Strictly typed configuration loaded from environment variables.

    Values passed to the constructor win over ``ENTITY_INDEX_*`` environment
    variables, which win over the defaults declared here.
    """

    model_config = SettingsConfigDict(
        env_prefix="ENTITY_INDEX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",  # Ignore extra env vars not defined in model
    )

    # Backend selection
    backend: Literal["sqlite", "sqlalchemy", "memory"] = Field(
        default="sqlite", description="Row store backend used by the index engine"
    )
    sqlite_path: str = Field(default="entity_index.db", description="Database file for the sqlite backend")

    # Connection settings (sqlalchemy backend)
    driver: str = Field(default="mysql+pymysql", description="SQLAlchemy dialect+driver name")
    host: str = Field(default="127.0.0.1", description="Database server host")
    port: int = Field(default=3306, ge=1, le=65535, description="Database server port")
    user: str = Field(default="root", description="Database user")
    password: SecretStr = Field(default=SecretStr(""), description="Database password")
    database: str = Field(default="phonetworks", description="Database name")
    table: str = Field(default="index_rows", description="Table holding the index rows")

    # Search behaviour
    value_match: Literal["exact", "substring"] = Field(
        default="exact", description="Compare search values exactly or as a substring"
    )

    # Resource limits
    storage_timeout_seconds: float = Field(
        default=30.0, gt=0, le=600, description="Timeout applied to every storage call"
    )
    reconnect_interval_seconds: float = Field(
        default=5.0, ge=0, le=3600, description="Minimum wait between automatic attempts to reopen a failed store"
    )

    # Logging
    log_level: str = Field(default="info", description="Logging level")
    log_json: bool = Field(default=True, description="Emit structured JSON logs")
    logger_levels: dict[str, str] = Field(
        default_factory=dict, description='Per-logger level overrides, e.g. {"entity_index.search": "debug"}'
    )

    # Trace export
    otlp_endpoint: str | None = Field(default=None, description="OTLP collector endpoint; unset keeps spans in-process")
    otlp_protocol: Literal["grpc", "http"] = Field(default="grpc", description="OTLP transport protocol")
    otlp_timeout_seconds: int = Field(default=10, ge=1, le=60, description="OTLP exporter timeout in seconds")

    @field_validator("database", "table")
    @classmethod
    def _sanitize_names(cls, value: str) -> str:
        cleaned = sanitize_identifier(value)
        if not cleaned:
            raise ValueError("database and table names need at least one of [A-Za-z0-9_$]")
        return cleaned

    def is_substring_match(self) -> bool:
        """Check if search values are matched as substrings."""
        return self.value_match == "substring"

    def sqlalchemy_url(self) -> str:
        """Build the SQLAlchemy connection URL from the connection settings."""
        from sqlalchemy.engine import URL

        url = URL.create(
            drivername=self.driver,
            username=self.user or None,
            password=self.password.get_secret_value() or None,
            host=self.host or None,
            port=self.port,
            database=self.database,
        )
        return url.render_as_string(hide_password=False)


class ObservabilityCollectorConfig(BaseModel):
    """Configuration for OTLP trace export."""

    model_config = {"extra": "forbid"}

    enabled: Annotated[
        bool,
        Field(
            description="Enable OTLP trace export to an external collector",
        ),
    ] = False

    otlp_protocol: Annotated[
        Literal["http", "grpc"],
        Field(
            description="OTLP transport protocol",
        ),
    ] = "grpc"

    collector_endpoint: Annotated[
        str,
        Field(
            description="OTLP collector endpoint (HTTP uses /v1/traces)",
            examples=["http://localhost:4317", "http://localhost:4318/v1/traces"],
        ),
    ] = "http://localhost:4317"

    headers: Annotated[
        dict[str, str],
        Field(
            description="Optional headers to include with OTLP requests",
        ),
    ] = Field(default_factory=dict)

    timeout_seconds: Annotated[
        int,
        Field(
            ge=1,
            le=60,
            description="OTLP exporter timeout in seconds",
        ),
    ] = 10

    grpc_insecure: Annotated[
        bool,
        Field(
            description="Allow insecure gRPC (plaintext) connections",
        ),
    ] = True

    resource_attributes: Annotated[
        dict[str, str],
        Field(
            description="Additional OpenTelemetry resource attributes for trace export",
        ),
    ] = Field(default_factory=dict)

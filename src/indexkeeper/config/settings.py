"""Application settings — Pydantic-based configuration with YAML and env var support.

Configuration is loaded from (in order of precedence):
  1. YAML config file (if specified)
  2. Environment variables (INDEXKEEPER_ prefix)
  3. Default values
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class TransportSettings(BaseModel):
    """Search engine connection configuration."""

    backend: Literal["opensearch", "memory"] = Field(default="opensearch", description="Transport backend")
    hosts: list[str] = Field(default_factory=lambda: ["https://localhost:9200"], description="Engine node URLs")
    username: str | None = Field(default=None, description="Authentication username")
    password: str | None = Field(default=None, description="Authentication password")
    verify_certs: bool = Field(default=True, description="Verify TLS certificates")
    request_timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")
    extra: dict[str, Any] = Field(default_factory=dict, description="Backend-specific client options")

    @field_validator("hosts", mode="before")
    @classmethod
    def _parse_hosts(cls, v: Any) -> list[str]:
        """Parse hosts from JSON string (env var) or list."""
        if isinstance(v, str):
            import json

            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return [str(h) for h in parsed]
            except (json.JSONDecodeError, TypeError):
                pass
            # Comma-separated or single host
            return [h.strip() for h in v.split(",") if h.strip()]
        return list(v)


class MigrationSettings(BaseModel):
    """Remap (zero-downtime migration) behaviour."""

    batch_size: int = Field(default=500, ge=1, description="Documents per snapshot copy batch")
    max_retries: int = Field(default=3, ge=0, description="Retries for transient copy and dual-write failures")
    retry_backoff: float = Field(default=0.5, ge=0, description="Initial retry delay in seconds, doubled per attempt")
    delete_retries: int = Field(default=3, ge=0, description="Retries for deleting the retired source index")
    refresh_after_copy: bool = Field(default=True, description="Refresh the target index before cutover")


class ObservabilitySettings(BaseModel):
    """Observability configuration."""

    log_level: str = Field(default="info", description="Log level: debug, info, warning, error")
    log_format: str = Field(default="json", description="Log format: json, console")


class Settings(BaseSettings):
    """Root settings.

    Configuration is loaded from environment variables with the INDEXKEEPER_ prefix.
    Nested settings use double underscores: INDEXKEEPER_MIGRATION__BATCH_SIZE=1000

    Example:
        INDEXKEEPER_TRANSPORT__HOSTS='["https://search-1:9200"]'
        INDEXKEEPER_TRANSPORT__REQUEST_TIMEOUT=10
        INDEXKEEPER_OBSERVABILITY__LOG_FORMAT=console
    """

    model_config = {
        "env_prefix": "INDEXKEEPER_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    transport: TransportSettings = Field(default_factory=TransportSettings)
    migration: MigrationSettings = Field(default_factory=MigrationSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @classmethod
    def from_yaml(cls, path: str | Path) -> Settings:
        """Load settings from a YAML configuration file.

        Values from the YAML file override environment variables; anything the
        file leaves out still comes from the environment or the defaults.

        Args:
            path: Path to the YAML config file.

        Returns:
            Populated Settings instance.
        """
        import yaml  # type: ignore[import-untyped]

        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

"""
Configuration management using Pydantic Settings.

Loads configuration from environment variables with HARNESS_ prefix.
"""
import shlex
import sys
from pathlib import Path
from typing import List

import httpx
from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigurationError
from ..models.outcomes import ServerEndpoint


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="HARNESS_",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore"
    )

    # Target server
    host: str = "127.0.0.1"
    port: int = Field(default=4000, validation_alias=AliasChoices("HARNESS_PORT", "PORT"))
    base_url: str | None = None
    health_path: str = "/health"
    start_command: str | None = None
    readiness_marker: str = "Server running"
    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("HARNESS_ENVIRONMENT", "ENVIRONMENT")
    )

    # Launch
    startup_timeout: float = 4.0
    max_attempts: int = 3
    retry_delay: float = 1.0

    # Health probing
    probe_timeout: float = 1.0
    probe_interval: float = 0.3
    assertion_timeout: float = 5.0
    expected_status: int = 200

    # Shutdown
    grace_period: float = 2.0
    stop_timeout: float = 5.0

    # Port polling
    port_wait_timeout: float = 10.0
    port_poll_interval: float = 0.2

    # Webhook secret for the bundled server
    webhook_secret: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("HARNESS_WEBHOOK_SECRET", "GITHUB_WEBHOOK_SECRET")
    )

    # Pipeline runner
    pipeline_file: Path = Path("pipeline.yaml")

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    log_dir: Path | None = None

    # MCP server
    server_name: str = "cicd-harness"
    transport: str = "stdio"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of {valid_levels}")
        return v_upper

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator("health_path")
    @classmethod
    def validate_health_path(cls, v: str) -> str:
        """Health path must be absolute."""
        if not v.startswith("/"):
            raise ValueError("Health path must start with '/'")
        return v

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be at least 1")
        return v

    def endpoint(self) -> ServerEndpoint:
        """Build the endpoint the harness probes, honouring base_url."""
        if self.base_url:
            try:
                url = httpx.URL(self.base_url)
            except httpx.InvalidURL as e:
                raise ConfigurationError(f"Invalid base_url: {e}", context={"base_url": self.base_url})
            if url.scheme not in ("http", "https") or not url.host:
                raise ConfigurationError(
                    f"base_url must be an absolute http(s) URL: {self.base_url}",
                    context={"base_url": self.base_url}
                )
            port = url.port or (443 if url.scheme == "https" else 80)
            return ServerEndpoint(
                scheme=url.scheme,
                host=url.host,
                port=port,
                health_path=self.health_path
            )
        return ServerEndpoint(host=self.host, port=self.port, health_path=self.health_path)

    def command(self) -> List[str]:
        """Argv used to start the target server."""
        if self.start_command:
            try:
                argv = shlex.split(self.start_command)
            except ValueError as e:
                raise ConfigurationError(
                    f"Cannot parse start_command: {e}",
                    context={"start_command": self.start_command}
                )
            if not argv:
                raise ConfigurationError("start_command is empty", context={})
            return argv
        return [sys.executable, "-m", "cicd_harness", "serve"]

    def ensure_directories(self) -> None:
        """Create the log directory if one is configured."""
        if self.log_dir:
            self.log_dir.mkdir(parents=True, exist_ok=True)


# Singleton instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create settings singleton instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached singleton so the next call reloads the environment."""
    global _settings
    _settings = None

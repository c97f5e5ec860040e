"""Agent configuration.

Settings are layered: values from an optional YAML file are overridden by
environment variables, and built-in defaults fill whatever is still unset.
The YAML file mirrors the section layout below::

    database:
      host: db.example.internal
      port: 3306
    agent:
      check_interval: 30
    netplan:
      dry_run: true
    logging:
      level: debug
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from multinic_agent.errors import ConfigError


class _SectionSettings(BaseSettings):
    """Settings section where environment variables win over file values.

    Empty environment variables count as unset.
    """

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True, env_ignore_empty=True)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # init kwargs carry the YAML file section
        return env_settings, init_settings


class DatabaseSettings(_SectionSettings):
    """Interface repository connection (MySQL)."""

    model_config = SettingsConfigDict(env_prefix="DB_")

    host: str = "localhost"
    port: int = 3306
    username: str = ""
    password: str = ""
    database: str = "multinic"
    charset: str = "utf8mb4"
    loc: str = "UTC"  # session time zone

    # Connection pool limits
    pool_size: int = 5
    max_overflow: int = 5
    pool_recycle: int = 300  # seconds


class AgentSettings(_SectionSettings):
    """Reconciliation loop behaviour."""

    model_config = SettingsConfigDict(env_prefix="AGENT_")

    check_interval: int = Field(30, gt=0)  # seconds

    # Startup database verification
    retry_count: int = Field(3, ge=1)
    retry_interval: int = Field(5, ge=0)  # seconds

    # Falls back to the local host name when empty
    node_name: str = Field("", validation_alias="node_name")

    shutdown_grace: float = 2.0  # seconds


class NetplanSettings(_SectionSettings):
    """Netplan file placement and generation policy."""

    model_config = SettingsConfigDict(env_prefix="NETPLAN_")

    config_path: str = "/etc/netplan"
    backup_path: str = "/var/backups/netplan"

    # Simulate-only mode: log instead of touching files or running commands
    dry_run: bool = Field(False, validation_alias=AliasChoices("dry_run", "netplan_dry_run"))

    renderer: str = "networkd"  # empty string omits the renderer key
    address_mode: Literal["static", "dhcp"] = "static"
    nameservers: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["8.8.8.8", "8.8.4.4"]
    )
    host_offset: int = Field(10, ge=1)
    gateway_offset: int = Field(1, ge=1)
    route_metric: int = 100

    # Command timeouts (seconds)
    apply_timeout: float = 60.0
    command_timeout: float = 120.0

    @field_validator("nameservers", mode="before")
    @classmethod
    def _split_nameservers(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


class LoggingSettings(_SectionSettings):
    """Log level, format and destination."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = "info"
    format: Literal["json", "text"] = "json"
    output: Literal["stdout", "file"] = "stdout"
    file_path: str = ""

    @field_validator("level", "format", "output", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class Settings(BaseModel):
    """Complete agent settings."""

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    netplan: NetplanSettings = Field(default_factory=NetplanSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


_SECTIONS: dict[str, type[_SectionSettings]] = {
    "database": DatabaseSettings,
    "agent": AgentSettings,
    "netplan": NetplanSettings,
    "logging": LoggingSettings,
}


def _read_config_file(config_path: str) -> dict[str, Any]:
    path = Path(config_path)
    try:
        content = path.read_text()
    except OSError as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    return data


def load_settings(config_path: str | None = None) -> Settings:
    """Load settings from an optional YAML file and the environment.

    Args:
        config_path: Path to a YAML config file, or None to use only the
            environment and defaults

    Returns:
        Fully populated Settings

    Raises:
        ConfigError: If the file cannot be read or a value is invalid
    """
    file_data = _read_config_file(config_path) if config_path else {}

    sections: dict[str, _SectionSettings] = {}
    for name, section_cls in _SECTIONS.items():
        section_data = file_data.get(name) or {}
        if not isinstance(section_data, dict):
            raise ConfigError(f"Config section '{name}' must be a mapping")
        try:
            sections[name] = section_cls(**section_data)
        except ValidationError as e:
            raise ConfigError(f"Invalid '{name}' configuration: {e}") from e

    return Settings(**sections)

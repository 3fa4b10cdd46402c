"""
Configuration settings for the blue-green manager.

Configuration is read from a YAML file and validated with pydantic.
A handful of deployment-specific paths can be overridden from the
environment so the same file works across hosts.
"""

import os
from pathlib import Path
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from bluegreen_manager.errors import InvalidConfigError
from bluegreen_manager.models.slot import SlotId, check_address

LOOPBACK_HOSTS = ("127.0.0.1", "localhost", "::1")


class SlotConfig(BaseModel):
    """Where a slot lives and how to refresh it."""

    address: str = Field(..., description="Address the manager probes, as host:port")
    upstream: Optional[str] = Field(
        None, description="Address nginx proxies to, when it differs from address"
    )
    compose_file: Optional[str] = Field(
        None, description="Compose file used to (re)create this slot's containers"
    )
    project_name: Optional[str] = Field(None, description="Compose project name for this slot")

    @field_validator("address")
    @classmethod
    def validate_address(cls, value: str) -> str:
        return check_address(value)

    @field_validator("upstream")
    @classmethod
    def validate_upstream(cls, value: Optional[str]) -> Optional[str]:
        return check_address(value) if value is not None else None

    @property
    def proxy_address(self) -> str:
        return self.upstream or self.address


class HealthCheckConfig(BaseModel):
    """Health probe policy applied to a freshly provisioned slot."""

    interval_seconds: float = Field(default=2.0, description="Delay between attempts")
    max_attempts: int = Field(default=30, description="Attempts before declaring unhealthy")
    timeout_seconds: float = Field(default=5.0, description="Per-attempt timeout")
    path: str = Field(default="/health", description="Health endpoint path")
    scheme: Literal["http", "https"] = Field(default="http")

    @field_validator("path")
    @classmethod
    def validate_path(cls, value: str) -> str:
        return value if value.startswith("/") else f"/{value}"


class NginxConfig(BaseModel):
    """Reverse proxy settings."""

    enabled: bool = Field(default=True)
    config_path: str = Field(default="/etc/bluegreen/nginx/nginx.conf")
    container_name: Optional[str] = Field(
        default=None, description="Container running nginx; None runs nginx on the host"
    )
    listen_port: int = Field(default=80)
    server_name: str = Field(default="_")
    keep_backups: int = Field(default=10)


class ProvisionerConfig(BaseModel):
    """How the inactive slot gets refreshed before probing."""

    type: Literal["compose", "noop"] = Field(default="compose")
    timeout_seconds: float = Field(default=300.0)


class ManagerConfig(BaseModel):
    """Core manager settings."""

    state_dir: str = Field(default="/var/lib/bluegreen-manager")
    audit_log_path: Optional[str] = Field(
        None, description="Audit log location; defaults to <state_dir>/audit.jsonl"
    )
    initial_active: SlotId = Field(default=SlotId.A)
    deploy_timeout_seconds: float = Field(default=600.0)

    @field_validator("initial_active", mode="before")
    @classmethod
    def parse_slot(cls, value: object) -> SlotId:
        return SlotId.parse(value)  # type: ignore[arg-type]

    @property
    def resolved_audit_log_path(self) -> Path:
        if self.audit_log_path:
            return Path(self.audit_log_path)
        return Path(self.state_dir) / "audit.jsonl"


class ApiConfig(BaseModel):
    """HTTP trigger surface settings."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8890)
    deploy_token: Optional[str] = Field(
        None, description="Bearer token required to trigger deployments, if set"
    )


class LoggingConfig(BaseModel):
    """Logging destinations and levels."""

    log_dir: str = Field(default="/var/log/bluegreen-manager")
    console_level: str = Field(default="INFO")
    file_level: str = Field(default="DEBUG")
    use_json: bool = Field(default=False)


def _default_slots() -> Dict[SlotId, SlotConfig]:
    return {
        SlotId.A: SlotConfig(address="127.0.0.1:8081", project_name="bluegreen-a"),
        SlotId.B: SlotConfig(address="127.0.0.1:8082", project_name="bluegreen-b"),
    }


class BlueGreenConfig(BaseModel):
    """Complete blue-green manager configuration."""

    manager: ManagerConfig = Field(default_factory=ManagerConfig)
    slots: Dict[SlotId, SlotConfig] = Field(default_factory=_default_slots)
    health_check: HealthCheckConfig = Field(default_factory=HealthCheckConfig)
    nginx: NginxConfig = Field(default_factory=NginxConfig)
    provisioner: ProvisionerConfig = Field(default_factory=ProvisionerConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("slots", mode="before")
    @classmethod
    def parse_slot_keys(cls, value: object) -> object:
        if isinstance(value, dict):
            return {SlotId.parse(key): slot for key, slot in value.items()}
        return value

    @model_validator(mode="after")
    def validate_both_slots(self) -> "BlueGreenConfig":
        """Both permanent slots must be configured."""
        missing = [slot.value for slot in SlotId if slot not in self.slots]
        if missing:
            raise ValueError(f"Missing slot configuration for: {', '.join(missing)}")
        return self

    @model_validator(mode="after")
    def validate_proxy_reachable(self) -> "BlueGreenConfig":
        """A containerized nginx cannot reach slots through its own loopback."""
        if not (self.nginx.enabled and self.nginx.container_name):
            return self
        for slot, slot_config in self.slots.items():
            host = slot_config.proxy_address.rpartition(":")[0].strip("[]")
            if host in LOOPBACK_HOSTS:
                raise ValueError(
                    f"Slot {slot.value} routes to {slot_config.proxy_address}, which is the "
                    f"loopback of container '{self.nginx.container_name}'. Set "
                    f"slots.{slot.value}.upstream to an address nginx can reach."
                )
        return self

    @classmethod
    def from_file(cls, path: str) -> "BlueGreenConfig":
        """
        Load configuration from a YAML file.

        A missing file yields the defaults. Environment variables are
        applied on top of the file contents.

        Raises:
            InvalidConfigError: If the file is unreadable or fails validation
        """
        config_path = Path(path)
        data: Dict = {}
        if config_path.exists():
            try:
                with open(config_path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise InvalidConfigError(f"Cannot read configuration {path}: {e}") from e
            if not isinstance(data, dict):
                raise InvalidConfigError(f"Configuration {path} must be a mapping")

        cls._apply_env_overrides(data)

        try:
            return cls(**data)
        except ValidationError as e:
            raise InvalidConfigError(f"Invalid configuration {path}: {e}") from e

    @staticmethod
    def _apply_env_overrides(data: Dict) -> None:
        overrides = {
            "BLUEGREEN_STATE_DIR": ("manager", "state_dir"),
            "BLUEGREEN_AUDIT_LOG": ("manager", "audit_log_path"),
            "BLUEGREEN_NGINX_CONFIG": ("nginx", "config_path"),
            "BLUEGREEN_DEPLOY_TOKEN": ("api", "deploy_token"),
        }
        for env_var, (section, key) in overrides.items():
            value = os.getenv(env_var)
            if value:
                section_data = data.get(section) or {}
                section_data[key] = value
                data[section] = section_data

    def save(self, path: str) -> None:
        """Write this configuration as YAML."""
        config_path = Path(path)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)

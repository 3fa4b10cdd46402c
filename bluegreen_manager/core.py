"""
Orchestrator construction from configuration, shared by the API and the CLI.
"""

from pathlib import Path
from typing import Any, Optional

from bluegreen_manager.audit import AuditLog
from bluegreen_manager.config.settings import BlueGreenConfig
from bluegreen_manager.deployment_orchestrator import DeploymentOrchestrator
from bluegreen_manager.health_prober import HealthProber
from bluegreen_manager.provisioner import Provisioner, create_provisioner
from bluegreen_manager.registry import EnvironmentRegistry


def create_router(config: BlueGreenConfig) -> Any:
    """Build the traffic router selected in the configuration."""
    if not config.nginx.enabled:
        from bluegreen_manager.nginx_noop import NoOpNginxManager

        return NoOpNginxManager()

    from bluegreen_manager.nginx_manager import NginxManager

    return NginxManager(
        config_path=config.nginx.config_path,
        container_name=config.nginx.container_name,
        listen_port=config.nginx.listen_port,
        server_name=config.nginx.server_name,
        keep_backups=config.nginx.keep_backups,
        upstreams={slot: cfg.upstream for slot, cfg in config.slots.items() if cfg.upstream},
    )


def build_orchestrator(
    config: BlueGreenConfig,
    router: Optional[Any] = None,
    provisioner: Optional[Provisioner] = None,
    prober: Optional[HealthProber] = None,
) -> DeploymentOrchestrator:
    """
    Wire an orchestrator from configuration.

    Collaborators can be passed in to replace the configured ones.
    """
    registry = EnvironmentRegistry(
        state_dir=Path(config.manager.state_dir),
        slot_addresses={slot: cfg.address for slot, cfg in config.slots.items()},
        initial_active=config.manager.initial_active,
    )
    return DeploymentOrchestrator(
        registry=registry,
        router=router if router is not None else create_router(config),
        provisioner=provisioner if provisioner is not None else create_provisioner(config),
        audit_log=AuditLog(config.manager.resolved_audit_log_path),
        health_policy=config.health_check,
        prober=prober,
        deploy_timeout_seconds=config.manager.deploy_timeout_seconds,
    )

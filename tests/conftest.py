"""
Pytest configuration and fixtures for blue-green manager tests.
"""

import os

import pytest

from bluegreen_manager.audit import AuditLog
from bluegreen_manager.config.settings import HealthCheckConfig
from bluegreen_manager.deployment_orchestrator import DeploymentOrchestrator
from bluegreen_manager.models import ProbeResult, SlotId
from bluegreen_manager.registry import EnvironmentRegistry

SLOT_ADDRESSES = {SlotId.A: "127.0.0.1:8081", SlotId.B: "127.0.0.1:8082"}


def pytest_configure(config):
    """
    Set environment variables before any test modules are imported.
    This runs very early in the pytest lifecycle.
    """
    for env_var in (
        "BLUEGREEN_STATE_DIR",
        "BLUEGREEN_AUDIT_LOG",
        "BLUEGREEN_NGINX_CONFIG",
        "BLUEGREEN_DEPLOY_TOKEN",
        "BLUEGREEN_API_URL",
        "BLUEGREEN_CONFIG",
    ):
        os.environ.pop(env_var, None)


class FakeRouter:
    """Router double recording every switch."""

    def __init__(self):
        self.fail_with = None
        self.switches = []
        self._target = None

    def switch(self, slot, address):
        self.switches.append((slot, address))
        if self.fail_with:
            return False, self.fail_with
        self._target = slot
        return True, ""

    def current_target(self):
        return self._target


class FakeProvisioner:
    """Provisioner double with a configurable outcome."""

    def __init__(self):
        self.success = True
        self.message = "provisioned"
        self.calls = []

    async def provision(self, slot, version):
        self.calls.append((slot, version))
        return self.success, self.message


class FakeProber:
    """Prober double returning a fixed verdict."""

    def __init__(self):
        self.result = ProbeResult(healthy=True, attempts=1)
        self.calls = []

    async def probe(self, address, policy):
        self.calls.append(address)
        return self.result


@pytest.fixture
def temp_dirs(tmp_path):
    """Create temporary directories for testing."""
    dirs = {
        "state": tmp_path / "state",
        "nginx": tmp_path / "nginx",
        "config": tmp_path / "config",
        "logs": tmp_path / "logs",
    }

    for dir_path in dirs.values():
        dir_path.mkdir(parents=True, exist_ok=True)

    return dirs


@pytest.fixture
def registry(temp_dirs):
    return EnvironmentRegistry(temp_dirs["state"], SLOT_ADDRESSES)


@pytest.fixture
def audit_log(temp_dirs):
    return AuditLog(temp_dirs["state"] / "audit.jsonl")


@pytest.fixture
def fake_router():
    return FakeRouter()


@pytest.fixture
def fake_provisioner():
    return FakeProvisioner()


@pytest.fixture
def fake_prober():
    return FakeProber()


@pytest.fixture
def health_policy():
    return HealthCheckConfig(interval_seconds=0, max_attempts=3, timeout_seconds=1)


@pytest.fixture
def orchestrator(registry, fake_router, fake_provisioner, fake_prober, audit_log, health_policy):
    """Orchestrator wired to in-memory collaborators and a real registry."""
    return DeploymentOrchestrator(
        registry=registry,
        router=fake_router,
        provisioner=fake_provisioner,
        audit_log=audit_log,
        health_policy=health_policy,
        prober=fake_prober,
    )

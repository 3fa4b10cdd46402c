"""
Tests for the blue-green deployment orchestrator.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from bluegreen_manager.config.settings import HealthCheckConfig
from bluegreen_manager.deployment_orchestrator import DeploymentOrchestrator, _Attempt
from bluegreen_manager.errors import (
    AuditWriteFailedError,
    DeploymentInProgressError,
    InvalidConfigError,
    StorageUnavailableError,
)
from bluegreen_manager.models import (
    DeploymentOutcome,
    DeploymentState,
    ProbeResult,
    SlotId,
)


class BlockingProvisioner:
    """Provisioner that holds the deployment open until released."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def provision(self, slot, version):
        self.started.set()
        await self.release.wait()
        return True, "provisioned"


class SlowProvisioner:
    async def provision(self, slot, version):
        await asyncio.sleep(5)
        return True, "provisioned"


class TestSuccessfulDeployment:
    """Deployments that pass every gate."""

    @pytest.mark.asyncio
    async def test_deploy_switches_to_inactive_slot(
        self, orchestrator, registry, fake_router, fake_provisioner, fake_prober
    ):
        """Test a healthy deploy moves traffic from A to B."""
        result = await orchestrator.deploy("1.2.0")

        assert result.succeeded
        assert result.exit_code == 0
        assert result.warnings == []
        assert result.attempt.outcome == DeploymentOutcome.SUCCESS
        assert result.attempt.previous_slot == SlotId.A
        assert result.attempt.target_slot == SlotId.B
        assert result.attempt.health_attempts == 1

        assert registry.get_active() == SlotId.B
        assert fake_provisioner.calls == [(SlotId.B, "1.2.0")]
        assert fake_prober.calls == ["127.0.0.1:8082"]
        assert fake_router.switches == [(SlotId.B, "127.0.0.1:8082")]
        assert orchestrator.state == DeploymentState.IDLE
        assert not orchestrator.in_progress

    @pytest.mark.asyncio
    async def test_deploy_records_slot_metadata(self, orchestrator, registry):
        """Test the target slot's version and health time are recorded."""
        await orchestrator.deploy("1.2.0")

        slot = registry.get_slot(SlotId.B)
        assert slot.last_deployed_version == "1.2.0"
        assert slot.last_known_healthy is not None
        assert registry.get_slot(SlotId.A).last_deployed_version is None

    @pytest.mark.asyncio
    async def test_deploy_writes_audit_record(self, orchestrator, audit_log):
        """Test each finished attempt lands in the audit log."""
        result = await orchestrator.deploy("1.2.0")

        history = await audit_log.history()
        assert len(history) == 1
        assert history[0].attempt_id == result.attempt.attempt_id
        assert history[0].outcome == DeploymentOutcome.SUCCESS

    @pytest.mark.asyncio
    async def test_sequential_deployments_alternate_slots(self, orchestrator, registry):
        """Test two deploys in a row swap A -> B -> A."""
        first = await orchestrator.deploy("1.2.0")
        second = await orchestrator.deploy("1.3.0")

        assert first.attempt.target_slot == SlotId.B
        assert second.attempt.previous_slot == SlotId.B
        assert second.attempt.target_slot == SlotId.A
        assert registry.get_active() == SlotId.A

        history = await orchestrator.history()
        assert [a.version for a in history] == ["1.3.0", "1.2.0"]

    @pytest.mark.asyncio
    async def test_version_is_stripped(self, orchestrator, fake_provisioner):
        """Test surrounding whitespace is removed from the version."""
        result = await orchestrator.deploy("  1.2.0\n")

        assert result.attempt.version == "1.2.0"
        assert fake_provisioner.calls == [(SlotId.B, "1.2.0")]


class TestFailedDeployment:
    """Deployments stopped by one of the gates."""

    @pytest.mark.asyncio
    async def test_health_check_failure_keeps_active_slot(
        self, orchestrator, registry, fake_router, fake_prober
    ):
        """Test an unhealthy slot never receives traffic."""
        fake_prober.result = ProbeResult(healthy=False, attempts=3, last_error="status 503")

        result = await orchestrator.deploy("1.2.0")

        assert not result.succeeded
        assert result.exit_code == 1
        assert result.attempt.outcome == DeploymentOutcome.HEALTH_CHECK_FAILED
        assert result.attempt.reason.startswith("HealthCheckFailed")
        assert "status 503" in result.attempt.reason
        assert result.attempt.health_attempts == 3
        assert registry.get_active() == SlotId.A
        assert fake_router.switches == []
        assert orchestrator.state == DeploymentState.IDLE

    @pytest.mark.asyncio
    async def test_router_never_invoked_when_unhealthy(self, orchestrator, fake_prober):
        """Test the router switch is not called for an unhealthy slot."""
        fake_prober.result = ProbeResult(healthy=False, attempts=3, last_error="timed out")

        with patch.object(orchestrator.router, "switch") as mock_switch:
            await orchestrator.deploy("1.2.0")

        mock_switch.assert_not_called()

    @pytest.mark.asyncio
    async def test_provision_failure(self, orchestrator, registry, fake_provisioner, fake_prober):
        """Test a failed provision skips probing and switching."""
        fake_provisioner.success = False
        fake_provisioner.message = "image not found"

        result = await orchestrator.deploy("9.9.9")

        assert result.exit_code == 2
        assert result.attempt.outcome == DeploymentOutcome.PROVISION_FAILED
        assert result.attempt.reason == "ProvisionFailed: image not found"
        assert result.attempt.health_attempts is None
        assert fake_prober.calls == []
        assert registry.get_active() == SlotId.A

    @pytest.mark.asyncio
    async def test_provisioner_exception_is_provision_failure(self, orchestrator, registry):
        """Test a provisioner that raises is reported as a provision failure."""
        orchestrator.provisioner.provision = AsyncMock(side_effect=RuntimeError("docker down"))

        result = await orchestrator.deploy("1.2.0")

        assert result.attempt.outcome == DeploymentOutcome.PROVISION_FAILED
        assert "docker down" in result.attempt.reason
        assert registry.get_active() == SlotId.A

    @pytest.mark.asyncio
    async def test_router_apply_failure(self, orchestrator, registry, fake_router):
        """Test a rejected router config leaves the previous slot active."""
        fake_router.fail_with = "Nginx config validation failed: [emerg] unexpected '}'"

        result = await orchestrator.deploy("1.2.0")

        assert result.exit_code == 3
        assert result.attempt.outcome == DeploymentOutcome.ROUTER_APPLY_FAILED
        assert result.attempt.reason.startswith("RouterApplyFailed")
        assert "slot A remains active" in result.attempt.reason
        assert registry.get_active() == SlotId.A

    @pytest.mark.asyncio
    async def test_router_exception_is_apply_failure(self, orchestrator, registry):
        """Test a router that raises is reported as a router apply failure."""
        with patch.object(orchestrator.router, "switch", side_effect=OSError("read-only fs")):
            result = await orchestrator.deploy("1.2.0")

        assert result.attempt.outcome == DeploymentOutcome.ROUTER_APPLY_FAILED
        assert "read-only fs" in result.attempt.reason
        assert registry.get_active() == SlotId.A

    @pytest.mark.asyncio
    async def test_failed_attempt_is_audited(self, orchestrator, fake_prober, audit_log):
        """Test failed attempts are recorded too."""
        fake_prober.result = ProbeResult(healthy=False, attempts=3, last_error="status 500")

        await orchestrator.deploy("1.2.0")

        last = await audit_log.last()
        assert last.outcome == DeploymentOutcome.HEALTH_CHECK_FAILED


class TestDeploymentValidation:
    """Input rejected before any mutation."""

    @pytest.mark.asyncio
    async def test_empty_version_rejected(self, orchestrator, fake_provisioner, audit_log):
        with pytest.raises(InvalidConfigError):
            await orchestrator.deploy("   ")

        assert fake_provisioner.calls == []
        assert await audit_log.history() == []

    def test_validate_version(self):
        assert DeploymentOrchestrator.validate_version(" v2.1 ") == "v2.1"
        with pytest.raises(InvalidConfigError):
            DeploymentOrchestrator.validate_version("")

    @pytest.mark.asyncio
    async def test_invalid_probe_policy_rejected(self, orchestrator, fake_provisioner):
        """Test a zero attempt budget is rejected up front."""
        orchestrator.health_policy = HealthCheckConfig(max_attempts=0)

        with pytest.raises(InvalidConfigError):
            await orchestrator.deploy("1.2.0")

        assert fake_provisioner.calls == []

    @pytest.mark.asyncio
    async def test_invalid_timeout_rejected(self, orchestrator):
        orchestrator.deploy_timeout_seconds = 0

        with pytest.raises(InvalidConfigError):
            await orchestrator.deploy("1.2.0")


class TestConcurrency:
    """At most one deployment at a time."""

    @pytest.mark.asyncio
    async def test_concurrent_deploy_rejected(self, orchestrator, registry):
        """Test a second deploy fails fast while the first is running."""
        provisioner = BlockingProvisioner()
        orchestrator.provisioner = provisioner

        first = asyncio.create_task(orchestrator.deploy("1.2.0"))
        await asyncio.wait_for(provisioner.started.wait(), timeout=1)

        with pytest.raises(DeploymentInProgressError):
            await orchestrator.deploy("1.3.0")

        provisioner.release.set()
        result = await first

        assert result.succeeded
        assert registry.get_active() == SlotId.B
        assert len(await orchestrator.history()) == 1

    @pytest.mark.asyncio
    async def test_status_during_deployment(self, orchestrator):
        """Test status answers without waiting for an in-flight deployment."""
        provisioner = BlockingProvisioner()
        orchestrator.provisioner = provisioner

        task = asyncio.create_task(orchestrator.deploy("1.2.0"))
        await asyncio.wait_for(provisioner.started.wait(), timeout=1)

        status = await orchestrator.status()
        assert status["in_progress"] is True
        assert status["state"] == "provisioning"
        assert status["active_slot"] == "A"
        assert status["current_attempt"]["version"] == "1.2.0"
        assert status["current_attempt"]["target_slot"] == "B"

        provisioner.release.set()
        await task

        status = await orchestrator.status()
        assert status["in_progress"] is False
        assert "current_attempt" not in status

    @pytest.mark.asyncio
    async def test_lock_released_after_failure(self, orchestrator, fake_provisioner):
        """Test a failed attempt does not block the next one."""
        fake_provisioner.success = False
        await orchestrator.deploy("1.2.0")

        fake_provisioner.success = True
        result = await orchestrator.deploy("1.2.1")

        assert result.succeeded


class TestTimeout:
    """The deployment budget covers provisioning and health checking."""

    @pytest.mark.asyncio
    async def test_provisioning_timeout_aborts(self, orchestrator, registry, fake_router):
        orchestrator.provisioner = SlowProvisioner()
        orchestrator.deploy_timeout_seconds = 0.05

        result = await orchestrator.deploy("1.2.0")

        assert result.attempt.outcome == DeploymentOutcome.ABORTED
        assert result.attempt.reason.startswith("Timeout")
        assert "provisioning" in result.attempt.reason
        assert result.exit_code == 5
        assert registry.get_active() == SlotId.A
        assert fake_router.switches == []
        assert orchestrator.state == DeploymentState.IDLE

    @pytest.mark.asyncio
    async def test_health_check_timeout_aborts(self, orchestrator, registry, fake_prober):
        async def slow_probe(address, policy):
            await asyncio.sleep(5)

        fake_prober.probe = slow_probe
        orchestrator.deploy_timeout_seconds = 0.05

        result = await orchestrator.deploy("1.2.0")

        assert result.attempt.outcome == DeploymentOutcome.ABORTED
        assert "health checking" in result.attempt.reason
        assert registry.get_active() == SlotId.A


class TestStorageFailures:
    """Registry and audit store failures."""

    @pytest.mark.asyncio
    async def test_commit_failure_reverts_router(self, orchestrator, registry, fake_router, audit_log):
        """Test a failed commit points the router back at the previous slot."""
        with patch.object(
            registry, "set_active", side_effect=StorageUnavailableError("disk full")
        ):
            with pytest.raises(StorageUnavailableError):
                await orchestrator.deploy("1.2.0")

        assert fake_router.switches == [
            (SlotId.B, "127.0.0.1:8082"),
            (SlotId.A, "127.0.0.1:8081"),
        ]
        assert registry.get_active() == SlotId.A
        assert orchestrator.state == DeploymentState.IDLE
        assert not orchestrator.in_progress

        last = await audit_log.last()
        assert last.outcome == DeploymentOutcome.ABORTED
        assert last.reason.startswith("StorageUnavailable")

    @pytest.mark.asyncio
    async def test_unreadable_registry_raises(self, orchestrator, registry, fake_provisioner):
        registry.state_file.write_text("{not json")

        with pytest.raises(StorageUnavailableError):
            await orchestrator.deploy("1.2.0")

        assert fake_provisioner.calls == []
        assert not orchestrator.in_progress

    @pytest.mark.asyncio
    async def test_audit_failure_is_warning(self, orchestrator, registry):
        """Test an audit write failure never reverses a successful switch."""
        orchestrator.audit_log.append = AsyncMock(
            side_effect=AuditWriteFailedError("Failed to write audit log: disk full")
        )

        result = await orchestrator.deploy("1.2.0")

        assert result.succeeded
        assert registry.get_active() == SlotId.B
        assert len(result.warnings) == 1
        assert result.warnings[0].startswith("AuditWriteFailed")

    @pytest.mark.asyncio
    async def test_metadata_failure_is_warning(self, orchestrator, registry):
        with patch.object(
            registry, "record_deployed", side_effect=StorageUnavailableError("EIO")
        ):
            result = await orchestrator.deploy("1.2.0")

        assert result.succeeded
        assert any(w.startswith("SlotMetadataWriteFailed") for w in result.warnings)


class TestStatusAndReconcile:
    @pytest.mark.asyncio
    async def test_status_before_any_deployment(self, orchestrator):
        status = await orchestrator.status()

        assert status["active_slot"] == "A"
        assert status["state"] == "idle"
        assert status["in_progress"] is False
        assert status["last_attempt"] is None
        assert [s["slot_id"] for s in status["slots"]] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_status_reports_last_attempt(self, orchestrator):
        result = await orchestrator.deploy("1.2.0")

        status = await orchestrator.status()
        assert status["active_slot"] == "B"
        assert status["last_attempt"]["attempt_id"] == result.attempt.attempt_id

    @pytest.mark.asyncio
    async def test_status_reads_last_attempt_from_audit(
        self, orchestrator, registry, fake_router, fake_provisioner, fake_prober, audit_log
    ):
        """Test a fresh orchestrator picks up the last attempt from disk."""
        result = await orchestrator.deploy("1.2.0")

        restarted = DeploymentOrchestrator(
            registry=registry,
            router=fake_router,
            provisioner=fake_provisioner,
            audit_log=audit_log,
            prober=fake_prober,
        )
        status = await restarted.status()
        assert status["last_attempt"]["attempt_id"] == result.attempt.attempt_id

    @pytest.mark.asyncio
    async def test_reconcile_points_router_at_active_slot(self, orchestrator, fake_router):
        applied, error = await orchestrator.reconcile()

        assert applied
        assert error == ""
        assert fake_router.switches == [(SlotId.A, "127.0.0.1:8081")]

    @pytest.mark.asyncio
    async def test_reconcile_noop_when_aligned(self, orchestrator, fake_router):
        await orchestrator.reconcile()
        await orchestrator.reconcile()

        assert len(fake_router.switches) == 1


class TestStateMachine:
    def test_illegal_transition_raises(self, orchestrator):
        attempt = _Attempt("1.2.0", SlotId.A, SlotId.B)

        with pytest.raises(RuntimeError, match="Illegal deployment transition"):
            orchestrator._transition(DeploymentState.SWITCHING, attempt)

        assert orchestrator.state == DeploymentState.IDLE

    def test_legal_transition(self, orchestrator):
        attempt = _Attempt("1.2.0", SlotId.A, SlotId.B)

        orchestrator._transition(DeploymentState.PROVISIONING, attempt)

        assert orchestrator.state == DeploymentState.PROVISIONING

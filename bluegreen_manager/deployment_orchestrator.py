"""
Deployment orchestrator for blue-green switches.

Drives one deployment at a time through an explicit state machine:

    idle -> provisioning -> health_checking -> switching -> idle
    provisioning | health_checking | switching -> aborting -> idle

Traffic is only ever switched to a slot that has just passed its health
probe. A failed attempt never commits, so "rollback" is simply staying on
the previously active slot.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, List, Optional, TypeVar
from uuid import uuid4

from bluegreen_manager.audit import AuditLog
from bluegreen_manager.config.settings import HealthCheckConfig
from bluegreen_manager.errors import (
    AuditWriteFailedError,
    DeploymentInProgressError,
    DeploymentTimeoutError,
    InvalidConfigError,
    StorageUnavailableError,
)
from bluegreen_manager.health_prober import HealthProber, validate_policy
from bluegreen_manager.logging_config import log_deployment_transition
from bluegreen_manager.models import (
    DeploymentAttempt,
    DeploymentOutcome,
    DeploymentState,
    DeployResult,
    SlotId,
)
from bluegreen_manager.provisioner import Provisioner
from bluegreen_manager.registry import EnvironmentRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSITIONS: Dict[DeploymentState, frozenset] = {
    DeploymentState.IDLE: frozenset({DeploymentState.PROVISIONING}),
    DeploymentState.PROVISIONING: frozenset(
        {DeploymentState.HEALTH_CHECKING, DeploymentState.ABORTING}
    ),
    DeploymentState.HEALTH_CHECKING: frozenset(
        {DeploymentState.SWITCHING, DeploymentState.ABORTING}
    ),
    DeploymentState.SWITCHING: frozenset({DeploymentState.IDLE, DeploymentState.ABORTING}),
    DeploymentState.ABORTING: frozenset({DeploymentState.IDLE}),
}


class _Attempt:
    """Mutable bookkeeping for the attempt in flight."""

    def __init__(self, version: str, previous_slot: SlotId, target_slot: SlotId):
        self.attempt_id = str(uuid4())
        self.version = version
        self.previous_slot = previous_slot
        self.target_slot = target_slot
        self.started_at = datetime.now(timezone.utc).isoformat()
        self.health_attempts: Optional[int] = None
        self.warnings: List[str] = []


class DeploymentOrchestrator:
    """Orchestrates blue-green deployments for one managed application."""

    def __init__(
        self,
        registry: EnvironmentRegistry,
        router: Any,
        provisioner: Provisioner,
        audit_log: AuditLog,
        health_policy: Optional[HealthCheckConfig] = None,
        prober: Optional[HealthProber] = None,
        deploy_timeout_seconds: float = 600.0,
    ) -> None:
        """
        Initialize deployment orchestrator.

        Args:
            registry: Durable record of the active slot
            router: Traffic router exposing switch(slot, address) -> (applied, reason)
            provisioner: Collaborator that refreshes a slot with a new version
            audit_log: Append-only store of finished attempts
            health_policy: Probe policy for freshly provisioned slots
            prober: Health prober (a default one is created if omitted)
            deploy_timeout_seconds: Budget for provisioning plus health checking
        """
        self.registry = registry
        self.router = router
        self.provisioner = provisioner
        self.audit_log = audit_log
        self.health_policy = health_policy or HealthCheckConfig()
        self.prober = prober or HealthProber()
        self.deploy_timeout_seconds = deploy_timeout_seconds

        self.state = DeploymentState.IDLE
        self._deployment_lock = asyncio.Lock()
        self._current: Optional[_Attempt] = None
        self._last_attempt: Optional[DeploymentAttempt] = None

    @property
    def in_progress(self) -> bool:
        return self._deployment_lock.locked()

    @staticmethod
    def validate_version(version: Optional[str]) -> str:
        """Return the stripped version, rejecting blank ones."""
        if not version or not version.strip():
            raise InvalidConfigError("version must not be empty")
        return version.strip()

    async def deploy(self, version: str) -> DeployResult:
        """
        Deploy ``version`` to the inactive slot and switch traffic to it.

        Args:
            version: Opaque artifact version handed to the provisioner

        Returns:
            DeployResult with the finished attempt and any warnings

        Raises:
            InvalidConfigError: If the version or probe policy is invalid
            DeploymentInProgressError: If another deployment is running
            StorageUnavailableError: If the active slot cannot be read or persisted
        """
        version = self.validate_version(version)
        validate_policy(self.health_policy)
        if self.deploy_timeout_seconds <= 0:
            raise InvalidConfigError(
                f"deploy timeout must be positive, got {self.deploy_timeout_seconds}"
            )

        if self._deployment_lock.locked():
            current = self._current.attempt_id if self._current else "unknown"
            raise DeploymentInProgressError(f"Deployment {current} already in progress")

        async with self._deployment_lock:
            try:
                return await self._run_deployment(version)
            finally:
                if self.state is not DeploymentState.IDLE:
                    logger.error(f"Deployment left state {self.state.value}, forcing idle")
                    self.state = DeploymentState.IDLE
                self._current = None

    async def _run_deployment(self, version: str) -> DeployResult:
        previous = self.registry.get_active()
        target = self.registry.other(previous)
        attempt = _Attempt(version, previous, target)
        self._current = attempt
        target_address = self.registry.get_slot(target).address

        logger.info(
            f"Deployment {attempt.attempt_id}: deploying {version} to slot {target.value} "
            f"({target_address}), active slot is {previous.value}"
        )
        deadline = asyncio.get_running_loop().time() + self.deploy_timeout_seconds

        # 1. Provision the inactive slot
        self._transition(DeploymentState.PROVISIONING, attempt)
        try:
            provisioned, message = await self._within_budget(
                self.provisioner.provision(target, version), deadline, "provisioning"
            )
        except DeploymentTimeoutError as e:
            return await self._abort(attempt, DeploymentOutcome.ABORTED, str(e))
        except Exception as e:
            logger.error(f"Provisioner raised for slot {target.value}: {e}", exc_info=True)
            provisioned, message = False, f"provisioner error: {e}"

        if not provisioned:
            return await self._abort(
                attempt, DeploymentOutcome.PROVISION_FAILED, f"ProvisionFailed: {message}"
            )
        await self._record_slot_metadata(attempt, self.registry.record_deployed, target, version)

        # 2. Probe the freshly provisioned slot
        self._transition(DeploymentState.HEALTH_CHECKING, attempt)
        try:
            probe = await self._within_budget(
                self.prober.probe(target_address, self.health_policy), deadline, "health checking"
            )
        except DeploymentTimeoutError as e:
            return await self._abort(attempt, DeploymentOutcome.ABORTED, str(e))

        attempt.health_attempts = probe.attempts
        if not probe.healthy:
            return await self._abort(
                attempt,
                DeploymentOutcome.HEALTH_CHECK_FAILED,
                f"HealthCheckFailed: slot {target.value} not healthy after {probe.attempts} "
                f"attempts (last error: {probe.last_error})",
            )
        await self._record_slot_metadata(attempt, self.registry.record_healthy, target)

        # 3. Switch traffic; not subject to the deploy timeout once started
        self._transition(DeploymentState.SWITCHING, attempt)
        applied, error = await self._switch_router(target, target_address)
        if not applied:
            return await self._abort(
                attempt,
                DeploymentOutcome.ROUTER_APPLY_FAILED,
                f"RouterApplyFailed: {error}; slot {previous.value} remains active",
            )

        # 4. Commit
        try:
            await asyncio.to_thread(self.registry.set_active, target)
        except StorageUnavailableError as e:
            await self._revert_router(previous)
            await self._abort(
                attempt,
                DeploymentOutcome.ABORTED,
                f"StorageUnavailable: could not persist slot {target.value} as active: {e}",
            )
            raise

        self._transition(DeploymentState.IDLE, attempt)
        return await self._finish(
            attempt,
            DeploymentOutcome.SUCCESS,
            f"Slot {target.value} is now active with version {version}",
        )

    async def _within_budget(self, coro: Awaitable[T], deadline: float, phase: str) -> T:
        remaining = deadline - asyncio.get_running_loop().time()
        timeout_msg = (
            f"Timeout: deployment exceeded {self.deploy_timeout_seconds}s during {phase}"
        )
        if remaining <= 0:
            if asyncio.iscoroutine(coro):
                coro.close()
            raise DeploymentTimeoutError(timeout_msg)
        try:
            return await asyncio.wait_for(coro, timeout=remaining)
        except asyncio.TimeoutError as e:
            raise DeploymentTimeoutError(timeout_msg) from e

    async def _switch_router(self, slot: SlotId, address: str) -> tuple[bool, str]:
        try:
            return await asyncio.to_thread(self.router.switch, slot, address)
        except Exception as e:
            logger.error(f"Router raised while switching to slot {slot.value}: {e}", exc_info=True)
            return False, f"router error: {e}"

    async def _revert_router(self, previous: SlotId) -> None:
        """Point the router back at ``previous`` after a failed commit."""
        address = self.registry.slot_addresses[previous]
        applied, error = await self._switch_router(previous, address)
        if applied:
            logger.warning(f"Router reverted to slot {previous.value} after commit failure")
        else:
            logger.critical(
                f"Router could not be reverted to slot {previous.value}: {error}. "
                "Run reconcile once storage is available."
            )

    async def _record_slot_metadata(self, attempt: _Attempt, record: Any, *args: Any) -> None:
        try:
            await asyncio.to_thread(record, *args)
        except StorageUnavailableError as e:
            logger.warning(f"Could not record slot metadata: {e}")
            attempt.warnings.append(f"SlotMetadataWriteFailed: {e}")

    async def _abort(
        self, attempt: _Attempt, outcome: DeploymentOutcome, reason: str
    ) -> DeployResult:
        self._transition(DeploymentState.ABORTING, attempt, {"reason": reason})
        logger.warning(f"Deployment {attempt.attempt_id} aborted: {reason}")
        result = await self._finish(attempt, outcome, reason)
        self._transition(DeploymentState.IDLE, attempt)
        return result

    async def _finish(
        self, attempt: _Attempt, outcome: DeploymentOutcome, reason: str
    ) -> DeployResult:
        record = DeploymentAttempt(
            attempt_id=attempt.attempt_id,
            version=attempt.version,
            target_slot=attempt.target_slot,
            previous_slot=attempt.previous_slot,
            started_at=attempt.started_at,
            finished_at=datetime.now(timezone.utc).isoformat(),
            outcome=outcome,
            reason=reason,
            health_attempts=attempt.health_attempts,
        )
        self._last_attempt = record

        try:
            await self.audit_log.append(record)
        except AuditWriteFailedError as e:
            # The deployment decision stands regardless of the audit store
            logger.error(f"Deployment {attempt.attempt_id}: {e}")
            attempt.warnings.append(f"AuditWriteFailed: {e}")

        logger.info(f"Deployment {attempt.attempt_id} finished: {outcome.value} - {reason}")
        return DeployResult(attempt=record, warnings=list(attempt.warnings))

    def _transition(
        self,
        new_state: DeploymentState,
        attempt: _Attempt,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal deployment transition {self.state.value} -> {new_state.value}"
            )
        log_deployment_transition(attempt.attempt_id, self.state.value, new_state.value, details)
        self.state = new_state

    async def reconcile(self) -> tuple[bool, str]:
        """
        Point the router at the slot the registry says is active.

        Used at startup so the registry stays the single source of truth,
        e.g. after a crash between a router switch and its commit.
        """
        async with self._deployment_lock:
            active = self.registry.get_active()
            if self.router.current_target() == active:
                logger.info(f"Router already routes to active slot {active.value}")
                return True, ""

            logger.info(f"Reconciling router to active slot {active.value}")
            return await self._switch_router(active, self.registry.get_slot(active).address)

    async def status(self) -> Dict[str, Any]:
        """
        Current active slot, state machine state and last attempt.

        Never waits for an in-flight deployment.
        """
        active = self.registry.get_active_state()
        last_attempt = self._last_attempt
        if last_attempt is None:
            try:
                last_attempt = await self.audit_log.last()
            except OSError as e:
                logger.warning(f"Could not read audit log for status: {e}")

        status: Dict[str, Any] = {
            "active_slot": active.active_slot.value,
            "updated_at": active.updated_at,
            "state": self.state.value,
            "in_progress": self.in_progress,
            "slots": [slot.model_dump(mode="json") for slot in self.registry.list_slots()],
            "last_attempt": last_attempt.model_dump(mode="json") if last_attempt else None,
        }
        if self._current:
            status["current_attempt"] = {
                "attempt_id": self._current.attempt_id,
                "version": self._current.version,
                "target_slot": self._current.target_slot.value,
                "started_at": self._current.started_at,
            }
        return status

    async def history(self, limit: int = 10) -> List[DeploymentAttempt]:
        """Most recent deployment attempts, newest first."""
        return await self.audit_log.history(limit=limit)

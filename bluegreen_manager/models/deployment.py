"""
Deployment-related data models.

These models define deployment attempts as recorded in the audit log,
the orchestrator's state machine states, and the structured result every
deploy call returns.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bluegreen_manager.errors import (
    EXIT_ERROR,
    EXIT_SUCCESS,
    HealthCheckFailedError,
    ProvisionFailedError,
    RouterApplyFailedError,
)
from bluegreen_manager.models.slot import SlotId


class DeploymentOutcome(str, Enum):
    """Final outcome of a deployment attempt."""

    SUCCESS = "success"
    PROVISION_FAILED = "provision_failed"
    HEALTH_CHECK_FAILED = "health_check_failed"
    ROUTER_APPLY_FAILED = "router_apply_failed"
    ABORTED = "aborted"


class DeploymentState(str, Enum):
    """States of the deployment state machine."""

    IDLE = "idle"
    PROVISIONING = "provisioning"
    HEALTH_CHECKING = "health_checking"
    SWITCHING = "switching"
    ABORTING = "aborting"


OUTCOME_EXIT_CODES = {
    DeploymentOutcome.SUCCESS: EXIT_SUCCESS,
    DeploymentOutcome.HEALTH_CHECK_FAILED: HealthCheckFailedError.exit_code,
    DeploymentOutcome.PROVISION_FAILED: ProvisionFailedError.exit_code,
    DeploymentOutcome.ROUTER_APPLY_FAILED: RouterApplyFailedError.exit_code,
    DeploymentOutcome.ABORTED: EXIT_ERROR,
}


class DeploymentAttempt(BaseModel):
    """
    One execution of the deploy operation.

    Immutable once built; the orchestrator creates it only after the
    attempt has finished.
    """

    model_config = ConfigDict(frozen=True)

    attempt_id: str = Field(..., description="Unique attempt identifier")
    version: str = Field(..., description="Artifact version requested by the caller")
    target_slot: SlotId = Field(..., description="Slot the attempt tried to activate")
    previous_slot: SlotId = Field(..., description="Slot that was active when the attempt began")
    started_at: str = Field(..., description="ISO 8601 timestamp when the attempt started")
    finished_at: str = Field(..., description="ISO 8601 timestamp when the attempt finished")
    outcome: DeploymentOutcome = Field(..., description="Final outcome")
    reason: str = Field(..., description="Human-readable explanation of the outcome")
    health_attempts: Optional[int] = Field(
        None, description="Number of health probe attempts used, if probing ran"
    )


class DeployResult(BaseModel):
    """Structured outcome returned to deploy callers."""

    attempt: DeploymentAttempt
    warnings: List[str] = Field(
        default_factory=list,
        description="Non-fatal problems, e.g. an audit record that could not be written",
    )

    @property
    def succeeded(self) -> bool:
        return self.attempt.outcome is DeploymentOutcome.SUCCESS

    @property
    def exit_code(self) -> int:
        return OUTCOME_EXIT_CODES[self.attempt.outcome]


class ProbeResult(BaseModel):
    """Verdict of a health probe run."""

    healthy: bool
    attempts: int = Field(..., description="Number of attempts issued")
    last_error: Optional[str] = Field(None, description="Why the last failed attempt failed")


class DeployRequest(BaseModel):
    """Body of a deploy request from a CI trigger."""

    version: str = Field(..., description="Opaque artifact version to deploy")

    @field_validator("version")
    @classmethod
    def validate_version(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("version must not be empty")
        return value.strip()

"""
Pydantic models for the blue-green manager.

These models provide type-safe data structures for slots, the active
state, deployment attempts and API payloads.
"""

from bluegreen_manager.models.slot import ActiveState, Slot, SlotId, other
from bluegreen_manager.models.deployment import (
    DeploymentAttempt,
    DeploymentOutcome,
    DeploymentState,
    DeployRequest,
    DeployResult,
    ProbeResult,
)

__all__ = [
    "ActiveState",
    "Slot",
    "SlotId",
    "other",
    "DeploymentAttempt",
    "DeploymentOutcome",
    "DeploymentState",
    "DeployRequest",
    "DeployResult",
    "ProbeResult",
]

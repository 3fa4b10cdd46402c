"""
Slot and active-state models.

Two permanent slots exist for the lifetime of the system. Exactly one of
them is active at any observable instant.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class SlotId(str, Enum):
    """Identity of one of the two deployment slots."""

    A = "A"
    B = "B"

    @classmethod
    def parse(cls, value: "str | SlotId") -> "SlotId":
        """Parse a slot identity, accepting the historical blue/green names."""
        if isinstance(value, SlotId):
            return value
        normalized = str(value).strip().lower()
        aliases = {"a": cls.A, "blue": cls.A, "b": cls.B, "green": cls.B}
        if normalized not in aliases:
            raise ValueError(f"Unknown slot '{value}', expected A or B")
        return aliases[normalized]

    def other(self) -> "SlotId":
        return SlotId.B if self is SlotId.A else SlotId.A


def other(slot: SlotId) -> SlotId:
    """Return the slot that is not ``slot``."""
    return SlotId.parse(slot).other()


def check_address(value: str) -> str:
    """Validate a host:port upstream address."""
    host, sep, port = value.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"Slot address must be host:port, got '{value}'")
    if not 0 < int(port) < 65536:
        raise ValueError(f"Slot address port out of range: '{value}'")
    return value


class Slot(BaseModel):
    """One deployment environment and what is known about it."""

    slot_id: SlotId = Field(..., description="Slot identity (A or B)")
    address: str = Field(..., description="Upstream address as host:port")
    last_known_healthy: Optional[str] = Field(
        None, description="ISO 8601 timestamp of the last passing health probe"
    )
    last_deployed_version: Optional[str] = Field(
        None, description="Artifact version most recently provisioned into this slot"
    )

    @field_validator("address")
    @classmethod
    def validate_address(cls, value: str) -> str:
        return check_address(value)


class ActiveState(BaseModel):
    """Which slot receives production traffic, and since when."""

    active_slot: SlotId = Field(..., description="Currently active slot")
    updated_at: str = Field(..., description="ISO 8601 timestamp of the last change")

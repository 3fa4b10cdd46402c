"""
Environment registry for the two deployment slots.

Tracks which slot is active along with per-slot metadata. The state file
on disk is the single source of truth: every read goes back to it, and
every write is made durable before returning.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from bluegreen_manager.errors import StorageUnavailableError
from bluegreen_manager.models import ActiveState, Slot, SlotId

logger = logging.getLogger(__name__)

STATE_FILE_NAME = "active_state.json"


class EnvironmentRegistry:
    """Durable registry of the active slot and slot metadata."""

    def __init__(
        self,
        state_dir: Path,
        slot_addresses: Mapping[SlotId, str],
        initial_active: SlotId = SlotId.A,
    ):
        """
        Initialize the registry, bootstrapping the state file if absent.

        Args:
            state_dir: Directory holding the state file
            slot_addresses: Configured host:port for each slot
            initial_active: Slot marked active on first bootstrap

        Raises:
            StorageUnavailableError: If the state directory cannot be prepared
        """
        self.state_dir = Path(state_dir)
        self.state_file = self.state_dir / STATE_FILE_NAME
        self.slot_addresses = {SlotId.parse(k): v for k, v in slot_addresses.items()}
        self._lock = Lock()

        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailableError(
                f"Cannot create state directory {self.state_dir}: {e}"
            ) from e

        with self._lock:
            if not self.state_file.exists():
                logger.info(
                    f"No registry state at {self.state_file}, bootstrapping with "
                    f"slot {initial_active.value} active"
                )
                self._write_state(self._initial_state(initial_active))

    @staticmethod
    def other(slot: SlotId) -> SlotId:
        """Return the non-active counterpart of ``slot``."""
        return SlotId.parse(slot).other()

    def get_active(self) -> SlotId:
        """
        Get the currently active slot.

        Raises:
            StorageUnavailableError: If the persisted state cannot be read
        """
        return self.get_active_state().active_slot

    def get_active_state(self) -> ActiveState:
        """Get the active slot together with its last update time."""
        state = self._read_state()
        try:
            return ActiveState(
                active_slot=state["active_slot"], updated_at=state["updated_at"]
            )
        except (KeyError, ValidationError) as e:
            raise StorageUnavailableError(f"Corrupt registry state in {self.state_file}: {e}") from e

    def set_active(self, slot: SlotId) -> ActiveState:
        """
        Atomically persist a new active slot.

        The write is fsynced before this returns, so a crash right after
        leaves either the old or the new value on disk, never a mix.

        Raises:
            StorageUnavailableError: If the state cannot be read or written
        """
        slot = SlotId.parse(slot)
        with self._lock:
            state = self._read_state()
            previous = state.get("active_slot")
            state["active_slot"] = slot.value
            state["updated_at"] = datetime.now(timezone.utc).isoformat()
            self._write_state(state)

        logger.info(f"Active slot changed: {previous} -> {slot.value}")
        return ActiveState(active_slot=slot, updated_at=state["updated_at"])

    def get_slot(self, slot: SlotId) -> Slot:
        """Get a slot with its configured address and recorded metadata."""
        slot = SlotId.parse(slot)
        slot_data = self._read_state().get("slots", {}).get(slot.value, {})
        return Slot(
            slot_id=slot,
            address=self.slot_addresses[slot],
            last_known_healthy=slot_data.get("last_known_healthy"),
            last_deployed_version=slot_data.get("last_deployed_version"),
        )

    def list_slots(self) -> List[Slot]:
        return [self.get_slot(slot) for slot in SlotId]

    def record_healthy(self, slot: SlotId, at: Optional[str] = None) -> None:
        """Record the time a slot last passed its health probe."""
        self._update_slot(slot, last_known_healthy=at or datetime.now(timezone.utc).isoformat())

    def record_deployed(self, slot: SlotId, version: str) -> None:
        """Record the artifact version most recently provisioned into a slot."""
        self._update_slot(slot, last_deployed_version=version)

    def _update_slot(self, slot: SlotId, **fields: Any) -> None:
        slot = SlotId.parse(slot)
        with self._lock:
            state = self._read_state()
            slots = state.setdefault("slots", {})
            slots.setdefault(slot.value, {}).update(fields)
            self._write_state(state)
        logger.debug(f"Updated slot {slot.value} metadata: {fields}")

    def _initial_state(self, initial_active: SlotId) -> Dict[str, Any]:
        return {
            "active_slot": SlotId.parse(initial_active).value,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "slots": {
                slot.value: {
                    "address": self.slot_addresses[slot],
                    "last_known_healthy": None,
                    "last_deployed_version": None,
                }
                for slot in SlotId
            },
        }

    def _read_state(self) -> Dict[str, Any]:
        try:
            with open(self.state_file, "r") as f:
                state = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageUnavailableError(
                f"Cannot read registry state {self.state_file}: {e}"
            ) from e

        if not isinstance(state, dict) or state.get("active_slot") not in ("A", "B"):
            raise StorageUnavailableError(f"Corrupt registry state in {self.state_file}")
        return state

    def _write_state(self, state: Dict[str, Any]) -> None:
        """Write state to a temp file, fsync, then rename over the real file."""
        for slot in SlotId:
            state.setdefault("slots", {}).setdefault(slot.value, {})["address"] = (
                self.slot_addresses[slot]
            )
        state["saved_at"] = datetime.now(timezone.utc).isoformat()

        temp_file = self.state_file.with_suffix(".tmp")
        try:
            with open(temp_file, "w") as f:
                json.dump(state, f, indent=2)
                f.flush()
                os.fsync(f.fileno())

            # Atomic rename
            temp_file.replace(self.state_file)
            self._fsync_dir()
        except OSError as e:
            logger.error(f"Failed to persist registry state: {e}")
            raise StorageUnavailableError(
                f"Cannot write registry state {self.state_file}: {e}"
            ) from e

    def _fsync_dir(self) -> None:
        if not hasattr(os, "O_DIRECTORY"):
            return
        fd = os.open(self.state_dir, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

"""
Provisioning collaborators for deployment slots.

A provisioner refreshes the inactive slot with a new artifact version
before it is probed. The orchestrator only consumes the two-outcome
contract ``(success, message)``.
"""

import asyncio
import logging
import os
from typing import Dict, Mapping, Protocol, runtime_checkable

from bluegreen_manager.config.settings import BlueGreenConfig, SlotConfig
from bluegreen_manager.models import SlotId
from bluegreen_manager.utils.compose_command import ComposeNotFoundError, compose_cmd

logger = logging.getLogger(__name__)


@runtime_checkable
class Provisioner(Protocol):
    """Protocol for refreshing a slot with a new artifact."""

    async def provision(self, slot: SlotId, version: str) -> tuple[bool, str]:
        """
        Deploy ``version`` into ``slot``.

        Promises:
        - Returns (True, message) only once the slot's containers were (re)started
        - Returns (False, reason) on any failure, never raises for expected failures
        - Never touches the other slot or the router
        """
        ...


class NoOpProvisioner:
    """Provisioner for setups where CI refreshes the slot before calling deploy."""

    async def provision(self, slot: SlotId, version: str) -> tuple[bool, str]:
        logger.info(f"Provisioning is external, assuming slot {slot.value} runs {version}")
        return True, "provisioning handled externally"


class ComposeProvisioner:
    """Refreshes a slot by pulling and recreating its compose project."""

    def __init__(self, slots: Mapping[SlotId, SlotConfig], timeout_seconds: float = 300.0):
        """
        Initialize compose provisioner.

        Args:
            slots: Per-slot configuration with compose file and project name
            timeout_seconds: Upper bound for each compose command
        """
        self.slots = dict(slots)
        self.timeout_seconds = timeout_seconds

    async def provision(self, slot: SlotId, version: str) -> tuple[bool, str]:
        slot_config = self.slots.get(slot)
        if not slot_config or not slot_config.compose_file:
            return False, f"No compose file configured for slot {slot.value}"

        project = slot_config.project_name or f"bluegreen-{slot.value.lower()}"
        env = self._build_env(slot, version)
        base_args = ["-f", slot_config.compose_file, "-p", project]

        try:
            pull_cmd = compose_cmd(*base_args, "pull")
            up_cmd = compose_cmd(*base_args, "up", "-d", "--force-recreate", "--remove-orphans")
        except ComposeNotFoundError as e:
            logger.error(str(e))
            return False, str(e)

        logger.info(f"Provisioning slot {slot.value} with version {version} (project {project})")
        for step, cmd in (("pull", pull_cmd), ("up", up_cmd)):
            ok, output = await self._run(cmd, env)
            if not ok:
                message = f"compose {step} failed for slot {slot.value}: {output}"
                logger.error(message)
                return False, message

        logger.info(f"Slot {slot.value} provisioned with version {version}")
        return True, f"slot {slot.value} recreated with version {version}"

    @staticmethod
    def _build_env(slot: SlotId, version: str) -> Dict[str, str]:
        env = dict(os.environ)
        env["APP_VERSION"] = version
        env["SLOT"] = slot.value
        return env

    async def _run(self, cmd: list, env: Dict[str, str]) -> tuple[bool, str]:
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            return False, str(e)

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return False, f"timed out after {self.timeout_seconds}s"
        except asyncio.CancelledError:
            # Deployment budget ran out; don't leave compose running behind us
            process.kill()
            await asyncio.shield(process.wait())
            raise

        if process.returncode != 0:
            return False, (stderr or stdout).decode().strip() or f"exit code {process.returncode}"
        return True, stdout.decode().strip()


def create_provisioner(config: BlueGreenConfig) -> Provisioner:
    """Build the provisioner selected in the configuration."""
    if config.provisioner.type == "noop":
        return NoOpProvisioner()
    return ComposeProvisioner(config.slots, timeout_seconds=config.provisioner.timeout_seconds)


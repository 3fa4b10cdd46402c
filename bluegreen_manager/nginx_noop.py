"""
No-op implementation of NginxManager for environments without nginx.

This module provides a null object pattern implementation that lets the
orchestrator run when routing is handled outside this process.
"""

import logging
from typing import Optional

from bluegreen_manager.logging_config import ROUTER_LOGGER
from bluegreen_manager.models import SlotId

logger = logging.getLogger(ROUTER_LOGGER)


class NoOpNginxManager:
    """
    A Null Object implementation of the NginxManager.

    It provides the same interface but performs no operations, only
    remembering the last requested target.
    """

    def __init__(self):
        """Initialize the no-op manager."""
        self._target: Optional[SlotId] = None
        logger.info("Nginx integration is disabled. Using No-Op Nginx Manager.")

    def switch(self, slot: SlotId, address: str) -> tuple[bool, str]:
        """
        Mock switch that always succeeds.

        Returns:
            Always returns (True, "")
        """
        logger.debug(f"Nginx is disabled, recording slot {slot.value} ({address}) as target")
        self._target = slot
        return True, ""

    def current_target(self) -> Optional[SlotId]:
        return self._target

"""
Audit logging for deployment attempts.

Every finished deployment attempt is appended to a JSONL file. The log
is append-only: records are never rewritten or removed.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import List, Optional

import aiofiles  # type: ignore
from pydantic import ValidationError

from bluegreen_manager.errors import AuditWriteFailedError, InvalidConfigError
from bluegreen_manager.models import DeploymentAttempt

logger = logging.getLogger(__name__)

# Audit log location
AUDIT_LOG_PATH = Path("/var/lib/bluegreen-manager/audit.jsonl")


class AuditLog:
    """Append-only store of deployment attempts."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else AUDIT_LOG_PATH

    async def append(self, attempt: DeploymentAttempt) -> None:
        """
        Append a finished attempt.

        Raises:
            AuditWriteFailedError: If the record could not be written
        """
        line = attempt.model_dump_json() + "\n"
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.path, "a") as f:
                await f.write(line)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
        except OSError as e:
            logger.error(f"Failed to write audit record {attempt.attempt_id}: {e}")
            raise AuditWriteFailedError(f"Failed to write audit log {self.path}: {e}") from e

        logger.info(
            f"Audit: deployment {attempt.attempt_id} of {attempt.version} to slot "
            f"{attempt.target_slot.value}: {attempt.outcome.value}"
        )

    async def history(self, limit: int = 10) -> List[DeploymentAttempt]:
        """
        Most recent attempts first, ordered by start time.

        Corrupt lines are skipped with a warning.

        Raises:
            InvalidConfigError: If limit is not positive
        """
        if limit < 1:
            raise InvalidConfigError(f"limit must be at least 1, got {limit}")

        if not self.path.exists():
            return []

        attempts: List[DeploymentAttempt] = []
        async with aiofiles.open(self.path, "r") as f:
            line_number = 0
            async for line in f:
                line_number += 1
                line = line.strip()
                if not line:
                    continue
                try:
                    attempts.append(DeploymentAttempt(**json.loads(line)))
                except (ValueError, TypeError, ValidationError) as e:
                    logger.warning(f"Skipping corrupt audit line {line_number} in {self.path}: {e}")

        attempts.sort(key=lambda a: a.started_at, reverse=True)
        return attempts[:limit]

    async def last(self) -> Optional[DeploymentAttempt]:
        recent = await self.history(limit=1)
        return recent[0] if recent else None

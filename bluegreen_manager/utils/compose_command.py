"""
Detect which Docker Compose CLI is installed.

Slots are refreshed with either Compose v2 (``docker compose``) or the
standalone v1 binary (``docker-compose``). Detection runs once per process.
"""

import functools
import logging
import shutil
import subprocess
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

COMPOSE_V2 = ("docker", "compose")
COMPOSE_V1 = ("docker-compose",)
VERSION_CHECK_TIMEOUT = 5  # seconds


class ComposeNotFoundError(RuntimeError):
    """Neither Docker Compose v2 nor v1 is available."""

    def __init__(self, v2_error: Optional[str] = None):
        self.v2_error = v2_error
        message = (
            "Docker Compose is required to provision slots but was not found. "
            "Install the compose plugin (docker compose) or docker-compose."
        )
        if v2_error:
            message += f" Compose v2 check failed: {v2_error}"
        super().__init__(message)


def _v2_unavailable_reason() -> Optional[str]:
    """None when ``docker compose`` works, otherwise why it does not."""
    try:
        result = subprocess.run(
            [*COMPOSE_V2, "version"], capture_output=True, timeout=VERSION_CHECK_TIMEOUT
        )
    except subprocess.TimeoutExpired:
        return f"timed out after {VERSION_CHECK_TIMEOUT} seconds"
    except FileNotFoundError:
        return "docker binary not found in PATH"

    if result.returncode == 0:
        return None
    return f"exit code {result.returncode}: {result.stderr.decode().strip()}"


@functools.lru_cache(maxsize=1)
def _detect() -> Tuple[str, ...]:
    v2_error = _v2_unavailable_reason()
    if v2_error is None:
        logger.info("Using Docker Compose v2 (docker compose)")
        return COMPOSE_V2

    if shutil.which(COMPOSE_V1[0]):
        logger.info(f"Compose v2 unavailable ({v2_error}), using docker-compose")
        return COMPOSE_V1

    raise ComposeNotFoundError(v2_error=v2_error)


def reset_compose_command_cache() -> None:
    """Forget the detected command (tests, or after installing compose)."""
    _detect.cache_clear()


def get_compose_command() -> List[str]:
    """
    Return the compose command prefix for this host.

    Raises:
        ComposeNotFoundError: If no compose CLI is available
    """
    return list(_detect())


def compose_cmd(*args: str) -> List[str]:
    """Build a full compose command line, e.g. ``compose_cmd("-f", path, "up", "-d")``."""
    return get_compose_command() + list(args)

"""
Health probing for deployment slots.

Polls a slot's health endpoint sequentially until it answers healthy or
the attempt budget runs out. Individual failures (timeouts, refused
connections, bad status codes, unrecognized bodies) only consume an
attempt; they never abort the probe.
"""

import asyncio
import json
import logging
from typing import Optional

import httpx

from bluegreen_manager.config.settings import HealthCheckConfig
from bluegreen_manager.errors import InvalidConfigError
from bluegreen_manager.models import ProbeResult

logger = logging.getLogger(__name__)

HEALTHY_MARKERS = frozenset({"ok", "healthy", "up", "pass"})


def is_healthy_body(body: str) -> bool:
    """
    Check whether a health response body signals a healthy state.

    Accepts a JSON object with a recognized ``status`` field, or a plain
    text body consisting of a recognized marker word.
    """
    text = body.strip()
    if not text:
        return False

    try:
        data = json.loads(text)
    except ValueError:
        return text.lower() in HEALTHY_MARKERS

    if isinstance(data, dict):
        # Some services wrap the payload in a "data" envelope
        if isinstance(data.get("data"), dict) and "status" not in data:
            data = data["data"]
        status = data.get("status")
        return isinstance(status, str) and status.strip().lower() in HEALTHY_MARKERS
    if isinstance(data, str):
        return data.strip().lower() in HEALTHY_MARKERS
    return False


def validate_policy(policy: HealthCheckConfig) -> None:
    """Reject probe policies that cannot produce a meaningful verdict."""
    if policy.max_attempts < 1:
        raise InvalidConfigError(f"max_attempts must be at least 1, got {policy.max_attempts}")
    if policy.interval_seconds < 0:
        raise InvalidConfigError(
            f"interval_seconds must not be negative, got {policy.interval_seconds}"
        )
    if policy.timeout_seconds <= 0:
        raise InvalidConfigError(
            f"timeout_seconds must be positive, got {policy.timeout_seconds}"
        )


class HealthProber:
    """Sequential, bounded health prober."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the prober.

        Args:
            transport: Optional httpx transport, used to stub the network
        """
        self._transport = transport

    async def probe(self, address: str, policy: HealthCheckConfig) -> ProbeResult:
        """
        Probe ``address`` until healthy or out of attempts.

        Args:
            address: Slot address as host:port
            policy: Interval, attempt budget and per-attempt timeout

        Returns:
            ProbeResult with the verdict and number of attempts used

        Raises:
            InvalidConfigError: If the policy is invalid
        """
        validate_policy(policy)

        url = f"{policy.scheme}://{address}{policy.path}"
        last_error: Optional[str] = None
        logger.info(
            f"Probing {url} (max {policy.max_attempts} attempts, "
            f"interval {policy.interval_seconds}s, timeout {policy.timeout_seconds}s)"
        )

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(policy.timeout_seconds), transport=self._transport
        ) as client:
            for attempt in range(1, policy.max_attempts + 1):
                last_error = await self._attempt(client, url, policy.timeout_seconds)
                if last_error is None:
                    logger.info(f"{url} healthy on attempt {attempt}/{policy.max_attempts}")
                    return ProbeResult(healthy=True, attempts=attempt)

                logger.debug(
                    f"Health attempt {attempt}/{policy.max_attempts} for {url} failed: {last_error}"
                )
                if attempt < policy.max_attempts:
                    await asyncio.sleep(policy.interval_seconds)

        logger.warning(
            f"{url} not healthy after {policy.max_attempts} attempts, last error: {last_error}"
        )
        return ProbeResult(healthy=False, attempts=policy.max_attempts, last_error=last_error)

    async def _attempt(
        self, client: httpx.AsyncClient, url: str, timeout: float
    ) -> Optional[str]:
        """Issue one attempt. Returns None on success, else the failure reason."""
        try:
            response = await asyncio.wait_for(client.get(url), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return f"timed out after {timeout}s"
        except httpx.HTTPError as e:
            return f"{type(e).__name__}: {e}"

        if response.status_code != 200:
            return f"status {response.status_code}"
        if not is_healthy_body(response.text):
            return f"unrecognized health body: {response.text[:100]!r}"
        return None

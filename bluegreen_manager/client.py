"""
Python client for a running blue-green manager API.

Lets CI jobs and the CLI trigger deployments on the long-running service
instead of driving the slots from a second process.
"""
# mypy: ignore-errors

import os
from typing import Any, Dict, List, Optional

import requests

from bluegreen_manager import errors

# Error names in API responses mapped back to exception classes
_ERRORS_BY_NAME = {
    cls.__name__: cls
    for cls in (
        errors.InvalidConfigError,
        errors.DeploymentInProgressError,
        errors.StorageUnavailableError,
        errors.DeploymentTimeoutError,
    )
}


class APIError(errors.BlueGreenError):
    """API request errors not covered by the deployment error taxonomy."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class BlueGreenClient:
    """Client for the blue-green manager API."""

    API_PREFIX = "/bluegreen/v1"

    def __init__(
        self, base_url: str, token: Optional[str] = None, timeout: float = 900.0
    ):
        """
        Initialize the client.

        Args:
            base_url: Base URL of the manager, e.g. http://127.0.0.1:8890
            token: Deployment token (falls back to BLUEGREEN_DEPLOY_TOKEN)
            timeout: Request timeout; deploys block until the attempt finishes
        """
        self.base_url = base_url.rstrip("/")
        self.token = token or os.environ.get("BLUEGREEN_DEPLOY_TOKEN")
        self.timeout = timeout
        self.session = requests.Session()
        if self.token:
            self.session.headers["Authorization"] = f"Bearer {self.token}"

    def _request(
        self, method: str, endpoint: str, ok_statuses: tuple = (200,), **kwargs
    ) -> requests.Response:
        url = f"{self.base_url}{self.API_PREFIX}{endpoint}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise APIError(f"Cannot reach {url}: {e}") from e

        if response.status_code in ok_statuses:
            return response

        try:
            data = response.json()
        except ValueError:
            data = {}
        error_cls = _ERRORS_BY_NAME.get(data.get("error", "")) if isinstance(data, dict) else None
        detail = data.get("detail") if isinstance(data, dict) else None
        message = str(detail or f"API error: {response.status_code}")
        if error_cls:
            raise error_cls(message)
        raise APIError(message, response.status_code)

    def deploy(self, version: str) -> Dict[str, Any]:
        """Trigger a deployment and wait for its result."""
        # Failed outcomes come back as 502/504 with the full result body
        response = self._request(
            "POST", "/deployments", ok_statuses=(200, 502, 504), json={"version": version}
        )
        try:
            result = response.json()
        except ValueError:
            result = None
        if not isinstance(result, dict) or "attempt" not in result:
            raise APIError(f"Unexpected deploy response: {response.status_code}", response.status_code)
        return result

    def status(self) -> Dict[str, Any]:
        return self._request("GET", "/status").json()

    def history(self, limit: int = 10) -> List[Dict[str, Any]]:
        return self._request("GET", "/deployments", params={"limit": limit}).json()

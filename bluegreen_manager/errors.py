"""
Error taxonomy for blue-green deployments.

Each error carries the process exit code the CLI reports for it, so the
trigger surfaces map failures the same way.
"""

# Exit codes
EXIT_SUCCESS = 0
EXIT_HEALTH_CHECK_FAILED = 1
EXIT_PROVISION_FAILED = 2
EXIT_ROUTER_APPLY_FAILED = 3
EXIT_DEPLOYMENT_IN_PROGRESS = 4
EXIT_ERROR = 5


class BlueGreenError(Exception):
    """Base class for blue-green manager errors."""

    exit_code: int = EXIT_ERROR


class InvalidConfigError(BlueGreenError):
    """Caller supplied invalid configuration or input. Rejected before any mutation."""

    exit_code: int = EXIT_ERROR


class ProvisionFailedError(BlueGreenError):
    """The provisioning collaborator could not refresh the target slot."""

    exit_code: int = EXIT_PROVISION_FAILED


class HealthCheckFailedError(BlueGreenError):
    """Target slot never reported healthy within the probe policy."""

    exit_code: int = EXIT_HEALTH_CHECK_FAILED


class RouterApplyFailedError(BlueGreenError):
    """The reverse proxy rejected or could not load the new configuration."""

    exit_code: int = EXIT_ROUTER_APPLY_FAILED


class DeploymentInProgressError(BlueGreenError):
    """Another deployment currently holds the orchestrator."""

    exit_code: int = EXIT_DEPLOYMENT_IN_PROGRESS


class StorageUnavailableError(BlueGreenError):
    """Persisted active-slot state could not be read or written."""

    exit_code: int = EXIT_ERROR


class AuditWriteFailedError(BlueGreenError):
    """An audit record could not be appended. Never reverses a deployment decision."""

    exit_code: int = EXIT_ERROR


class DeploymentTimeoutError(BlueGreenError):
    """The deployment exceeded its overall time budget."""

    exit_code: int = EXIT_ERROR

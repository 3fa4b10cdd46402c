"""
Centralized logging configuration for the blue-green manager.

Implements file-based logging with rotation, separate streams for router
updates and deployment transitions, and optional structured JSON output.
"""
# mypy: ignore-errors

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

ROUTER_LOGGER = "bluegreen_manager.router"
DEPLOYMENT_LOGGER = "bluegreen_manager.deployments"
API_LOGGER = "bluegreen_manager.api"


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON for better parsing."""
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in ("attempt_id", "slot", "state", "duration_ms"):
            if hasattr(record, field):
                log_obj[field] = getattr(record, field)

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable formatter for console and file logs."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = False):
        """Initialize formatter with optional color support."""
        self.use_colors = use_colors
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - [%(funcName)s:%(lineno)d] - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        """Format with optional colors for console output."""
        if self.use_colors and record.levelname in self.COLORS:
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
        return super().format(record)


def _stream_handler(
    log_path: Path, filename: str, formatter: logging.Formatter, max_bytes: int, backup_count: int
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        log_path / filename, maxBytes=max_bytes, backupCount=backup_count
    )
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    log_dir: str = "/var/log/bluegreen-manager",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    use_json: bool = False,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 10,
) -> None:
    """
    Configure logging for the blue-green manager.

    Args:
        log_dir: Directory for log files
        console_level: Console logging level
        file_level: File logging level
        use_json: Use JSON formatting for files
        max_bytes: Max size per log file before rotation
        backup_count: Number of backup files to keep
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, console_level.upper()))
    console_handler.setFormatter(HumanReadableFormatter(use_colors=sys.stderr.isatty()))
    root_logger.addHandler(console_handler)

    file_formatter = StructuredFormatter() if use_json else HumanReadableFormatter()

    main_handler = _stream_handler(log_path, "manager.log", file_formatter, max_bytes, backup_count)
    main_handler.setLevel(getattr(logging, file_level.upper()))
    root_logger.addHandler(main_handler)

    # Error-only log for monitoring
    error_handler = _stream_handler(log_path, "error.log", file_formatter, max_bytes, backup_count)
    error_handler.setLevel(logging.ERROR)
    root_logger.addHandler(error_handler)

    # Router updates and deployment transitions get their own files as well as
    # reaching the main log
    for logger_name, filename in (
        (ROUTER_LOGGER, "router-updates.log"),
        (DEPLOYMENT_LOGGER, "deployments.log"),
        (API_LOGGER, "api-access.log"),
    ):
        stream_logger = logging.getLogger(logger_name)
        stream_logger.handlers.clear()
        stream_logger.addHandler(
            _stream_handler(log_path, filename, file_formatter, max_bytes, backup_count)
        )
        stream_logger.setLevel(logging.DEBUG)

    # Set third-party loggers to WARNING to reduce noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.WARNING)

    root_logger.info(
        f"Logging initialized - Console: {console_level}, File: {file_level}, "
        f"Directory: {log_dir}, JSON: {use_json}"
    )


def setup_basic_logging(verbose: bool = False) -> None:
    """Console-only logging, used when the log directory is not writable."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def log_router_operation(
    operation: str,
    success: bool,
    details: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
) -> None:
    """
    Log a reverse proxy operation.

    Args:
        operation: Operation type (switch, reload, validate, restore)
        success: Whether operation succeeded
        details: Additional operation details
        error: Error message if failed
    """
    logger = logging.getLogger(ROUTER_LOGGER)

    message = f"Router {operation}: {'SUCCESS' if success else 'FAILED'}"
    if error:
        message += f" - {error}"
    if details:
        message += f" - {json.dumps(details)}"

    if success:
        logger.info(message)
    else:
        logger.error(message)


def log_deployment_transition(
    attempt_id: str,
    from_state: str,
    to_state: str,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Log a deployment state machine transition.

    Args:
        attempt_id: Deployment attempt identifier
        from_state: State being left
        to_state: State being entered
        details: Additional transition details
    """
    logger = logging.getLogger(DEPLOYMENT_LOGGER)

    message = f"Deployment {attempt_id}: {from_state} -> {to_state}"
    if details:
        message += f" - {json.dumps(details)}"

    logger.info(message, extra={"attempt_id": attempt_id, "state": to_state})

"""Blue-green manager - health-gated traffic switching between two deployment slots."""

__version__ = "1.0.0"

from .core import build_orchestrator, create_router  # noqa: E402

__all__ = ["build_orchestrator", "create_router"]

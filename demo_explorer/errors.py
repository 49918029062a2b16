from __future__ import annotations

"""Exception hierarchy shared by the Demo-Explorer modules."""

from typing import Any, Optional


class DemoExplorerError(Exception):
    """Base class for every error raised by this package."""


class GraphError(DemoExplorerError):
    """Structural misuse of a NavigationGraph (unknown node ids etc.)."""


class StrategyConfigError(DemoExplorerError, ValueError):
    """Invalid exploration strategy name or limit."""


class FallbackRequired(DemoExplorerError):
    """Raised by a phase when ErrorRecovery decided the plan cannot be recovered.

    The orchestrator catches this and switches to the reduced fallback recording.
    """

    def __init__(self, message: str, *, recovery: Any = None, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.recovery = recovery
        self.cause = cause


class PhaseError(DemoExplorerError):
    """An unexpected exception escaped one of the orchestrator phases."""

    def __init__(self, phase: str, cause: BaseException) -> None:
        super().__init__(f"{phase} phase failed: {cause}")
        self.phase = phase
        self.cause = cause

"""
Exception hierarchy for the orchestration core.

Only ModelBackendError (after fallback is exhausted) and
OrchestrationCancelledError escape Orchestrator.process(); classification and
capability failures are absorbed into degraded results.
"""
from typing import Optional


class OrchestratorError(Exception):
    """Base class for orchestration core errors."""


class ModelBackendError(OrchestratorError):
    """A model backend call failed (HTTP error, timeout, open circuit, bad payload)."""

    def __init__(
        self,
        message: str,
        tier: Optional[str] = None,
        model: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.tier = tier
        self.model = model
        self.status_code = status_code

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429


class OrchestrationCancelledError(OrchestratorError):
    """The request deadline expired before a final answer was produced."""


class CapabilityRegistrationError(OrchestratorError, ValueError):
    """A capability definition violates a registry constraint."""

"""
Error taxonomy for the weekly dispatch pipeline.

Only AuthorizationError and PopulationLoadFailure are allowed to abort a run.
Everything else is per-user and is contained at the pipeline boundary.
"""

from __future__ import annotations


class DispatchError(Exception):
    """Base class for everything raised by ideadrip."""


class AuthorizationError(DispatchError):
    """Trigger credential missing or wrong. Nothing may run after this."""


class PopulationLoadFailure(DispatchError):
    """The enabled-user population could not be read at all."""


class GenerationFailure(DispatchError):
    """Idea generation failed for one user."""


class DeliveryFailure(DispatchError):
    """Delivery failed for one user."""


class UnclassifiedUserError(DispatchError):
    """Anything else that went wrong while serving one user."""


class StepTimeout(UnclassifiedUserError):
    def __init__(self, step: str, seconds: float) -> None:
        super().__init__(f"{step} timed out after {seconds:g}s")
        self.step = step
        self.seconds = seconds


class InvalidScheduleError(UnclassifiedUserError):
    """Stored schedule cannot be interpreted (bad time string, unknown zone)."""

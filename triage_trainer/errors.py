"""Exception types for the triage trainer.

Budget exhaustion and empty action sets are expected branches of the
training loop. Components raise these types at their seams so callers
can degrade to a skip. Only ``EpisodeFailure`` reaches the caller of a
training session.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from triage_trainer.models import EpisodeResult


class TriageTrainerError(Exception):
    """Base class for all trainer errors."""


class BudgetExhausted(TriageTrainerError):
    """Raised when a per-episode budget has no units left."""

    def __init__(self, budget_name: str):
        super().__init__(f"{budget_name} budget exhausted")
        self.budget_name = budget_name


class NoActionsAvailable(TriageTrainerError):
    """Raised when the environment offers no actions for a state."""

    def __init__(self, state_id: str):
        super().__init__(f"No actions available for state {state_id}")
        self.state_id = state_id


class ConsultationTimeout(TriageTrainerError):
    """Raised when a consultation never produced a response."""

    def __init__(self, request_id: str, timeout_s: float):
        super().__init__(f"Consultation {request_id} timed out after {timeout_s:.1f}s")
        self.request_id = request_id
        self.timeout_s = timeout_s


class InvalidTransition(TriageTrainerError):
    """Raised when a session control request does not fit its current state."""

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot {requested} while session is {current}")
        self.current = current
        self.requested = requested


class EpisodeFailure(TriageTrainerError):
    """Error raised when an episode aborted, carrying its partial result.

    The partial result is already finalized with ``reason = error`` and has
    been appended to the session history by the time this is raised.
    """

    def __init__(self, result: "EpisodeResult", cause: BaseException):
        super().__init__(f"Episode {result.episode_number} failed: {cause!r}")
        self.result = result
        self.cause = cause

    @property
    def episode_id(self) -> str:
        return self.result.episode_id

    def get_last_step(self) -> Optional[int]:
        """Step number of the last step recorded before the failure."""
        if not self.result.steps:
            return None
        return self.result.steps[-1].step_number

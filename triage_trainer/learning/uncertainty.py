"""Uncertainty quantification for candidate triage decisions.

Splits uncertainty into an epistemic part (how much the agent's own
confidence varies across the options it has) and an aleatoric part (how
noisy the department is right now: time of day and queue pressure).
The information-gain score peaks when the agent is exactly undecided.

Everything here is a pure function of the agent's current parameters
and the candidate, so two calls against the same agent snapshot return
identical metrics.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from triage_trainer.interfaces import Agent
from triage_trainer.models import Action, State, UncertaintyMetrics

logger = logging.getLogger(__name__)

# Aleatoric components
BUSY_HOURS = range(8, 19)  # 08:00-18:59 inclusive
BUSY_HOURS_UNCERTAINTY = 0.3
QUIET_HOURS_UNCERTAINTY = 0.1
QUEUE_UNCERTAINTY_CAP = 0.5
QUEUE_UNCERTAINTY_SCALE = 20.0  # Patients at which queue pressure saturates

# Novelty saturates once this many patients are waiting
NOVELTY_QUEUE_SCALE = 15.0


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, float(value)))


class UncertaintyQuantifier:
    """Estimates uncertainty and information gain for (state, action) pairs.

    Holds no mutable state. Swap in a subclass to use a calibrated model
    instead of these heuristics.
    """

    def estimate(
        self,
        agent: Agent,
        state: State,
        action: Action | None,
        action_set: Sequence[Action],
    ) -> UncertaintyMetrics:
        """Estimate uncertainty for taking ``action`` from ``action_set``.

        Args:
            agent: Agent whose confidence is probed
            state: Current observation
            action: Candidate action (ignored when ``action_set`` is empty)
            action_set: All actions available in ``state``

        Returns:
            Uncertainty metrics, or the maximal-uncertainty sentinel when
            there is nothing to choose from
        """
        if not action_set or action is None:
            return UncertaintyMetrics.sentinel()

        confidence = _clamp(agent.get_confidence(state, action))
        epistemic = self.epistemic(agent, state, confidence, action_set)
        aleatoric = self.aleatoric(state)
        information_gain = self.information_gain(confidence, state)

        return UncertaintyMetrics(
            epistemic=epistemic,
            aleatoric=aleatoric,
            confidence=confidence,
            information_gain=information_gain,
        )

    def epistemic(
        self,
        agent: Agent,
        state: State,
        confidence: float,
        action_set: Sequence[Action],
    ) -> float:
        """Spread of the agent's confidence over the available actions.

        With a single option there is nothing to compare against, so the
        agent's doubt in that option (1 - confidence) is used instead.
        """
        if len(action_set) > 1:
            confidences = np.array([_clamp(agent.get_confidence(state, a)) for a in action_set])
            return float(np.std(confidences))
        return 1.0 - confidence

    def aleatoric(self, state: State) -> float:
        """Irreducible noise from time of day and queue pressure."""
        hour = int(state.data.get("time_of_day", 12)) % 24
        time_uncertainty = BUSY_HOURS_UNCERTAINTY if hour in BUSY_HOURS else QUIET_HOURS_UNCERTAINTY
        queue_length = max(0, int(state.data.get("queue_length", 0)))
        queue_uncertainty = min(QUEUE_UNCERTAINTY_CAP, queue_length / QUEUE_UNCERTAINTY_SCALE)
        return min(1.0, time_uncertainty + queue_uncertainty)

    def information_gain(self, confidence: float, state: State) -> float:
        """Expected value of learning from this decision, in [0, 1].

        ``4c(1-c)`` is 1 at c = 0.5 and 0 at either extreme. It is scaled
        by how novel the current situation is. A state without queue
        information counts as fully novel.
        """
        base = 4.0 * confidence * (1.0 - confidence)
        if "queue_length" in state.data:
            novelty = min(1.0, max(0, int(state.data["queue_length"])) / NOVELTY_QUEUE_SCALE)
        else:
            novelty = 1.0
        return _clamp(base * novelty)

    def estimate_best(
        self,
        agent: Agent,
        state: State,
        action_set: Sequence[Action],
    ) -> tuple[Action | None, UncertaintyMetrics]:
        """Estimate for the agent's most confident action.

        Returns:
            Tuple of (most confident action or None, its metrics)
        """
        if not action_set:
            return None, UncertaintyMetrics.sentinel()
        best = max(action_set, key=lambda a: _clamp(agent.get_confidence(state, a)))
        return best, self.estimate(agent, state, best, action_set)

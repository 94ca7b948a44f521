"""Active query selection under a per-episode budget.

A query is a deliberate request for more information at an uncertain
step. The selector only fires when the step is uncertain enough (or
informative enough) AND the budget still has a unit left. Budget
exhaustion is a hard stop: with nothing left every call returns None.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import replace
from typing import Optional, Sequence

import numpy as np

from triage_trainer.budget import Budget
from triage_trainer.config import QueryConfig
from triage_trainer.errors import BudgetExhausted
from triage_trainer.interfaces import Agent
from triage_trainer.models import (
    Action,
    ActiveQuery,
    QueryContext,
    QueryType,
    State,
    UncertaintyMetrics,
)

logger = logging.getLogger(__name__)

LOAD_BENEFIT_FACTOR = 0.5  # Busy departments make each query worth more
NEGATIVE_REWARD_CREDIT = 0.3  # Share of benefit credited when the step went badly
COMMITTEE_DISAGREEMENT_THRESHOLD = 0.5


def expected_benefit(uncertainty: UncertaintyMetrics, context: Optional[QueryContext] = None) -> float:
    """Expected learning benefit of querying at this uncertainty."""
    load = context.system_load if context is not None else 0.0
    value = uncertainty.information_gain * uncertainty.total * (1.0 + load * LOAD_BENEFIT_FACTOR)
    return max(0.0, min(1.0, value))


class ActiveQuerySelector:
    """Decides whether a step is worth one of the episode's queries.

    Example:
        >>> selector = ActiveQuerySelector(QueryConfig(budget=2))
        >>> budget = selector.new_budget()
        >>> query = selector.maybe_query(state, actions, uncertainty, budget)
    """

    def __init__(self, config: Optional[QueryConfig] = None):
        # Copied so threshold tuning stays local to this session
        self.config = replace(config) if config is not None else QueryConfig()
        self._rng = np.random.default_rng(self.config.seed)
        self._history: deque[ActiveQuery] = deque(maxlen=self.config.history_size)
        self._contributions: deque[float] = deque(maxlen=self.config.history_size)
        self._type_counts: dict[QueryType, int] = {t: 0 for t in QueryType}
        self._declined = 0

    @property
    def uncertainty_threshold(self) -> float:
        return self.config.uncertainty_threshold

    def set_uncertainty_threshold(self, value: float) -> float:
        """Set the uncertainty threshold, clamped to [0, 1]."""
        self.config.uncertainty_threshold = max(0.0, min(1.0, value))
        logger.info(f"[QUERY] Uncertainty threshold set to {self.config.uncertainty_threshold:.2f}")
        return self.config.uncertainty_threshold

    def new_budget(self) -> Budget:
        return Budget("query", self.config.budget)

    def is_worth_querying(self, uncertainty: UncertaintyMetrics) -> bool:
        return (
            uncertainty.total > self.config.uncertainty_threshold
            or uncertainty.information_gain > self.config.information_gain_threshold
        )

    def maybe_query(
        self,
        state: State,
        candidate_actions: Sequence[Action],
        uncertainty: UncertaintyMetrics,
        budget: Budget,
        confidences: Optional[Sequence[float]] = None,
        context: Optional[QueryContext] = None,
    ) -> Optional[ActiveQuery]:
        """Emit a query for this step if it qualifies and budget remains.

        Args:
            state: Current observation
            candidate_actions: Actions under consideration
            uncertainty: Metrics for the agent's tentative choice
            budget: Episode query budget, consumed on success
            confidences: Agent confidence per candidate action, used for
                Thompson-style perturbation
            context: Department context for benefit weighting

        Returns:
            The created query, or None when the step does not qualify or
            the budget is exhausted
        """
        if budget.exhausted:
            return None
        if not self.is_worth_querying(uncertainty):
            self._declined += 1
            return None

        try:
            remaining = budget.consume()
        except BudgetExhausted:
            return None

        query_type = self._choose_type(uncertainty, candidate_actions, confidences)
        query = ActiveQuery(
            type=query_type,
            state_id=state.id,
            uncertainty=uncertainty,
            expected_benefit=expected_benefit(uncertainty, context),
            priority=uncertainty.total * uncertainty.information_gain,
        )
        self._history.append(query)
        self._type_counts[query_type] += 1
        logger.debug(
            f"[QUERY] {query_type.value} at state {state.id} "
            f"(total={uncertainty.total:.2f}, ig={uncertainty.information_gain:.2f}, remaining={remaining})"
        )
        return query

    def committee_query(
        self,
        state: State,
        candidate_actions: Sequence[Action],
        committee: Sequence[Agent],
        uncertainty: UncertaintyMetrics,
        budget: Budget,
        context: Optional[QueryContext] = None,
    ) -> Optional[ActiveQuery]:
        """Query when a committee of agents disagrees about the best action.

        Disagreement is the fraction of members whose preferred action
        differs from the most popular one.
        """
        if budget.exhausted or len(committee) < 2 or not candidate_actions:
            return None

        votes: dict[str, int] = {}
        for member in committee:
            preferred = max(candidate_actions, key=lambda a: member.get_confidence(state, a))
            votes[preferred.key] = votes.get(preferred.key, 0) + 1
        disagreement = 1.0 - max(votes.values()) / len(committee)
        if disagreement <= COMMITTEE_DISAGREEMENT_THRESHOLD:
            return None

        try:
            budget.consume()
        except BudgetExhausted:
            return None

        query = ActiveQuery(
            type=QueryType.QUERY_BY_COMMITTEE,
            state_id=state.id,
            uncertainty=uncertainty,
            expected_benefit=max(expected_benefit(uncertainty, context), disagreement),
            priority=disagreement,
        )
        self._history.append(query)
        self._type_counts[QueryType.QUERY_BY_COMMITTEE] += 1
        logger.debug(f"[QUERY] Committee disagreement {disagreement:.2f} at state {state.id}")
        return query

    def _choose_type(
        self,
        uncertainty: UncertaintyMetrics,
        candidate_actions: Sequence[Action],
        confidences: Optional[Sequence[float]],
    ) -> QueryType:
        if self._rng.random() < self.config.epsilon:
            return QueryType.EPSILON_GREEDY

        if confidences is not None and len(confidences) > 1 and len(confidences) == len(candidate_actions):
            conf = np.clip(np.asarray(confidences, dtype=float), 0.0, 1.0)
            k = self.config.thompson_concentration
            samples = self._rng.beta(1.0 + conf * k, 1.0 + (1.0 - conf) * k)
            if int(np.argmax(samples)) != int(np.argmax(conf)):
                return QueryType.THOMPSON_SAMPLING

        if (
            uncertainty.information_gain > self.config.information_gain_threshold
            and uncertainty.information_gain >= uncertainty.total
        ):
            return QueryType.INFORMATION_GAIN
        return QueryType.UNCERTAINTY_SAMPLING

    def process_query_result(self, query: ActiveQuery, reward: float) -> float:
        """Record how much a query contributed once its step's reward is known.

        Returns:
            Learning contribution credited to the query
        """
        contribution = query.expected_benefit * (1.0 if reward > 0 else NEGATIVE_REWARD_CREDIT)
        self._contributions.append(contribution)
        return contribution

    def recent_queries(self, limit: int = 20) -> list[ActiveQuery]:
        return list(self._history)[-limit:]

    def get_query_stats(self) -> dict:
        """Aggregate statistics over retained queries."""
        history = list(self._history)
        return {
            "total_queries": len(history),
            "declined": self._declined,
            "by_type": {t.value: n for t, n in self._type_counts.items() if n},
            "avg_expected_benefit": (
                float(np.mean([q.expected_benefit for q in history])) if history else 0.0
            ),
            "avg_contribution": (
                float(np.mean(self._contributions)) if self._contributions else 0.0
            ),
            "uncertainty_threshold": self.config.uncertainty_threshold,
        }

"""Tests for UncertaintyQuantifier."""

import numpy as np
import pytest

from triage_trainer.learning.uncertainty import UncertaintyQuantifier
from triage_trainer.models import Action, ActionType, State, UncertaintyMetrics


class TableAgent:
    """Agent whose confidence comes from a fixed table keyed by action."""

    id = "table-agent"

    def __init__(self, confidences):
        self.confidences = confidences

    def get_confidence(self, state, action):
        return self.confidences.get(action.key, 0.0)


def _assign(level):
    return Action(type=ActionType.TRIAGE_ASSIGN, parameters={"level": level})


@pytest.fixture
def quantifier():
    return UncertaintyQuantifier()


# =============================================================================
# Estimate Tests
# =============================================================================


class TestEstimate:
    """Tests for UncertaintyQuantifier.estimate."""

    def test_empty_action_set_returns_sentinel(self, quantifier, patient_state):
        metrics = quantifier.estimate(TableAgent({}), patient_state, _assign(1), [])
        assert metrics == UncertaintyMetrics.sentinel()

    def test_missing_action_returns_sentinel(self, quantifier, patient_state):
        metrics = quantifier.estimate(TableAgent({}), patient_state, None, [_assign(1)])
        assert metrics == UncertaintyMetrics.sentinel()

    def test_single_action_uses_doubt(self, quantifier, patient_state):
        action = _assign(2)
        metrics = quantifier.estimate(TableAgent({"triage_assign:2": 0.8}), patient_state, action, [action])
        assert metrics.epistemic == pytest.approx(0.2)
        assert metrics.confidence == pytest.approx(0.8)

    def test_epistemic_is_spread_of_confidences(self, quantifier, patient_state):
        actions = [_assign(1), _assign(2), _assign(3)]
        table = {"triage_assign:1": 0.1, "triage_assign:2": 0.7, "triage_assign:3": 0.2}
        metrics = quantifier.estimate(TableAgent(table), patient_state, actions[1], actions)
        assert metrics.epistemic == pytest.approx(float(np.std([0.1, 0.7, 0.2])))

    def test_confidence_clamped(self, quantifier, patient_state):
        action = _assign(1)
        metrics = quantifier.estimate(TableAgent({"triage_assign:1": 1.7}), patient_state, action, [action])
        assert metrics.confidence == 1.0

    def test_estimates_are_pure(self, quantifier, patient_state):
        actions = [_assign(1), _assign(2)]
        agent = TableAgent({"triage_assign:1": 0.4, "triage_assign:2": 0.6})
        first = quantifier.estimate(agent, patient_state, actions[0], actions)
        second = quantifier.estimate(agent, patient_state, actions[0], actions)
        assert first == second


# =============================================================================
# Component Tests
# =============================================================================


class TestComponents:
    """Tests for the aleatoric and information-gain components."""

    def test_aleatoric_busy_hours_with_queue(self, quantifier):
        state = State(data={"time_of_day": 14, "queue_length": 6})
        assert quantifier.aleatoric(state) == pytest.approx(0.3 + 6 / 20)

    def test_aleatoric_quiet_hours_empty_queue(self, quantifier):
        state = State(data={"time_of_day": 3, "queue_length": 0})
        assert quantifier.aleatoric(state) == pytest.approx(0.1)

    def test_aleatoric_queue_pressure_capped(self, quantifier):
        state = State(data={"time_of_day": 10, "queue_length": 100})
        assert quantifier.aleatoric(state) == pytest.approx(0.8)

    def test_information_gain_peaks_when_undecided(self, quantifier):
        state = State(data={"queue_length": 15})
        assert quantifier.information_gain(0.5, state) == pytest.approx(1.0)
        assert quantifier.information_gain(1.0, state) == pytest.approx(0.0)

    def test_information_gain_scaled_by_novelty(self, quantifier):
        assert quantifier.information_gain(0.5, State(data={"queue_length": 3})) == pytest.approx(0.2)
        assert quantifier.information_gain(0.5, State(data={"queue_length": 0})) == 0.0

    def test_state_without_queue_is_fully_novel(self, quantifier):
        assert quantifier.information_gain(0.5, State(data={})) == pytest.approx(1.0)


# =============================================================================
# Best Action Tests
# =============================================================================


class TestEstimateBest:
    """Tests for UncertaintyQuantifier.estimate_best."""

    def test_picks_most_confident_action(self, quantifier, patient_state):
        actions = [_assign(1), _assign(2), _assign(3)]
        table = {"triage_assign:1": 0.1, "triage_assign:2": 0.7, "triage_assign:3": 0.2}
        best, metrics = quantifier.estimate_best(TableAgent(table), patient_state, actions)
        assert best.key == "triage_assign:2"
        assert metrics.confidence == pytest.approx(0.7)

    def test_empty_set(self, quantifier, patient_state):
        best, metrics = quantifier.estimate_best(TableAgent({}), patient_state, [])
        assert best is None
        assert metrics == UncertaintyMetrics.sentinel()

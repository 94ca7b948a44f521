"""Tests for the training data model."""

import math

import pytest
from pydantic import ValidationError

from triage_trainer.models import (
    Action,
    ActionType,
    Acuity,
    DomainComplexity,
    EpisodeMetrics,
    EpisodeResult,
    QueryContext,
    State,
    StepRecord,
    TerminationReason,
    UncertaintyMetrics,
    standard_triage_actions,
)


def _step(n: int, reward: float) -> StepRecord:
    uncertainty = UncertaintyMetrics(epistemic=0.3, aleatoric=0.4, confidence=0.6, information_gain=0.5)
    return StepRecord(
        step_number=n,
        state_id=f"s{n}",
        action=Action(type=ActionType.TRIAGE_ASSIGN, parameters={"level": 2}),
        reward=reward,
        uncertainty=uncertainty,
        learning_opportunity=uncertainty.learning_opportunity,
    )


# =============================================================================
# Action Tests
# =============================================================================


class TestAction:
    """Tests for Action identity."""

    def test_key_includes_level(self):
        action = Action(type=ActionType.TRIAGE_ASSIGN, parameters={"level": 3})
        assert action.key == "triage_assign:3"

    def test_key_ignores_random_id(self):
        a = Action(type=ActionType.ORDER_TEST)
        b = Action(type=ActionType.ORDER_TEST)
        assert a.id != b.id
        assert a.key == b.key == "order_test"

    def test_wait_fallback(self):
        action = Action.wait()
        assert action.type == ActionType.WAIT
        assert action.parameters["reason"] == "no_actions_available"

    def test_standard_actions(self):
        keys = [a.key for a in standard_triage_actions()]
        assert keys[:5] == [f"triage_assign:{n}" for n in range(1, 6)]
        assert "order_test" in keys
        assert "wait" in keys
        assert "wait" not in [a.key for a in standard_triage_actions(include_wait=False)]


# =============================================================================
# UncertaintyMetrics Tests
# =============================================================================


class TestUncertaintyMetrics:
    """Tests for derived uncertainty values."""

    def test_total_is_euclidean_norm(self):
        metrics = UncertaintyMetrics(epistemic=0.3, aleatoric=0.4, confidence=0.5, information_gain=0.2)
        assert metrics.total == pytest.approx(0.5)

    def test_learning_opportunity_blend(self):
        metrics = UncertaintyMetrics(epistemic=0.3, aleatoric=0.4, confidence=0.5, information_gain=0.2)
        assert metrics.learning_opportunity == pytest.approx(0.7 * 0.2 + 0.3 * 0.5)

    def test_learning_opportunity_caps_total(self):
        metrics = UncertaintyMetrics(epistemic=2.0, aleatoric=0.0, confidence=0.0, information_gain=0.0)
        assert metrics.learning_opportunity == pytest.approx(0.3)

    def test_sentinel_is_maximal(self):
        sentinel = UncertaintyMetrics.sentinel()
        assert sentinel.confidence == 0.0
        assert sentinel.information_gain == 1.0
        assert sentinel.total == pytest.approx(math.sqrt(1.25))
        assert sentinel.learning_opportunity == pytest.approx(1.0)

    def test_confidence_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            UncertaintyMetrics(epistemic=0.1, aleatoric=0.1, confidence=1.2, information_gain=0.1)

    def test_total_included_in_dump(self):
        dumped = UncertaintyMetrics(epistemic=0.3, aleatoric=0.4, confidence=0.5, information_gain=0.2).model_dump()
        assert dumped["total"] == pytest.approx(0.5)


# =============================================================================
# QueryContext Tests
# =============================================================================


class TestQueryContext:
    """Tests for QueryContext.from_state."""

    @pytest.mark.parametrize(
        "queue_length,expected",
        [
            (0, DomainComplexity.SIMPLE),
            (5, DomainComplexity.MODERATE),
            (10, DomainComplexity.COMPLEX),
            (20, DomainComplexity.EXPERT),
        ],
    )
    def test_domain_from_queue(self, queue_length, expected):
        context = QueryContext.from_state(State(data={"queue_length": queue_length}))
        assert context.domain_complexity == expected

    def test_carries_load_and_performance(self, patient_state):
        context = QueryContext.from_state(patient_state, recent_performance=0.9)
        assert context.system_load == 0.5
        assert context.time_of_day == 14
        assert context.recent_performance == 0.9


# =============================================================================
# Case Tests
# =============================================================================


class TestCase:
    """Tests for Case and PatientData."""

    def test_triage_level_from_acuity(self, case_factory):
        assert case_factory(acuity=Acuity.CRITICAL).patient.triage_level == 1
        assert case_factory(acuity=Acuity.LOW).patient.triage_level == 4

    def test_to_state_observation(self, case_factory):
        case = case_factory(acuity=Acuity.HIGH, complaint="chest pain", comorbidities=("diabetes",))
        state = case.to_state(queue_length=4, time_of_day=9, system_load=0.4)
        assert state.data["case_id"] == case.id
        assert state.data["acuity"] == "high"
        assert state.data["comorbidity_count"] == 1
        assert state.data["queue_length"] == 4
        assert not state.is_terminal

    def test_case_is_immutable(self, case_factory):
        case = case_factory()
        with pytest.raises(ValidationError):
            case.id = "other"

    def test_overall_complexity_without_profile(self, case_factory):
        assert case_factory().overall_complexity == 0.0


# =============================================================================
# EpisodeResult Tests
# =============================================================================


class TestEpisodeResult:
    """Tests for EpisodeResult export and import."""

    @pytest.fixture
    def result(self):
        steps = tuple(_step(n, r) for n, r in enumerate([1.5, -0.5, 5.0]))
        return EpisodeResult(
            episode_number=4,
            agent_id="agent-1",
            steps=steps,
            total_reward=6.0,
            termination_reason=TerminationReason.ENVIRONMENT_TERMINAL,
            success=True,
            metrics=EpisodeMetrics(total_active_queries=2, learning_efficiency=0.5),
            case_ids=("case-1", "case-2"),
        )

    def test_json_round_trip(self, result):
        restored = EpisodeResult.from_json(result.to_json())
        assert restored.total_reward == result.total_reward
        assert restored.step_count == result.step_count == 3
        assert restored.termination_reason == TerminationReason.ENVIRONMENT_TERMINAL
        assert sum(s.reward for s in restored.steps) == pytest.approx(6.0)
        assert restored.metrics == result.metrics

    def test_dict_round_trip(self, result):
        data = result.to_dict()
        assert data["termination_reason"] == "environment_terminal"
        restored = EpisodeResult.from_dict(data)
        assert restored.episode_id == result.episode_id
        assert restored.case_ids == ("case-1", "case-2")

    def test_is_frozen(self, result):
        with pytest.raises(ValidationError):
            result.total_reward = 0.0

    def test_episode_number_starts_at_one(self):
        with pytest.raises(ValidationError):
            EpisodeResult(episode_number=0, termination_reason=TerminationReason.ERROR)

    def test_duration_non_negative(self, result):
        assert result.duration_s >= 0.0

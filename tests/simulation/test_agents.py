"""Tests for the reference agents."""

import inspect

import numpy as np
import pytest

from triage_trainer.models import Action, ActionType, Experience, Reward, standard_triage_actions
from triage_trainer.simulation import BaseAgent, LinearAgent, RandomAgent, RuleBasedAgent


@pytest.fixture
def actions():
    return standard_triage_actions()


class TestRuleBasedAgent:
    """Tests for the acuity lookup agent."""

    def test_picks_textbook_level(self, rule_agent, patient_state, actions):
        action = rule_agent.select_action(patient_state, actions)
        assert action.key == "triage_assign:2"

    def test_confidence_by_distance(self, rule_agent, patient_state, actions):
        by_key = {a.key: rule_agent.get_confidence(patient_state, a) for a in actions}
        assert by_key["triage_assign:2"] == 0.9
        assert by_key["triage_assign:3"] == 0.3
        assert by_key["triage_assign:5"] == 0.05
        assert by_key["wait"] == 0.05

    def test_default_id(self, rule_agent):
        assert rule_agent.id == "rule_based-agent"


class TestRandomAgent:
    """Tests for the random baseline."""

    def test_flat_confidence(self, patient_state, actions):
        agent = RandomAgent(seed=1)
        assert {agent.get_confidence(patient_state, a) for a in actions} == {0.5}

    def test_selects_offered_action(self, patient_state, actions):
        agent = RandomAgent(seed=1)
        assert agent.select_action(patient_state, actions) in actions


class TestLinearAgent:
    """Tests for the linear softmax agent."""

    def test_confidences_form_distribution(self, patient_state, actions):
        agent = LinearAgent(seed=0)
        total = sum(agent.get_confidence(patient_state, a) for a in actions)
        assert total == pytest.approx(1.0)

    def test_update_moves_weights(self, patient_state):
        agent = LinearAgent(learning_rate=0.5, seed=0)
        action = Action(type=ActionType.TRIAGE_ASSIGN, parameters={"level": 2})
        before = agent.get_confidence(patient_state, action)
        weights = agent.weights.copy()

        agent.update(
            Experience(
                state=patient_state,
                action=action,
                reward=Reward(value=5.0),
                next_state=patient_state,
                done=False,
            )
        )

        assert not np.allclose(agent.weights, weights)
        assert agent.get_confidence(patient_state, action) > before
        assert agent.total_steps == 1

    def test_frozen_agent_does_not_learn(self, patient_state):
        agent = LinearAgent(seed=0)
        agent.is_training = False
        weights = agent.weights.copy()
        agent.update(
            Experience(
                state=patient_state,
                action=Action.wait(),
                reward=Reward(value=-1.0),
                next_state=patient_state,
                done=False,
            )
        )
        assert np.array_equal(agent.weights, weights)
        assert len(agent.experiences) == 0


class TestEpisodeBookkeeping:
    """Tests for BaseAgent episode counting."""

    def test_episode_counted_once(self, rule_agent):
        rule_agent.start_episode()
        rule_agent.end_episode()
        rule_agent.end_episode()
        assert rule_agent.episode_count == 1
        assert rule_agent.get_stats()["episode_count"] == 1

    def test_base_agent_is_abstract(self):
        with pytest.raises(TypeError, match="abstract"):
            BaseAgent()


class TestAgentSignatures:
    """Overrides keep the annotated signatures of BaseAgent."""

    @pytest.mark.parametrize("agent_cls", [RandomAgent, RuleBasedAgent, LinearAgent])
    @pytest.mark.parametrize("method", ["select_action", "get_confidence", "update"])
    def test_override_annotations_match_base(self, agent_cls, method):
        expected = inspect.signature(getattr(BaseAgent, method))
        assert inspect.signature(getattr(agent_cls, method)) == expected

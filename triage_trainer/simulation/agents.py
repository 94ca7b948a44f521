"""Reference agents.

Three interchangeable policies behind the ``Agent`` protocol: a random
baseline, a fixed acuity table and a small learned linear-softmax
policy. They share episode bookkeeping through ``BaseAgent``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Optional

import numpy as np

from triage_trainer.models import ACUITY_TRIAGE_LEVEL, Action, ActionType, Acuity, Experience, State

logger = logging.getLogger(__name__)

EXPERIENCE_CAPACITY = 10_000
ACTION_KEYS = [f"triage_assign:{level}" for level in range(1, 6)] + ["order_test", "wait"]
ACUITY_ORDER = [Acuity.LOW, Acuity.MEDIUM, Acuity.HIGH, Acuity.CRITICAL]


class BaseAgent(ABC):
    """Episode bookkeeping and experience memory shared by all agents."""

    agent_type = "base"

    def __init__(self, agent_id: Optional[str] = None, name: Optional[str] = None):
        self.id = agent_id or f"{self.agent_type}-agent"
        self.name = name or self.id
        self.episode_count = 0
        self.total_steps = 0
        self.is_training = True
        self.experiences: deque[Experience] = deque(maxlen=EXPERIENCE_CAPACITY)
        self._in_episode = False

    def start_episode(self) -> None:
        self._in_episode = True

    def end_episode(self) -> None:
        if self._in_episode:
            self.episode_count += 1
        self._in_episode = False

    def update(self, experience: Experience) -> None:
        self.total_steps += 1
        if self.is_training:
            self.experiences.append(experience)

    @abstractmethod
    def select_action(self, state: State, actions: list[Action]) -> Action:
        ...

    @abstractmethod
    def get_confidence(self, state: State, action: Action) -> float:
        ...

    def get_stats(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.agent_type,
            "episode_count": self.episode_count,
            "total_steps": self.total_steps,
            "experience_count": len(self.experiences),
            "is_training": self.is_training,
        }


class RandomAgent(BaseAgent):
    """Uniformly random baseline with flat confidence."""

    agent_type = "random"

    def __init__(self, seed: Optional[int] = None, **kwargs):
        super().__init__(**kwargs)
        self._rng = np.random.default_rng(seed)

    def select_action(self, state: State, actions: list[Action]) -> Action:
        return actions[int(self._rng.integers(len(actions)))]

    def get_confidence(self, state: State, action: Action) -> float:
        return 0.5


class RuleBasedAgent(BaseAgent):
    """Assigns the textbook triage level for the presented acuity."""

    agent_type = "rule_based"

    def recommended_level(self, state: State) -> Optional[int]:
        acuity = state.data.get("acuity")
        if acuity is None:
            return None
        return ACUITY_TRIAGE_LEVEL[Acuity(acuity)]

    def select_action(self, state: State, actions: list[Action]) -> Action:
        level = self.recommended_level(state)
        for action in actions:
            if action.type == ActionType.TRIAGE_ASSIGN and action.parameters.get("level") == level:
                return action
        return max(actions, key=lambda a: self.get_confidence(state, a))

    def get_confidence(self, state: State, action: Action) -> float:
        level = self.recommended_level(state)
        if action.type == ActionType.TRIAGE_ASSIGN and level is not None:
            distance = abs(int(action.parameters.get("level", 3)) - level)
            return {0: 0.9, 1: 0.3}.get(distance, 0.05)
        if action.type == ActionType.ORDER_TEST:
            return 0.3
        return 0.05


class LinearAgent(BaseAgent):
    """Softmax policy over a linear score of presentation features.

    Confidence in an action is its softmax probability. ``update`` takes a
    policy-gradient step on the experienced reward, scaled by the
    experience weight so actively queried steps count for more.

    Args:
        learning_rate: Step size for weight updates
        epsilon: Exploration rate while training
        seed: RNG seed for exploration and initial weights
    """

    agent_type = "linear"
    n_features = len(ACUITY_ORDER) + 4

    def __init__(self, learning_rate: float = 0.05, epsilon: float = 0.1, seed: Optional[int] = None, **kwargs):
        super().__init__(**kwargs)
        self.learning_rate = learning_rate
        self.epsilon = epsilon
        self._rng = np.random.default_rng(seed)
        self.weights = self._rng.normal(0.0, 0.01, size=(len(ACTION_KEYS), self.n_features))

    def features(self, state: State) -> np.ndarray:
        x = np.zeros(self.n_features)
        acuity = state.data.get("acuity")
        if acuity is not None:
            x[ACUITY_ORDER.index(Acuity(acuity))] = 1.0
        offset = len(ACUITY_ORDER)
        x[offset] = float(state.data.get("age", 0)) / 100.0
        x[offset + 1] = float(state.data.get("pain_level", 0)) / 10.0
        x[offset + 2] = min(1.0, float(state.data.get("comorbidity_count", 0)) / 5.0)
        x[offset + 3] = 1.0  # bias
        return x

    def policy(self, state: State) -> np.ndarray:
        logits = self.weights @ self.features(state)
        logits -= logits.max()
        exp = np.exp(logits)
        return exp / exp.sum()

    def get_confidence(self, state: State, action: Action) -> float:
        if action.key not in ACTION_KEYS:
            return 0.0
        return float(self.policy(state)[ACTION_KEYS.index(action.key)])

    def select_action(self, state: State, actions: list[Action]) -> Action:
        if self.is_training and self._rng.random() < self.epsilon:
            return actions[int(self._rng.integers(len(actions)))]
        return max(actions, key=lambda a: self.get_confidence(state, a))

    def update(self, experience: Experience) -> None:
        super().update(experience)
        if not self.is_training or experience.action.key not in ACTION_KEYS:
            return
        x = self.features(experience.state)
        probs = self.policy(experience.state)
        index = ACTION_KEYS.index(experience.action.key)
        grad = -np.outer(probs, x)
        grad[index] += x
        advantage = experience.reward.value / 10.0
        self.weights += self.learning_rate * experience.weight * advantage * grad

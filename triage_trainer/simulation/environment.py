"""Emergency department triage environment.

Patients wait in a queue. The agent sees the patient at the head of the
queue and either assigns a triage level, orders a test, or waits. An
assignment is scored against the patient's true level, with
under-triage (rating a patient as less urgent than they are) penalised
harder than over-triage. The episode ends when the queue is empty.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Optional

import numpy as np

from triage_trainer.interfaces import CaseGenerator
from triage_trainer.models import (
    Action,
    ActionType,
    Acuity,
    Case,
    Reward,
    State,
    StepResult,
    standard_triage_actions,
)

logger = logging.getLogger(__name__)

CORRECT_REWARD = 5.0
ERROR_PENALTY_PER_LEVEL = 3.0
UNDER_TRIAGE_PENALTY_PER_LEVEL = 2.0
TEST_COST = 0.5
MAX_TESTS_PER_PATIENT = 2
WAIT_PENALTY = {Acuity.LOW: 0.2, Acuity.MEDIUM: 0.5, Acuity.HIGH: 1.5, Acuity.CRITICAL: 3.0}
MINUTES_PER_STEP = 10


class TriageEnvironment:
    """Queue of synthetic patients awaiting triage.

    Args:
        generator: Source of cases when none were loaded for the episode
        cases_per_episode: Patients generated when none were loaded
        seed: Seed for start time of day
    """

    def __init__(
        self,
        generator: Optional[CaseGenerator] = None,
        cases_per_episode: int = 5,
        seed: Optional[int] = None,
    ):
        self.generator = generator
        self.cases_per_episode = cases_per_episode
        self._rng = np.random.default_rng(seed)
        self._loaded: list[Case] = []
        self._queue: deque[Case] = deque()
        self._tests_ordered = 0
        self._minutes = 0
        self._start_hour = 12
        self._state: Optional[State] = None
        self.episode_count = 0

    def load_cases(self, cases: list[Case]) -> None:
        """Use ``cases`` for the next episode instead of generating new ones."""
        self._loaded = list(cases)

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def current_case(self) -> Optional[Case]:
        return self._queue[0] if self._queue else None

    def _hour(self) -> int:
        return (self._start_hour + self._minutes // 60) % 24

    def _observe(self) -> State:
        case = self.current_case
        if case is None:
            self._state = State(type="queue_empty", data={"queue_length": 0, "time_of_day": self._hour()}, is_terminal=True)
            return self._state
        waiting = len(self._queue) - 1
        self._state = case.to_state(
            queue_length=waiting,
            time_of_day=self._hour(),
            system_load=min(1.0, waiting / 10),
        )
        if case.complexity is not None:
            self._state.data["complexity"] = case.complexity.overall
        self._state.data["tests_ordered"] = self._tests_ordered
        return self._state

    async def reset(self) -> State:
        if self._loaded:
            cases = self._loaded
            self._loaded = []
        elif self.generator is not None:
            cases = [await self.generator.generate() for _ in range(self.cases_per_episode)]
        else:
            cases = []
        self._queue = deque(cases)
        self._tests_ordered = 0
        self._minutes = 0
        self._start_hour = int(self._rng.integers(0, 24))
        self.episode_count += 1
        logger.debug(f"[ENV] Episode {self.episode_count} reset with {len(cases)} patients")
        return self._observe()

    def get_available_actions(self, state: State) -> list[Action]:
        if state.is_terminal or self.current_case is None:
            return []
        actions = standard_triage_actions()
        if self._tests_ordered >= MAX_TESTS_PER_PATIENT:
            actions = [a for a in actions if a.type != ActionType.ORDER_TEST]
        return actions

    async def step(self, action: Action) -> StepResult:
        self._minutes += MINUTES_PER_STEP
        case = self.current_case
        if case is None:
            return StepResult(
                state=self._observe(),
                reward=Reward(value=0.0, reasoning="No patients waiting"),
                done=True,
            )

        info: dict[str, Any] = {"case_id": case.id, "true_level": case.patient.triage_level}
        if action.type == ActionType.TRIAGE_ASSIGN:
            reward = self._score_assignment(case, int(action.parameters.get("level", 3)))
            info["assigned_level"] = action.parameters.get("level")
            info["correct"] = reward.components.get("accuracy", 0.0) > 0
            self._queue.popleft()
            self._tests_ordered = 0
        elif action.type == ActionType.ORDER_TEST:
            self._tests_ordered += 1
            reward = Reward(
                value=-TEST_COST,
                components={"test_cost": -TEST_COST},
                reasoning=f"Ordered test for {case.patient.chief_complaint}",
            )
        else:
            penalty = WAIT_PENALTY[case.patient.acuity]
            reward = Reward(
                value=-penalty,
                components={"delay": -penalty},
                reasoning=f"Delayed {case.patient.acuity.value} patient",
            )

        state = self._observe()
        return StepResult(state=state, reward=reward, done=state.is_terminal, info=info)

    def _score_assignment(self, case: Case, level: int) -> Reward:
        true_level = case.patient.triage_level
        error = abs(level - true_level)
        accuracy = CORRECT_REWARD - ERROR_PENALTY_PER_LEVEL * error
        components = {"accuracy": accuracy}
        if level > true_level:
            components["under_triage"] = -UNDER_TRIAGE_PENALTY_PER_LEVEL * (level - true_level)
        value = sum(components.values())
        if error == 0:
            reasoning = f"Correct level {level} for {case.patient.acuity.value} acuity"
        else:
            reasoning = f"Assigned level {level}, expected {true_level}"
        return Reward(value=value, components=components, reasoning=reasoning)

"""Curriculum state machine for staged difficulty.

The curriculum holds a discrete level in 1..max_level. Each episode adds
a sample to a rolling window. When the window is full an evaluation
checkpoint runs. The level advances by exactly one when the window shows
both a high success rate and consistent rewards. After any level change
the window is cleared, so each checkpoint can move the level at most once
and the new level must earn its own evidence.

Levels never go down unless ``allow_regression`` is enabled.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import numpy as np

from triage_trainer.config import CurriculumConfig

logger = logging.getLogger(__name__)

CONSISTENCY_REWARD_SCALE = 10.0  # Reward std-dev at which consistency reaches 0


class CurriculumStrategy(str, Enum):
    PROGRESSIVE = "progressive"
    ADAPTIVE = "adaptive"
    COMPETENCY_BASED = "competency_based"
    EXPLORATION_FIRST = "exploration_first"


@dataclass
class CurriculumMetrics:
    """Rolling progress measures for the current level."""

    success_rate: float = 0.0
    average_confidence: float = 0.0
    learning_velocity: float = 0.0
    stability_index: float = 0.0


@dataclass
class EpisodeSample:
    success: bool
    reward: float
    average_confidence: float = 0.0


@dataclass
class LevelChange:
    from_level: int
    to_level: int
    success_rate: float
    consistency: float
    changed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class LearningCurriculum:
    """Per-session curriculum state.

    Attributes:
        current_level: Active level, always within [1, max_level]
        max_level: Highest level
        adaptation_strategy: How the curriculum is paced
        progress_metrics: Rolling measures for the current level
        level_history: Every level change, oldest first
    """

    current_level: int = 1
    max_level: int = 5
    adaptation_strategy: CurriculumStrategy = CurriculumStrategy.ADAPTIVE
    progress_metrics: CurriculumMetrics = field(default_factory=CurriculumMetrics)
    level_history: list[LevelChange] = field(default_factory=list)

    @property
    def progress(self) -> float:
        """Normalized position in the curriculum, 0 at level 1 and 1 at the top."""
        if self.max_level <= 1:
            return 1.0
        return (self.current_level - 1) / (self.max_level - 1)

    def snapshot(self) -> dict[str, Any]:
        return {
            "current_level": self.current_level,
            "max_level": self.max_level,
            "adaptation_strategy": self.adaptation_strategy.value,
            "success_rate": self.progress_metrics.success_rate,
            "stability_index": self.progress_metrics.stability_index,
            "level_changes": len(self.level_history),
        }


def consistency_score(rewards: list[float]) -> float:
    """Consistency of episode rewards: 1 for identical rewards, 0 for very noisy.

    Fewer than two rewards carry no spread information and score 0.5.
    """
    if len(rewards) < 2:
        return 0.5
    return max(0.0, 1.0 - float(np.std(rewards)) / CONSISTENCY_REWARD_SCALE)


class CurriculumManager:
    """Owns a ``LearningCurriculum`` and moves it between levels."""

    def __init__(
        self,
        config: Optional[CurriculumConfig] = None,
        strategy: CurriculumStrategy = CurriculumStrategy.ADAPTIVE,
    ):
        self.config = config or CurriculumConfig()
        self.curriculum = LearningCurriculum(
            max_level=self.config.max_level,
            adaptation_strategy=strategy,
        )
        self._window: deque[EpisodeSample] = deque(maxlen=self.config.window_size)
        self._evaluations = 0
        logger.info(f"[CURRICULUM] Initialized at level 1/{self.config.max_level} ({strategy.value})")

    @property
    def level(self) -> int:
        return self.curriculum.current_level

    @property
    def at_max_level(self) -> bool:
        return self.curriculum.current_level >= self.curriculum.max_level

    def window_success_rate(self) -> float:
        if not self._window:
            return 0.0
        return sum(1 for s in self._window if s.success) / len(self._window)

    def window_consistency(self) -> float:
        return consistency_score([s.reward for s in self._window])

    def record_episode(
        self,
        success: bool,
        reward: float,
        average_confidence: float = 0.0,
    ) -> Optional[LevelChange]:
        """Add an episode to the window and evaluate once the window is full.

        Args:
            success: Whether the episode met its success threshold
            reward: Episode total reward
            average_confidence: Mean agent confidence over the episode

        Returns:
            The level change made at this checkpoint, if any
        """
        self._window.append(EpisodeSample(success, reward, average_confidence))
        self._refresh_metrics()
        if len(self._window) < self.config.window_size:
            return None
        return self.evaluate()

    def evaluate(self) -> Optional[LevelChange]:
        """Run one evaluation checkpoint. Moves the level by at most one."""
        self._evaluations += 1
        if len(self._window) < self.config.window_size:
            return None

        success_rate = self.window_success_rate()
        consistency = self.window_consistency()

        if (
            success_rate > self.config.success_threshold
            and consistency > self.config.consistency_threshold
            and not self.at_max_level
        ):
            return self._change_level(+1, success_rate, consistency)

        if (
            self.config.allow_regression
            and success_rate < self.config.regression_success_floor
            and self.curriculum.current_level > 1
        ):
            return self._change_level(-1, success_rate, consistency)

        return None

    def should_advance(self) -> bool:
        """Whether the current window would advance the level at a checkpoint."""
        return (
            len(self._window) >= self.config.window_size
            and self.window_success_rate() > self.config.success_threshold
            and self.window_consistency() > self.config.consistency_threshold
            and not self.at_max_level
        )

    def _change_level(self, delta: int, success_rate: float, consistency: float) -> LevelChange:
        old = self.curriculum.current_level
        new = max(1, min(self.curriculum.max_level, old + delta))
        change = LevelChange(old, new, success_rate, consistency)
        self.curriculum.current_level = new
        self.curriculum.level_history.append(change)
        self._window.clear()
        self._refresh_metrics()
        verb = "Advanced" if delta > 0 else "Regressed"
        logger.info(
            f"[CURRICULUM] {verb} {old} -> {new} "
            f"(success={success_rate:.2f}, consistency={consistency:.2f})"
        )
        return change

    def _refresh_metrics(self) -> None:
        if not self._window:
            self.curriculum.progress_metrics = CurriculumMetrics()
            return
        m = self.curriculum.progress_metrics
        rewards = [s.reward for s in self._window]
        m.success_rate = self.window_success_rate()
        m.average_confidence = float(np.mean([s.average_confidence for s in self._window]))
        m.stability_index = self.window_consistency()
        if len(rewards) >= 2:
            half = len(rewards) // 2
            m.learning_velocity = float(np.mean(rewards[half:]) - np.mean(rewards[:half]))
        else:
            m.learning_velocity = 0.0

    def get_complexity_range(self, level: Optional[int] = None) -> tuple[float, float]:
        """Target complexity window for a level.

        The window has width ``window_width`` and is centred on the level's
        normalized position, so level 1 starts at the easy end of the axis
        and the top level sits at the hard end. Bounds are clamped to [0, 1].
        """
        level = self.curriculum.current_level if level is None else level
        level = max(1, min(self.curriculum.max_level, level))
        if self.curriculum.max_level <= 1:
            return 0.0, 1.0
        center = (level - 1) / (self.curriculum.max_level - 1)
        half = self.config.window_width / 2
        return max(0.0, center - half), min(1.0, center + half)

    def expand_range(self, window: tuple[float, float]) -> tuple[float, float]:
        """Widen a complexity window symmetrically by one step."""
        step = self.config.expand_step
        return max(0.0, window[0] - step), min(1.0, window[1] + step)

    def get_stats(self) -> dict[str, Any]:
        stats = self.curriculum.snapshot()
        stats.update(
            {
                "window_fill": len(self._window),
                "evaluations": self._evaluations,
                "complexity_range": self.get_complexity_range(),
            }
        )
        return stats

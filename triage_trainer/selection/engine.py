"""Case selection strategy engine.

Chooses which cases the agent trains on next and periodically reconsiders
which strategy to use, based on how much the recent selections were
expected to help and how the agent has been performing.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import numpy as np

from triage_trainer.config import SelectionParameters
from triage_trainer.learning.curriculum import CurriculumManager, consistency_score
from triage_trainer.models import Case
from triage_trainer.selection.complexity import (
    COMPETENCIES,
    ComplexityProfiler,
    difficulty_histogram,
)
from triage_trainer.selection.strategies import (
    STRENGTH_THRESHOLD,
    STRUGGLING_THRESHOLD,
    CaseSelector,
    SelectionContext,
    SelectionStrategyType,
    build_selectors,
)

logger = logging.getLogger(__name__)

DEFAULT_STRATEGY = SelectionStrategyType.CURRICULUM_PROGRESSIVE
MIN_POOL_SIZE = 15
POOL_MULTIPLIER = 3
RECENT_PERFORMANCE_WINDOW = 10
COMPETENCY_EMA_ALPHA = 0.2

# History caps: trim to the second value once the first is exceeded
SELECTION_HISTORY_CAP = (100, 50)
PERFORMANCE_HISTORY_CAP = (200, 100)


def candidate_pool_size(target_count: int) -> int:
    """Number of candidates to generate for a batch of ``target_count``."""
    return max(POOL_MULTIPLIER * target_count, MIN_POOL_SIZE)


@dataclass
class SelectionResult:
    """Cases chosen for the next batch and why."""

    cases: list[Case]
    strategy: SelectionStrategyType
    rationale: str
    expected_benefit: float
    difficulty_histogram: dict[str, float]
    adaptation_made: bool = False
    curriculum_advancement: bool = False
    complexity_window: Optional[tuple[float, float]] = None


@dataclass
class SelectionRecord:
    strategy: SelectionStrategyType
    case_count: int
    expected_benefit: float
    adaptation_made: bool
    curriculum_level: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PerformanceRecord:
    """Outcome of training on a batch of cases."""

    reward: float
    success: bool
    case_ids: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PerformanceSummary:
    success_rate: float = 0.5
    consistency: float = 0.5
    velocity: float = 0.0
    average_reward: float = 0.0


@dataclass
class StrategyEvaluation:
    should_adapt: bool
    effectiveness: float
    issues: list[str] = field(default_factory=list)


class CaseSelectionEngine:
    """Selects training cases and adapts the selection strategy.

    The engine owns the session's competency scores and its selection and
    performance histories. Every ``evaluation_interval`` selections it
    checks whether the current strategy is still effective and, if not,
    switches to the strategy that suits recent performance.

    Args:
        curriculum: Curriculum manager supplying complexity windows
        params: Selection weights and cadence
        profiler: Complexity profiler (shared cache)
        uncertainty_probe: Optional case -> uncertainty estimate
        strategy: Initial strategy
    """

    def __init__(
        self,
        curriculum: Optional[CurriculumManager] = None,
        params: Optional[SelectionParameters] = None,
        profiler: Optional[ComplexityProfiler] = None,
        uncertainty_probe: Optional[Callable[[Case], float]] = None,
        strategy: SelectionStrategyType = DEFAULT_STRATEGY,
    ):
        self.params = replace(params) if params is not None else SelectionParameters()
        self.curriculum = curriculum
        self.profiler = profiler or ComplexityProfiler()
        self.uncertainty_probe = uncertainty_probe
        self.competencies: dict[str, float] = {name: 0.5 for name in COMPETENCIES}
        self._strategy = strategy
        self._selectors: dict[SelectionStrategyType, CaseSelector] = build_selectors()
        self._selection_history: list[SelectionRecord] = []
        self._performance_history: list[PerformanceRecord] = []
        self._selections_since_evaluation = 0
        self._strategy_changes = 0

    @property
    def strategy(self) -> SelectionStrategyType:
        return self._strategy

    def set_strategy(self, strategy: SelectionStrategyType | str) -> None:
        new = SelectionStrategyType(strategy)
        if new != self._strategy:
            logger.info(f"[SELECTOR] Strategy {self._strategy.value} -> {new.value}")
            self._strategy = new
            self._strategy_changes += 1

    # -------------------------------------------------------------------------
    # Selection
    # -------------------------------------------------------------------------

    def select(
        self,
        candidate_pool: list[Case],
        strategy: Optional[SelectionStrategyType | str] = None,
        target_count: int = 5,
    ) -> SelectionResult:
        """Choose up to ``target_count`` cases from ``candidate_pool``.

        Args:
            candidate_pool: Candidate cases (profiles are computed if missing)
            strategy: Strategy for this call, defaults to the engine's current one
            target_count: Batch size

        Returns:
            Selection with rationale, expected benefit and difficulty histogram
        """
        if target_count < 1:
            raise ValueError(f"target_count must be >= 1, got {target_count}")

        pool = [self.profiler.ensure_profile(c) for c in candidate_pool]
        strategy_type = SelectionStrategyType(strategy) if strategy is not None else self._strategy

        if not pool:
            logger.warning("[SELECTOR] Empty candidate pool")
            result = SelectionResult(
                cases=[],
                strategy=strategy_type,
                rationale="Empty candidate pool",
                expected_benefit=0.0,
                difficulty_histogram=difficulty_histogram([]),
            )
            self._record_selection(result)
            return result

        outcome = self._selectors[strategy_type].select(pool, target_count, self._context())
        result = SelectionResult(
            cases=outcome.cases,
            strategy=strategy_type,
            rationale=outcome.rationale,
            expected_benefit=outcome.expected_benefit,
            difficulty_histogram=difficulty_histogram(outcome.cases),
            adaptation_made=outcome.adaptation_made,
            curriculum_advancement=self.curriculum.should_advance() if self.curriculum else False,
            complexity_window=outcome.complexity_window,
        )
        logger.debug(f"[SELECTOR] {strategy_type.value}: {len(result.cases)} cases. {result.rationale}")

        self._record_selection(result)
        self._selections_since_evaluation += 1
        if self._selections_since_evaluation >= self.params.evaluation_interval:
            self._selections_since_evaluation = 0
            self.adapt_strategy()
        return result

    def _context(self) -> SelectionContext:
        return SelectionContext(
            params=self.params,
            curriculum=self.curriculum,
            competencies=dict(self.competencies),
            success_rate=self.recent_performance().success_rate,
            uncertainty_probe=self.uncertainty_probe,
        )

    def _record_selection(self, result: SelectionResult) -> None:
        self._selection_history.append(
            SelectionRecord(
                strategy=result.strategy,
                case_count=len(result.cases),
                expected_benefit=result.expected_benefit,
                adaptation_made=result.adaptation_made,
                curriculum_level=self.curriculum.level if self.curriculum else 0,
            )
        )
        cap, keep = SELECTION_HISTORY_CAP
        if len(self._selection_history) > cap:
            self._selection_history = self._selection_history[-keep:]

    # -------------------------------------------------------------------------
    # Performance and competencies
    # -------------------------------------------------------------------------

    def record_performance(self, record: PerformanceRecord) -> None:
        self._performance_history.append(record)
        cap, keep = PERFORMANCE_HISTORY_CAP
        if len(self._performance_history) > cap:
            self._performance_history = self._performance_history[-keep:]

    def update_competency(self, name: str, score: float) -> float:
        """Move a competency toward an observed score with an EMA.

        Returns:
            The updated competency value
        """
        score = max(0.0, min(1.0, score))
        current = self.competencies.get(name, 0.5)
        updated = (1 - COMPETENCY_EMA_ALPHA) * current + COMPETENCY_EMA_ALPHA * score
        self.competencies[name] = updated
        return updated

    def struggling_areas(self) -> list[str]:
        return sorted(k for k, v in self.competencies.items() if v < STRUGGLING_THRESHOLD)

    def strengths(self) -> list[str]:
        return sorted(k for k, v in self.competencies.items() if v > STRENGTH_THRESHOLD)

    def recent_performance(self) -> PerformanceSummary:
        """Success, consistency and velocity over the last 10 records."""
        recent = self._performance_history[-RECENT_PERFORMANCE_WINDOW:]
        if not recent:
            return PerformanceSummary()
        rewards = [r.reward for r in recent]
        velocity = 0.0
        if len(rewards) >= 2:
            half = len(rewards) // 2
            velocity = float(np.mean(rewards[half:]) - np.mean(rewards[:half]))
        return PerformanceSummary(
            success_rate=sum(1 for r in recent if r.success) / len(recent),
            consistency=consistency_score(rewards),
            velocity=velocity,
            average_reward=float(np.mean(rewards)),
        )

    # -------------------------------------------------------------------------
    # Strategy adaptation
    # -------------------------------------------------------------------------

    def evaluate_strategy(self) -> StrategyEvaluation:
        """Judge the current strategy from the most recent selections."""
        recent = self._selection_history[-self.params.effectiveness_window:]
        if len(recent) < self.params.min_history:
            return StrategyEvaluation(should_adapt=False, effectiveness=0.5)

        avg_benefit = float(np.mean([r.expected_benefit for r in recent]))
        adaptations = sum(1 for r in recent if r.adaptation_made)
        issues = []
        if avg_benefit < 0.6:
            issues.append(f"low expected benefit ({avg_benefit:.2f})")
        if adaptations > 0.8 * len(recent):
            issues.append(f"frequent adaptation ({adaptations}/{len(recent)})")

        return StrategyEvaluation(
            should_adapt=len(issues) > 1 or avg_benefit < 0.5,
            effectiveness=avg_benefit,
            issues=issues,
        )

    def optimal_strategy(self) -> SelectionStrategyType:
        """Strategy that best suits recent performance."""
        perf = self.recent_performance()
        if perf.success_rate < 0.4:
            return SelectionStrategyType.CURRICULUM_PROGRESSIVE
        if perf.success_rate > 0.85:
            return SelectionStrategyType.UNCERTAINTY_FOCUSED
        if perf.consistency < 0.5:
            return SelectionStrategyType.COMPETENCY_BASED
        return SelectionStrategyType.ADAPTIVE_HYBRID

    def adapt_strategy(self) -> Optional[SelectionStrategyType]:
        """Re-evaluate the strategy at a checkpoint.

        With too little history the engine falls back to the default
        strategy. ``select`` only reaches that branch when
        ``evaluation_interval`` is below ``min_history`` or when this is
        called directly, so an explicitly chosen strategy survives the first
        selections under the default cadence. Otherwise it switches to the
        optimal strategy when the current one is judged ineffective.

        Returns:
            The new strategy if it changed, else None
        """
        if len(self._selection_history) < self.params.min_history:
            if self._strategy != DEFAULT_STRATEGY:
                self.set_strategy(DEFAULT_STRATEGY)
                return DEFAULT_STRATEGY
            return None

        evaluation = self.evaluate_strategy()
        if not evaluation.should_adapt:
            return None

        optimal = self.optimal_strategy()
        if optimal == self._strategy:
            return None
        logger.info(f"[SELECTOR] Adapting strategy: {', '.join(evaluation.issues) or 'low effectiveness'}")
        if optimal == SelectionStrategyType.UNCERTAINTY_FOCUSED:
            self.params.uncertainty_weight = 0.8
        self.set_strategy(optimal)
        return optimal

    def get_selection_stats(self) -> dict[str, Any]:
        history = self._selection_history
        usage: dict[str, int] = {}
        for record in history:
            usage[record.strategy.value] = usage.get(record.strategy.value, 0) + 1
        perf = self.recent_performance()
        return {
            "current_strategy": self._strategy.value,
            "total_selections": len(history),
            "strategy_usage": usage,
            "strategy_changes": self._strategy_changes,
            "avg_expected_benefit": float(np.mean([r.expected_benefit for r in history])) if history else 0.0,
            "success_rate": perf.success_rate,
            "consistency": perf.consistency,
            "competencies": dict(self.competencies),
            "struggling_areas": self.struggling_areas(),
            "strengths": self.strengths(),
            "profile_cache": self.profiler.get_stats(),
        }

"""Case selection strategies.

Each strategy picks up to ``target_count`` cases from a profiled pool and
explains the choice. Strategies share a ``SelectionContext`` carrying the
session's curriculum, competency scores and an optional uncertainty
probe, and they never mutate it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

import numpy as np

from triage_trainer.config import SelectionParameters
from triage_trainer.models import Case
from triage_trainer.selection.complexity import (
    categorize_complaint,
    case_features,
    competency_tags,
)

if TYPE_CHECKING:
    from triage_trainer.learning.curriculum import CurriculumManager

logger = logging.getLogger(__name__)

STRUGGLING_THRESHOLD = 0.6
STRENGTH_THRESHOLD = 0.8
REPEATED_CATEGORY_BONUS = 0.3  # Diversity bonus for an already-selected complaint category


class SelectionStrategyType(str, Enum):
    CURRICULUM_PROGRESSIVE = "curriculum_progressive"
    UNCERTAINTY_FOCUSED = "uncertainty_focused"
    DIVERSITY_MAXIMIZING = "diversity_maximizing"
    COMPETENCY_BASED = "competency_based"
    ADAPTIVE_HYBRID = "adaptive_hybrid"


@dataclass
class SelectionContext:
    """Read-only inputs shared by all strategies.

    Attributes:
        params: Selection weights
        curriculum: Curriculum manager providing the complexity window
        competencies: Competency tag -> score in [0, 1]
        success_rate: Recent success rate used by the hybrid blend
        uncertainty_probe: Optional case -> uncertainty in [0, 1]
    """

    params: SelectionParameters = field(default_factory=SelectionParameters)
    curriculum: Optional["CurriculumManager"] = None
    competencies: dict[str, float] = field(default_factory=dict)
    success_rate: float = 0.5
    uncertainty_probe: Optional[Callable[[Case], float]] = None

    def struggling(self) -> list[str]:
        return sorted(k for k, v in self.competencies.items() if v < STRUGGLING_THRESHOLD)

    def strengths(self) -> list[str]:
        return sorted(k for k, v in self.competencies.items() if v > STRENGTH_THRESHOLD)


@dataclass
class StrategyOutcome:
    cases: list[Case]
    rationale: str
    expected_benefit: float
    adaptation_made: bool = False
    complexity_window: Optional[tuple[float, float]] = None


def stratified_subset(cases: list[Case], target_count: int) -> list[Case]:
    """Spread picks across complexity quartiles, easiest first in each round."""
    ordered = sorted(cases, key=lambda c: c.overall_complexity)
    if len(ordered) <= target_count:
        return ordered
    quartiles = [list(q) for q in np.array_split(np.arange(len(ordered)), 4) if len(q)]
    selected: list[Case] = []
    round_index = 0
    while len(selected) < target_count:
        progressed = False
        for quartile in quartiles:
            if round_index < len(quartile) and len(selected) < target_count:
                selected.append(ordered[quartile[round_index]])
                progressed = True
        if not progressed:
            break
        round_index += 1
    return selected


def diversity_bonus(candidate: Case, selected: list[Case]) -> float:
    if not selected:
        return 1.0
    category = categorize_complaint(candidate.patient.chief_complaint)
    seen = {categorize_complaint(s.patient.chief_complaint) for s in selected}
    return REPEATED_CATEGORY_BONUS if category in seen else 1.0


def select_with_diversity(scored: list[tuple[Case, float]], target_count: int, diversity_weight: float) -> list[Case]:
    """Greedy pick balancing each candidate's score against complaint variety."""
    remaining = list(scored)
    selected: list[Case] = []
    while remaining and len(selected) < target_count:
        best_index = 0
        best_score = -1.0
        for i, (case, score) in enumerate(remaining):
            combined = (1 - diversity_weight) * score + diversity_weight * diversity_bonus(case, selected)
            if combined > best_score:
                best_score = combined
                best_index = i
        selected.append(remaining.pop(best_index)[0])
    return selected


def maximally_diverse(cases: list[Case], target_count: int, novelty_bonus: float = 0.0) -> list[Case]:
    """Greedy marginal-gain selection over categorical case features.

    At each step picks the candidate that introduces the most feature
    values not yet covered. Ties go to the earlier candidate.
    """
    remaining = list(cases)
    selected: list[Case] = []
    seen: dict[str, set[str]] = {}
    while remaining and len(selected) < target_count:
        best_index = 0
        best_gain = -1.0
        for i, case in enumerate(remaining):
            features = case_features(case)
            unseen = sum(1 for name, value in features.items() if value not in seen.get(name, set()))
            gain = unseen + (novelty_bonus if unseen == len(features) else 0.0)
            if gain > best_gain:
                best_gain = gain
                best_index = i
        chosen = remaining.pop(best_index)
        for name, value in case_features(chosen).items():
            seen.setdefault(name, set()).add(value)
        selected.append(chosen)
    return selected


class CaseSelector(ABC):
    """A strategy that chooses training cases from a pool."""

    strategy_type: SelectionStrategyType

    @abstractmethod
    def select(self, pool: list[Case], target_count: int, ctx: SelectionContext) -> StrategyOutcome:
        ...


class CurriculumProgressiveSelector(CaseSelector):
    strategy_type = SelectionStrategyType.CURRICULUM_PROGRESSIVE

    def select(self, pool: list[Case], target_count: int, ctx: SelectionContext) -> StrategyOutcome:
        if ctx.curriculum is None:
            low, high = ctx.params.difficulty_range
            ordered = sorted(pool, key=lambda c: (not (low <= c.overall_complexity <= high), c.overall_complexity))
            return StrategyOutcome(
                cases=ordered[:target_count],
                rationale=f"No curriculum: preferring complexity {low:.2f}-{high:.2f}, easiest first",
                expected_benefit=0.6,
            )

        window = ctx.curriculum.get_complexity_range()

        def inside(w: tuple[float, float]) -> list[Case]:
            return [c for c in pool if w[0] <= c.overall_complexity <= w[1]]

        candidates = inside(window)
        if len(candidates) < target_count:
            window = ctx.curriculum.expand_range(window)
            candidates = inside(window)
        # Keep widening only when nothing at all fits
        while not candidates and window != (0.0, 1.0):
            window = ctx.curriculum.expand_range(window)
            candidates = inside(window)

        return StrategyOutcome(
            cases=stratified_subset(candidates, target_count),
            rationale=(
                f"Curriculum level {ctx.curriculum.level}: complexity range "
                f"{window[0]:.2f}-{window[1]:.2f}"
            ),
            expected_benefit=0.8,
            complexity_window=window,
        )


class UncertaintyFocusedSelector(CaseSelector):
    strategy_type = SelectionStrategyType.UNCERTAINTY_FOCUSED

    def score(self, case: Case, ctx: SelectionContext) -> float:
        """Estimated uncertainty on a case blended with the competency gap it targets.

        ``uncertainty_weight`` and ``performance_weight`` set the blend.
        """
        if ctx.uncertainty_probe is not None:
            base = min(1.0, max(0.0, ctx.uncertainty_probe(case)))
        else:
            base = case.overall_complexity
        primary = competency_tags(case)[0]
        gap = 1.0 - ctx.competencies.get(primary, 0.5)
        u_weight, p_weight = ctx.params.uncertainty_weight, ctx.params.performance_weight
        if u_weight + p_weight == 0:
            return base
        return min(1.0, (u_weight * base + p_weight * gap) / (u_weight + p_weight))

    def select(self, pool: list[Case], target_count: int, ctx: SelectionContext) -> StrategyOutcome:
        scored = sorted(((c, self.score(c, ctx)) for c in pool), key=lambda x: x[1], reverse=True)
        selected = select_with_diversity(scored, target_count, ctx.params.diversity_weight)
        return StrategyOutcome(
            cases=selected,
            rationale=f"Uncertainty-focused: {len(selected)} highest-uncertainty cases with complaint diversity",
            expected_benefit=0.9,
        )


class DiversityMaximizingSelector(CaseSelector):
    strategy_type = SelectionStrategyType.DIVERSITY_MAXIMIZING

    def select(self, pool: list[Case], target_count: int, ctx: SelectionContext) -> StrategyOutcome:
        selected = maximally_diverse(pool, target_count, ctx.params.novelty_bonus)
        categories = {case_features(c)["complaint_category"] for c in selected}
        return StrategyOutcome(
            cases=selected,
            rationale=f"Diversity-maximizing: {len(categories)} complaint categories across {len(selected)} cases",
            expected_benefit=0.7,
        )


class CompetencyBasedSelector(CaseSelector):
    strategy_type = SelectionStrategyType.COMPETENCY_BASED

    def relevance(self, case: Case, struggling: list[str]) -> float:
        tags = set(competency_tags(case))
        return len(tags & set(struggling)) / max(1, len(struggling))

    def select(self, pool: list[Case], target_count: int, ctx: SelectionContext) -> StrategyOutcome:
        struggling = ctx.struggling()
        if not struggling:
            # Nothing weak: stretch strengths with the hardest cases
            ordered = sorted(pool, key=lambda c: c.overall_complexity, reverse=True)
            return StrategyOutcome(
                cases=ordered[:target_count],
                rationale="Competency-based: no struggling areas, selecting most complex cases",
                expected_benefit=0.85,
            )
        ordered = sorted(pool, key=lambda c: self.relevance(c, struggling), reverse=True)
        return StrategyOutcome(
            cases=ordered[:target_count],
            rationale=f"Competency-based: targeting {', '.join(struggling)}",
            expected_benefit=0.85,
        )


class AdaptiveHybridSelector(CaseSelector):
    """Blends a primary strategy chosen from recent success with a diversity top-up."""

    strategy_type = SelectionStrategyType.ADAPTIVE_HYBRID

    def __init__(self, selectors: dict[SelectionStrategyType, CaseSelector]):
        self._selectors = selectors

    @staticmethod
    def blend(success_rate: float) -> tuple[SelectionStrategyType, float]:
        """Primary strategy and its share of the batch for a success rate."""
        if success_rate < 0.6:
            return SelectionStrategyType.CURRICULUM_PROGRESSIVE, 0.7
        if success_rate > 0.8:
            return SelectionStrategyType.UNCERTAINTY_FOCUSED, 0.6
        return SelectionStrategyType.COMPETENCY_BASED, 0.7

    def select(self, pool: list[Case], target_count: int, ctx: SelectionContext) -> StrategyOutcome:
        primary_type, ratio = self.blend(ctx.success_rate)
        primary_count = int(np.floor(target_count * ratio))
        primary = self._selectors[primary_type].select(pool, primary_count, ctx)

        chosen = {c.id for c in primary.cases}
        rest = [c for c in pool if c.id not in chosen]
        top_up = maximally_diverse(rest, target_count - len(primary.cases), ctx.params.novelty_bonus)

        return StrategyOutcome(
            cases=primary.cases + top_up,
            rationale=(
                f"Adaptive hybrid: {primary_type.value} ({round(ratio * 100)}%) "
                f"+ diversity ({round((1 - ratio) * 100)}%)"
            ),
            expected_benefit=0.85,
            adaptation_made=True,
            complexity_window=primary.complexity_window,
        )


def build_selectors() -> dict[SelectionStrategyType, CaseSelector]:
    """One instance of every strategy, keyed by type."""
    selectors: dict[SelectionStrategyType, CaseSelector] = {
        SelectionStrategyType.CURRICULUM_PROGRESSIVE: CurriculumProgressiveSelector(),
        SelectionStrategyType.UNCERTAINTY_FOCUSED: UncertaintyFocusedSelector(),
        SelectionStrategyType.DIVERSITY_MAXIMIZING: DiversityMaximizingSelector(),
        SelectionStrategyType.COMPETENCY_BASED: CompetencyBasedSelector(),
    }
    selectors[SelectionStrategyType.ADAPTIVE_HYBRID] = AdaptiveHybridSelector(selectors)
    return selectors

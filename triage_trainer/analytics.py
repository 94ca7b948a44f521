"""Episode and session analytics.

Per-episode metrics are computed once when the episode is finalized.
Session-level aggregates use running averages. Trend analysis compares
the first and second halves of the retained history and fits a linear
slope with ``scipy.stats.linregress``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np
from scipy import stats

from triage_trainer.models import EpisodeMetrics, EpisodeResult, StepRecord, UncertaintyAnalysis

logger = logging.getLogger(__name__)

HIGH_UNCERTAINTY = 0.8
HIGH_CONFIDENCE = 0.8
TREND_STABLE_BAND = 0.05  # Relative change treated as "stable"

# Recommendation thresholds
MIN_EXPERT_UTILIZATION = 0.3
MIN_LEARNING_EFFICIENCY = 0.5
MIN_UNCERTAINTY_MANAGEMENT = 0.6


def _half_means(values: Sequence[float]) -> tuple[float, float]:
    if len(values) < 2:
        v = float(values[0]) if values else 0.0
        return v, v
    half = len(values) // 2
    return float(np.mean(values[:half])), float(np.mean(values[half:]))


def analyze_uncertainty(steps: Sequence[StepRecord]) -> UncertaintyAnalysis:
    """Summarize how uncertainty evolved over an episode.

    ``reduction`` is the first-half mean total uncertainty minus the
    second-half mean, so a positive value means the agent grew surer.
    ``resolution_rate`` is the share of high-uncertainty steps that
    triggered a query or consultation (1.0 when there were none).
    """
    if not steps:
        return UncertaintyAnalysis(resolution_rate=1.0)
    totals = [s.uncertainty.total for s in steps]
    first, second = _half_means(totals)
    high = [s for s in steps if s.uncertainty.total > HIGH_UNCERTAINTY]
    acted = [s for s in high if s.query is not None or s.consultation_id is not None]
    return UncertaintyAnalysis(
        average=float(np.mean(totals)),
        reduction=first - second,
        epistemic_average=float(np.mean([s.uncertainty.epistemic for s in steps])),
        aleatoric_average=float(np.mean([s.uncertainty.aleatoric for s in steps])),
        high_uncertainty_moments=len(high),
        resolution_rate=len(acted) / len(high) if high else 1.0,
    )


def compute_episode_metrics(
    steps: Sequence[StepRecord],
    consultations_used: int,
    analysis: UncertaintyAnalysis,
) -> EpisodeMetrics:
    n = len(steps)
    if n == 0:
        return EpisodeMetrics(expert_consultations_used=consultations_used)
    info_gain = float(sum(s.uncertainty.information_gain for s in steps))
    queries = sum(1 for s in steps if s.query is not None)
    confidence_delta = steps[-1].uncertainty.confidence - steps[0].uncertainty.confidence
    return EpisodeMetrics(
        total_active_queries=queries,
        expert_consultations_used=consultations_used,
        information_gain_achieved=info_gain,
        confidence_improvement=sum(1 for s in steps if s.uncertainty.confidence > HIGH_CONFIDENCE),
        learning_efficiency=info_gain / max(1, n),
        exploration_exploitation_ratio=queries / n,
        learning_velocity=(confidence_delta + analysis.reduction) / 2,
        uncertainty_reduction=analysis.reduction,
    )


@dataclass
class GlobalMetrics:
    """Running aggregates across every episode of a session."""

    episodes: int = 0
    successes: int = 0
    failures: int = 0
    total_steps: int = 0
    total_queries: int = 0
    total_consultations: int = 0
    consultations_offered: int = 0
    avg_reward: float = 0.0
    avg_steps: float = 0.0
    avg_learning_efficiency: float = 0.0
    avg_uncertainty: float = 0.0
    avg_resolution_rate: float = 0.0
    termination_counts: dict[str, int] = field(default_factory=dict)

    def update(self, result: EpisodeResult, consultation_budget: int) -> None:
        self.episodes += 1
        n = self.episodes
        if result.success:
            self.successes += 1
        if result.error is not None:
            self.failures += 1
        self.total_steps += result.step_count
        self.total_queries += result.metrics.total_active_queries
        self.total_consultations += result.metrics.expert_consultations_used
        self.consultations_offered += consultation_budget

        def running(old: float, new: float) -> float:
            return old + (new - old) / n

        self.avg_reward = running(self.avg_reward, result.total_reward)
        self.avg_steps = running(self.avg_steps, result.step_count)
        self.avg_learning_efficiency = running(self.avg_learning_efficiency, result.metrics.learning_efficiency)
        self.avg_uncertainty = running(self.avg_uncertainty, result.uncertainty_analysis.average)
        self.avg_resolution_rate = running(self.avg_resolution_rate, result.uncertainty_analysis.resolution_rate)
        reason = result.termination_reason.value
        self.termination_counts[reason] = self.termination_counts.get(reason, 0) + 1

    @property
    def success_rate(self) -> float:
        return self.successes / self.episodes if self.episodes else 0.0

    @property
    def expert_utilization(self) -> float:
        if not self.consultations_offered:
            return 0.0
        return self.total_consultations / self.consultations_offered

    def to_dict(self) -> dict[str, Any]:
        return {
            "episodes": self.episodes,
            "success_rate": self.success_rate,
            "failures": self.failures,
            "total_steps": self.total_steps,
            "total_queries": self.total_queries,
            "total_consultations": self.total_consultations,
            "expert_utilization": self.expert_utilization,
            "avg_reward": self.avg_reward,
            "avg_steps": self.avg_steps,
            "avg_learning_efficiency": self.avg_learning_efficiency,
            "avg_uncertainty": self.avg_uncertainty,
            "uncertainty_management": self.avg_resolution_rate,
            "termination_counts": dict(self.termination_counts),
        }


@dataclass
class Trend:
    first_half: float
    second_half: float
    slope: float
    direction: str


def trend(values: Sequence[float], lower_is_better: bool = False) -> Trend:
    """First-half vs second-half comparison plus a fitted slope."""
    first, second = _half_means(values)
    slope = 0.0
    if len(values) >= 3:
        slope = float(stats.linregress(np.arange(len(values)), np.asarray(values, dtype=float)).slope)
    change = second - first
    band = TREND_STABLE_BAND * max(abs(first), 1.0)
    if abs(change) <= band:
        direction = "stable"
    elif (change < 0) == lower_is_better:
        direction = "improving"
    else:
        direction = "declining"
    return Trend(first_half=first, second_half=second, slope=slope, direction=direction)


def compute_trends(history: Sequence[EpisodeResult]) -> dict[str, Trend]:
    return {
        "reward": trend([r.total_reward for r in history]),
        "learning_efficiency": trend([r.metrics.learning_efficiency for r in history]),
        "uncertainty": trend([r.uncertainty_analysis.average for r in history], lower_is_better=True),
        "queries": trend([float(r.metrics.total_active_queries) for r in history]),
    }


def optimization_recommendations(metrics: GlobalMetrics) -> list[str]:
    recommendations = []
    if metrics.expert_utilization < MIN_EXPERT_UTILIZATION:
        recommendations.append(
            f"Expert utilization is low ({metrics.expert_utilization:.2f}); "
            "consider lowering the consultation threshold"
        )
    if metrics.avg_learning_efficiency < MIN_LEARNING_EFFICIENCY:
        recommendations.append(
            f"Learning efficiency is low ({metrics.avg_learning_efficiency:.2f}); "
            "consider selecting more uncertain cases"
        )
    if metrics.avg_resolution_rate < MIN_UNCERTAINTY_MANAGEMENT:
        recommendations.append(
            f"Uncertainty management is low ({metrics.avg_resolution_rate:.2f}); "
            "consider a larger query budget"
        )
    return recommendations

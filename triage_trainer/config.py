"""Configuration for active-learning training sessions.

Each subsystem owns a small dataclass config with validated defaults.
``TrainingConfig`` aggregates them and can be loaded from a JSON file
for the command line.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class AccelerationMode(str, Enum):
    """How aggressively a session spends its learning budgets."""

    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"
    ADAPTIVE = "adaptive"


# (query budget multiplier, threshold offset, termination floor multiplier)
ACCELERATION_PROFILES: dict[AccelerationMode, tuple[float, float, float]] = {
    AccelerationMode.CONSERVATIVE: (0.5, 0.1, 1.5),
    AccelerationMode.MODERATE: (1.0, 0.0, 1.0),
    AccelerationMode.AGGRESSIVE: (2.0, -0.1, 0.5),
    AccelerationMode.ADAPTIVE: (1.0, 0.0, 1.0),  # Tuned at optimisation checkpoints
}

THRESHOLD_MIN = 0.05
THRESHOLD_MAX = 0.95


def _check_unit(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be in [0, 1], got {value}")


def _clamp_threshold(value: float) -> float:
    return max(THRESHOLD_MIN, min(THRESHOLD_MAX, value))


@dataclass
class QueryConfig:
    """Configuration for active query selection.

    Attributes:
        budget: Queries allowed per episode
        uncertainty_threshold: Total uncertainty above which a query is considered
        information_gain_threshold: Information gain above which a query is considered
        epsilon: Probability of tagging a query as an exploratory epsilon-greedy pick
        thompson_concentration: Pseudo-count used for Beta draws in Thompson sampling
        history_size: Queries retained for analytics
        seed: Seed for the selector's RNG
    """

    budget: int = 10
    uncertainty_threshold: float = 0.7
    information_gain_threshold: float = 0.5
    epsilon: float = 0.1
    thompson_concentration: float = 10.0
    history_size: int = 200
    seed: Optional[int] = None

    def __post_init__(self):
        if self.budget < 0:
            raise ValueError(f"budget must be >= 0, got {self.budget}")
        _check_unit("uncertainty_threshold", self.uncertainty_threshold)
        _check_unit("information_gain_threshold", self.information_gain_threshold)
        _check_unit("epsilon", self.epsilon)
        if self.thompson_concentration <= 0:
            raise ValueError("thompson_concentration must be positive")


@dataclass
class CurriculumConfig:
    """Configuration for the curriculum state machine.

    Attributes:
        max_level: Highest curriculum level (levels run 1..max_level)
        window_size: Episodes in the rolling performance window
        success_threshold: Window success rate required to advance
        consistency_threshold: Window consistency required to advance
        window_width: Width of the complexity window on [0, 1]
        expand_step: Symmetric widening applied when too few cases fit
        allow_regression: Whether a failing window may drop one level
        regression_success_floor: Window success rate below which regression fires
    """

    max_level: int = 5
    window_size: int = 10
    success_threshold: float = 0.8
    consistency_threshold: float = 0.7
    window_width: float = 0.4
    expand_step: float = 0.1
    allow_regression: bool = False
    regression_success_floor: float = 0.3

    def __post_init__(self):
        if self.max_level < 1:
            raise ValueError(f"max_level must be >= 1, got {self.max_level}")
        if self.window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {self.window_size}")
        _check_unit("success_threshold", self.success_threshold)
        _check_unit("consistency_threshold", self.consistency_threshold)
        _check_unit("window_width", self.window_width)
        _check_unit("expand_step", self.expand_step)
        _check_unit("regression_success_floor", self.regression_success_floor)


@dataclass
class SelectionParameters:
    """Weights and cadence for case selection.

    Attributes:
        difficulty_range: Preferred (min, max) complexity when no curriculum applies
        diversity_weight: Weight of the diversity bonus when blending scores
        uncertainty_weight: Weight of estimated uncertainty in scoring
        performance_weight: Weight of the competency gap in uncertainty scoring
        novelty_bonus: Bonus for cases with unseen feature values
        evaluation_interval: Selections between strategy re-evaluations
        min_history: Selections needed before effectiveness is trusted
        effectiveness_window: Recent selections used to judge a strategy
    """

    difficulty_range: tuple[float, float] = (0.3, 0.7)
    diversity_weight: float = 0.3
    uncertainty_weight: float = 0.4
    performance_weight: float = 0.2
    novelty_bonus: float = 0.1
    evaluation_interval: int = 10
    min_history: int = 3
    effectiveness_window: int = 5

    def __post_init__(self):
        self.difficulty_range = tuple(self.difficulty_range)
        low, high = self.difficulty_range
        if not 0.0 <= low <= high <= 1.0:
            raise ValueError(f"difficulty_range must satisfy 0 <= min <= max <= 1, got {self.difficulty_range}")
        for name in ("diversity_weight", "uncertainty_weight", "performance_weight", "novelty_bonus"):
            _check_unit(name, getattr(self, name))
        if self.evaluation_interval < 1:
            raise ValueError("evaluation_interval must be >= 1")


@dataclass
class ConsultationConfig:
    """Configuration for expert consultation.

    Attributes:
        budget: Consultations allowed per episode
        threshold: Total uncertainty above which a consultation is requested
        min_threshold: Lower bound for threshold calibration
        max_threshold: Upper bound for threshold calibration
        lower_step: Threshold decrease after a positive subsequent reward
        raise_step: Threshold increase after a non-positive subsequent reward
        timeout_s: Seconds to await an expert response within a step
        expert_strategy: Roster selection strategy name
        integration_mode: "immediate", "batch" or "adaptive" feedback application
        max_knowledge_gaps: Gap records kept before trimming
    """

    budget: int = 3
    threshold: float = 0.8
    min_threshold: float = 0.75
    max_threshold: float = 0.95
    lower_step: float = 0.01
    raise_step: float = 0.02
    timeout_s: float = 300.0
    expert_strategy: str = "best_match"
    integration_mode: str = "immediate"
    max_knowledge_gaps: int = 50

    def __post_init__(self):
        if self.budget < 0:
            raise ValueError(f"budget must be >= 0, got {self.budget}")
        if not self.min_threshold <= self.threshold <= self.max_threshold:
            raise ValueError(
                f"threshold {self.threshold} outside [{self.min_threshold}, {self.max_threshold}]"
            )
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        if self.integration_mode not in ("immediate", "batch", "adaptive"):
            raise ValueError(f"Unknown integration_mode: {self.integration_mode}")


@dataclass
class OrchestratorConfig:
    """Configuration for the episode loop.

    Attributes:
        max_steps_per_episode: Step cap before ``max_steps_reached``
        success_threshold: Total reward counted as a successful episode
        cases_per_episode: Cases selected for each episode
        termination_window: Trailing steps averaged for early termination
        termination_floor: Mean learning opportunity below which the episode ends
        history_size: Completed episodes retained (oldest evicted first)
        optimization_interval: Episodes between periodic optimisation passes
        acceleration_mode: Budget/threshold profile applied at session start
    """

    max_steps_per_episode: int = 100
    success_threshold: float = 3.0
    cases_per_episode: int = 5
    termination_window: int = 5
    termination_floor: float = 0.2
    history_size: int = 500
    optimization_interval: int = 5
    acceleration_mode: AccelerationMode = AccelerationMode.MODERATE

    def __post_init__(self):
        self.acceleration_mode = AccelerationMode(self.acceleration_mode)
        if self.max_steps_per_episode < 1:
            raise ValueError("max_steps_per_episode must be >= 1")
        if self.cases_per_episode < 1:
            raise ValueError("cases_per_episode must be >= 1")
        if self.termination_window < 1:
            raise ValueError("termination_window must be >= 1")
        _check_unit("termination_floor", self.termination_floor)
        if self.history_size < 1:
            raise ValueError("history_size must be >= 1")


_SECTIONS = {
    "orchestrator": OrchestratorConfig,
    "query": QueryConfig,
    "curriculum": CurriculumConfig,
    "selection": SelectionParameters,
    "consultation": ConsultationConfig,
}


@dataclass
class TrainingConfig:
    """All configuration for one training session."""

    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    curriculum: CurriculumConfig = field(default_factory=CurriculumConfig)
    selection: SelectionParameters = field(default_factory=SelectionParameters)
    consultation: ConsultationConfig = field(default_factory=ConsultationConfig)

    def __post_init__(self):
        # Consultation must be reserved for rarer moments than queries
        if self.consultation.threshold <= self.query.uncertainty_threshold:
            raise ValueError(
                f"consultation threshold ({self.consultation.threshold}) must exceed "
                f"query threshold ({self.query.uncertainty_threshold})"
            )
        if self.consultation.min_threshold < self.query.uncertainty_threshold:
            raise ValueError("consultation min_threshold must not fall below the query threshold")

    def with_acceleration(self) -> "TrainingConfig":
        """Return a copy with the orchestrator's acceleration profile applied."""
        mode = self.orchestrator.acceleration_mode
        budget_mult, offset, floor_mult = ACCELERATION_PROFILES[mode]
        if mode in (AccelerationMode.MODERATE, AccelerationMode.ADAPTIVE):
            return self

        query = replace(
            self.query,
            budget=max(1, round(self.query.budget * budget_mult)),
            uncertainty_threshold=_clamp_threshold(self.query.uncertainty_threshold + offset),
            information_gain_threshold=_clamp_threshold(self.query.information_gain_threshold + offset),
        )
        min_t = _clamp_threshold(self.consultation.min_threshold + offset)
        max_t = _clamp_threshold(self.consultation.max_threshold + offset)
        consultation = replace(
            self.consultation,
            min_threshold=min_t,
            max_threshold=max_t,
            threshold=min(max_t, max(min_t, self.consultation.threshold + offset)),
        )
        orchestrator = replace(
            self.orchestrator,
            termination_floor=min(1.0, self.orchestrator.termination_floor * floor_mult),
        )
        logger.info(
            f"[CONFIG] Applied {mode.value} acceleration: query budget {query.budget}, "
            f"query threshold {query.uncertainty_threshold:.2f}"
        )
        return replace(self, orchestrator=orchestrator, query=query, consultation=consultation)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["orchestrator"]["acceleration_mode"] = self.orchestrator.acceleration_mode.value
        data["selection"]["difficulty_range"] = list(self.selection.difficulty_range)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrainingConfig":
        """Build from a nested dict, ignoring unknown sections and keys."""
        sections = {}
        for name, section_cls in _SECTIONS.items():
            raw = data.get(name) or {}
            known = {f.name for f in fields(section_cls)}
            unknown = set(raw) - known
            if unknown:
                logger.warning(f"[CONFIG] Ignoring unknown {name} keys: {sorted(unknown)}")
            sections[name] = section_cls(**{k: v for k, v in raw.items() if k in known})
        return cls(**sections)


def load_config(path: str | Path) -> TrainingConfig:
    """Load a ``TrainingConfig`` from a JSON file.

    Args:
        path: Path to a JSON document with optional top-level sections
            ``orchestrator``, ``query``, ``curriculum``, ``selection`` and
            ``consultation``

    Returns:
        Validated training configuration
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return TrainingConfig.from_dict(data)

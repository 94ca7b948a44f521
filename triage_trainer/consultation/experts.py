"""Expert roster and feedback assessment.

Picks which expert answers a consultation and scores how useful an
answer was. The scores are fixed heuristics. A deployment with real
reviewers would replace ``assess_feedback_quality`` with ratings from
those reviewers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from triage_trainer.models import ConsultationResponse

logger = logging.getLogger(__name__)

# Match score weights
SPECIALTY_MATCH_WEIGHT = 0.4
EXPERIENCE_CAP = 0.3
EXPERIENCE_YEARS_SCALE = 30.0
QUALITY_WEIGHT = 0.2
CONFIDENCE_WEIGHT = 0.1

# Complaint category -> specialty best placed to answer
CATEGORY_SPECIALTY: dict[str, str] = {
    "cardiac": "cardiology",
    "respiratory": "emergency_medicine",
    "gastrointestinal": "internal_medicine",
    "neurological": "emergency_medicine",
    "trauma": "trauma",
    "other": "emergency_medicine",
}


class ExpertSelectionStrategy(str, Enum):
    BEST_MATCH = "best_match"
    HIGHEST_QUALITY = "highest_quality"
    FASTEST_RESPONSE = "fastest_response"
    LOAD_BALANCED = "load_balanced"


@dataclass
class ExpertProfile:
    """A consultant available to answer questions.

    Attributes:
        id: Stable identifier
        name: Display name
        specialties: Specialty tags, e.g. "cardiology"
        experience_years: Years in practice
        confidence_level: Baseline confidence in their own answers
        quality_score: Historical feedback quality in [0, 1]
        response_time_avg: Average response time in minutes
        active_consultations: Consultations currently assigned
    """

    id: str
    name: str
    specialties: list[str] = field(default_factory=list)
    experience_years: int = 0
    confidence_level: float = 0.8
    quality_score: float = 0.8
    response_time_avg: float = 10.0
    active_consultations: int = 0


def default_experts() -> list[ExpertProfile]:
    return [
        ExpertProfile(
            id="expert_chen",
            name="Dr. Sarah Chen",
            specialties=["emergency_medicine", "trauma"],
            experience_years=15,
            confidence_level=0.9,
            quality_score=0.85,
            response_time_avg=12.0,
        ),
        ExpertProfile(
            id="expert_rodriguez",
            name="Dr. Michael Rodriguez",
            specialties=["cardiology", "internal_medicine"],
            experience_years=22,
            confidence_level=0.88,
            quality_score=0.92,
            response_time_avg=8.0,
        ),
    ]


def match_score(expert: ExpertProfile, specialty: Optional[str]) -> float:
    """How well an expert fits a question needing ``specialty``."""
    score = SPECIALTY_MATCH_WEIGHT if specialty in expert.specialties else 0.0
    score += min(EXPERIENCE_CAP, expert.experience_years / EXPERIENCE_YEARS_SCALE)
    score += expert.quality_score * QUALITY_WEIGHT
    score += expert.confidence_level * CONFIDENCE_WEIGHT
    return score


def select_expert(
    experts: list[ExpertProfile],
    specialty: Optional[str],
    strategy: ExpertSelectionStrategy = ExpertSelectionStrategy.BEST_MATCH,
) -> Optional[ExpertProfile]:
    """Pick an expert from the roster, or None if the roster is empty."""
    if not experts:
        return None
    if strategy == ExpertSelectionStrategy.HIGHEST_QUALITY:
        return max(experts, key=lambda e: e.quality_score)
    if strategy == ExpertSelectionStrategy.FASTEST_RESPONSE:
        return min(experts, key=lambda e: e.response_time_avg)
    if strategy == ExpertSelectionStrategy.LOAD_BALANCED:
        return min(experts, key=lambda e: (e.active_consultations, -match_score(e, specialty)))
    return max(experts, key=lambda e: match_score(e, specialty))


def expert_confidence(expert: ExpertProfile, specialty: Optional[str], complexity: float) -> float:
    """Confidence an expert would have in their answer, in [0.3, 0.95]."""
    confidence = expert.confidence_level
    confidence += 0.1 if specialty in expert.specialties else -0.2
    confidence -= complexity * 0.1
    return max(0.3, min(0.95, confidence))


@dataclass
class FeedbackQuality:
    completeness: float
    specificity: float
    actionability: float
    relevance: float

    @property
    def overall(self) -> float:
        return (self.completeness + self.specificity + self.actionability + self.relevance) / 4


@dataclass
class LearningImpact:
    knowledge_gain: float
    confidence_adjustment: float
    error_correction: float
    skill_development: float

    @property
    def long_term(self) -> float:
        return (
            0.3 * self.knowledge_gain
            + 0.2 * self.confidence_adjustment
            + 0.3 * self.error_correction
            + 0.2 * self.skill_development
        )


def assess_feedback_quality(response: ConsultationResponse) -> FeedbackQuality:
    return FeedbackQuality(
        completeness=0.8 if len(response.explanation) > 50 else 0.4,
        specificity=0.8 if response.confidence > 0.7 else 0.5,
        actionability=0.8 if len(response.feedback_text) > 20 else 0.4,
        relevance=0.8,
    )


def assess_learning_impact(
    quality: FeedbackQuality,
    response: ConsultationResponse,
    reward: float,
    had_alternatives: bool,
) -> LearningImpact:
    return LearningImpact(
        knowledge_gain=quality.overall * 0.8,
        confidence_adjustment=0.6 if response.confidence > 0.8 else 0.3,
        error_correction=0.8 if reward < 0 else 0.2,
        skill_development=0.7 if had_alternatives else 0.4,
    )

"""Expert consultation: roster, feedback scoring and the per-episode coordinator."""

from triage_trainer.consultation.coordinator import (
    ConsultationCoordinator,
    ConsultationOutcome,
    ConsultationPriority,
    KnowledgeGap,
    gap_severity,
    question_type,
)
from triage_trainer.consultation.experts import (
    ExpertProfile,
    ExpertSelectionStrategy,
    FeedbackQuality,
    LearningImpact,
    default_experts,
    expert_confidence,
    match_score,
    select_expert,
)

__all__ = [
    # Coordinator
    "ConsultationCoordinator",
    "ConsultationOutcome",
    "ConsultationPriority",
    "KnowledgeGap",
    "gap_severity",
    "question_type",
    # Experts
    "ExpertProfile",
    "ExpertSelectionStrategy",
    "FeedbackQuality",
    "LearningImpact",
    "default_experts",
    "expert_confidence",
    "match_score",
    "select_expert",
]

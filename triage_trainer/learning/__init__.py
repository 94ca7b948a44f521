"""Active-learning subsystems.

- uncertainty: epistemic/aleatoric estimates and information gain
- query_selector: budgeted active queries
- curriculum: level state machine and complexity windows
"""

from triage_trainer.learning.curriculum import (
    CurriculumManager,
    CurriculumMetrics,
    CurriculumStrategy,
    LearningCurriculum,
    LevelChange,
    consistency_score,
)
from triage_trainer.learning.query_selector import (
    ActiveQuerySelector,
    expected_benefit,
)
from triage_trainer.learning.uncertainty import UncertaintyQuantifier

__all__ = [
    # Curriculum
    "CurriculumManager",
    "CurriculumMetrics",
    "CurriculumStrategy",
    "LearningCurriculum",
    "LevelChange",
    "consistency_score",
    # Queries
    "ActiveQuerySelector",
    "expected_benefit",
    # Uncertainty
    "UncertaintyQuantifier",
]

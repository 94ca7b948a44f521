"""Active-learning episode orchestration for synthetic medical triage.

The orchestrator runs an agent against an environment and decides, step
by step, when uncertainty is high enough to spend a query or an expert
consultation. Between episodes a curriculum and a case selection engine
shape what the agent sees next.

Subpackages:
- learning: uncertainty, active queries, curriculum
- selection: complexity profiling and case selection strategies
- consultation: expert roster and consultation coordinator
- simulation: reference generator, environment, agents and expert channel
"""

from triage_trainer.config import (
    AccelerationMode,
    ConsultationConfig,
    CurriculumConfig,
    OrchestratorConfig,
    QueryConfig,
    SelectionParameters,
    TrainingConfig,
    load_config,
)
from triage_trainer.errors import (
    BudgetExhausted,
    ConsultationTimeout,
    EpisodeFailure,
    InvalidTransition,
    NoActionsAvailable,
    TriageTrainerError,
)
from triage_trainer.events import EventBus, EventType, LearningEvent
from triage_trainer.models import (
    Action,
    ActionType,
    Case,
    EpisodeResult,
    Experience,
    State,
    StepResult,
    TerminationReason,
    UncertaintyMetrics,
)
from triage_trainer.orchestrator import ActiveLearningOrchestrator, AdaptationType

__version__ = "0.1.0"

__all__ = [
    # Orchestration
    "ActiveLearningOrchestrator",
    "AdaptationType",
    # Config
    "AccelerationMode",
    "ConsultationConfig",
    "CurriculumConfig",
    "OrchestratorConfig",
    "QueryConfig",
    "SelectionParameters",
    "TrainingConfig",
    "load_config",
    # Errors
    "BudgetExhausted",
    "ConsultationTimeout",
    "EpisodeFailure",
    "InvalidTransition",
    "NoActionsAvailable",
    "TriageTrainerError",
    # Events
    "EventBus",
    "EventType",
    "LearningEvent",
    # Models
    "Action",
    "ActionType",
    "Case",
    "EpisodeResult",
    "Experience",
    "State",
    "StepResult",
    "TerminationReason",
    "UncertaintyMetrics",
]

"""Data model for active-learning triage training.

Value objects exchanged between the environment, the agent and the
learning subsystems. Records that leave a session (episode results,
queries, consultations) are pydantic models so they can be exported
with ``model_dump`` and re-imported with ``model_validate``.
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, computed_field


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Environment primitives
# =============================================================================


class ActionType(str, Enum):
    """Actions an agent can take on the patient at the head of the queue."""

    TRIAGE_ASSIGN = "triage_assign"
    ORDER_TEST = "order_test"
    WAIT = "wait"


class Action(BaseModel):
    """A single agent action."""

    id: str = Field(default_factory=_new_id)
    type: ActionType
    parameters: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        """Stable identity of the action ignoring its random id."""
        if self.type == ActionType.TRIAGE_ASSIGN:
            return f"{self.type.value}:{self.parameters.get('level')}"
        return self.type.value

    @classmethod
    def wait(cls) -> "Action":
        return cls(type=ActionType.WAIT, parameters={"reason": "no_actions_available"})


class State(BaseModel):
    """An environment observation."""

    id: str = Field(default_factory=_new_id)
    timestamp: datetime = Field(default_factory=_utcnow)
    type: str = "patient_assessment"
    data: dict[str, Any] = Field(default_factory=dict)
    is_terminal: bool = False


class Reward(BaseModel):
    value: float
    components: dict[str, float] = Field(default_factory=dict)
    reasoning: str = ""


class StepResult(BaseModel):
    """Outcome of applying an action to the environment."""

    state: State
    reward: Reward
    done: bool = False
    info: dict[str, Any] = Field(default_factory=dict)


class Experience(BaseModel):
    """Transition handed to ``Agent.update``.

    ``weight`` is raised above 1.0 when an active query flagged the step,
    so learning agents can scale their update.
    """

    state: State
    action: Action
    reward: Reward
    next_state: State
    done: bool
    weight: float = 1.0
    info: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Cases
# =============================================================================


class Acuity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Correct triage level per acuity (1 = most urgent)
ACUITY_TRIAGE_LEVEL: dict[Acuity, int] = {
    Acuity.CRITICAL: 1,
    Acuity.HIGH: 2,
    Acuity.MEDIUM: 3,
    Acuity.LOW: 4,
}


class PatientData(BaseModel):
    """Synthetic presentation of one patient."""

    model_config = {"frozen": True}

    age: int = Field(ge=0, le=120)
    acuity: Acuity
    chief_complaint: str
    pain_level: int = Field(default=0, ge=0, le=10)
    comorbidities: tuple[str, ...] = ()
    vitals: dict[str, float] = Field(default_factory=dict)

    @property
    def triage_level(self) -> int:
        return ACUITY_TRIAGE_LEVEL[self.acuity]


class ComplexityFactor(BaseModel):
    """One named contribution to a complexity sub-score."""

    model_config = {"frozen": True}

    factor: str
    contribution: float
    description: str = ""


class ComplexityProfile(BaseModel):
    """Multi-factor difficulty of a case, each score in [0, 1]."""

    model_config = {"frozen": True}

    medical: float = Field(default=0.0, ge=0.0, le=1.0)
    diagnostic: float = Field(default=0.0, ge=0.0, le=1.0)
    resource: float = Field(default=0.0, ge=0.0, le=1.0)
    time_urgency: float = Field(default=0.0, ge=0.0, le=1.0)
    overall: float = Field(ge=0.0, le=1.0)
    factors: tuple[ComplexityFactor, ...] = ()


class Case(BaseModel):
    """A unit of training material. Immutable once generated."""

    model_config = {"frozen": True}

    id: str = Field(default_factory=_new_id)
    patient: PatientData
    complexity: Optional[ComplexityProfile] = None

    @property
    def overall_complexity(self) -> float:
        return self.complexity.overall if self.complexity is not None else 0.0

    def with_profile(self, profile: ComplexityProfile) -> "Case":
        return self.model_copy(update={"complexity": profile})

    def to_state(self, queue_length: int = 0, time_of_day: int = 12, system_load: float = 0.0) -> State:
        """Observation of this case at the head of a queue."""
        p = self.patient
        return State(
            data={
                "case_id": self.id,
                "age": p.age,
                "acuity": p.acuity.value,
                "chief_complaint": p.chief_complaint,
                "pain_level": p.pain_level,
                "comorbidity_count": len(p.comorbidities),
                "vitals": dict(p.vitals),
                "queue_length": queue_length,
                "time_of_day": time_of_day,
                "system_load": system_load,
            }
        )


def standard_triage_actions(include_wait: bool = True) -> list[Action]:
    """The action set offered for a patient awaiting triage."""
    actions = [Action(type=ActionType.TRIAGE_ASSIGN, parameters={"level": level}) for level in range(1, 6)]
    actions.append(Action(type=ActionType.ORDER_TEST))
    if include_wait:
        actions.append(Action(type=ActionType.WAIT))
    return actions


# =============================================================================
# Uncertainty and queries
# =============================================================================


class UncertaintyMetrics(BaseModel):
    """Uncertainty estimate for one (state, action) pair."""

    model_config = {"frozen": True}

    epistemic: float = Field(ge=0.0)
    aleatoric: float = Field(ge=0.0)
    confidence: float = Field(ge=0.0, le=1.0)
    information_gain: float = Field(ge=0.0, le=1.0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> float:
        return math.sqrt(self.epistemic**2 + self.aleatoric**2)

    @property
    def learning_opportunity(self) -> float:
        """Blend of information gain and uncertainty, in [0, 1]."""
        return 0.7 * self.information_gain + 0.3 * min(self.total, 1.0)

    @classmethod
    def sentinel(cls) -> "UncertaintyMetrics":
        """Maximal uncertainty used when no actions are available."""
        return cls(epistemic=1.0, aleatoric=0.5, confidence=0.0, information_gain=1.0)


class DomainComplexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    EXPERT = "expert"


class QueryContext(BaseModel):
    """Environmental context attached to queries and consultations."""

    queue_length: int = 0
    system_load: float = 0.0
    time_of_day: int = 12
    recent_performance: float = 0.5
    domain_complexity: DomainComplexity = DomainComplexity.SIMPLE

    @classmethod
    def from_state(cls, state: State, recent_performance: float = 0.5) -> "QueryContext":
        queue_length = int(state.data.get("queue_length", 0))
        if queue_length < 3:
            domain = DomainComplexity.SIMPLE
        elif queue_length < 8:
            domain = DomainComplexity.MODERATE
        elif queue_length < 15:
            domain = DomainComplexity.COMPLEX
        else:
            domain = DomainComplexity.EXPERT
        return cls(
            queue_length=queue_length,
            system_load=float(state.data.get("system_load", 0.0)),
            time_of_day=int(state.data.get("time_of_day", 12)),
            recent_performance=recent_performance,
            domain_complexity=domain,
        )


class QueryType(str, Enum):
    UNCERTAINTY_SAMPLING = "uncertainty_sampling"
    INFORMATION_GAIN = "information_gain"
    EPSILON_GREEDY = "epsilon_greedy"
    THOMPSON_SAMPLING = "thompson_sampling"
    QUERY_BY_COMMITTEE = "query_by_committee"


class ActiveQuery(BaseModel):
    """A budget-consuming request for extra information at an uncertain step."""

    id: str = Field(default_factory=_new_id)
    type: QueryType
    state_id: str
    uncertainty: UncertaintyMetrics
    expected_benefit: float = Field(ge=0.0, le=1.0)
    priority: float = 0.0
    timestamp: datetime = Field(default_factory=_utcnow)


# =============================================================================
# Consultations
# =============================================================================


class ConsultationRequest(BaseModel):
    id: str = Field(default_factory=_new_id)
    state_id: str
    question: str
    question_type: str
    context: dict[str, Any] = Field(default_factory=dict)
    action: Optional[Action] = None
    uncertainty: UncertaintyMetrics
    priority: int = Field(default=3, ge=1, le=5)
    urgency: float = Field(default=0.5, ge=0.0, le=1.0)
    expert_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class ConsultationResponse(BaseModel):
    request_id: str
    recommendation: Optional[Action] = None
    confidence: float = Field(ge=0.0, le=1.0)
    feedback_text: str = ""
    explanation: str = ""
    expert_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


# =============================================================================
# Episodes
# =============================================================================


class TerminationReason(str, Enum):
    MAX_STEPS_REACHED = "max_steps_reached"
    ENVIRONMENT_TERMINAL = "environment_terminal"
    CUSTOM_TERMINATION = "custom_termination"
    ACTIVE_LEARNING_TERMINATION = "active_learning_termination"
    ERROR = "error"
    STOPPED = "stopped"


class StepRecord(BaseModel):
    """One step of an episode, in execution order."""

    step_number: int = Field(ge=0)
    state_id: str
    action: Action
    reward: float
    uncertainty: UncertaintyMetrics
    learning_opportunity: float
    query: Optional[ActiveQuery] = None
    consultation_id: Optional[str] = None
    fallback: bool = False
    done: bool = False
    timestamp: datetime = Field(default_factory=_utcnow)


class UncertaintyAnalysis(BaseModel):
    average: float = 0.0
    reduction: float = 0.0
    epistemic_average: float = 0.0
    aleatoric_average: float = 0.0
    high_uncertainty_moments: int = 0
    resolution_rate: float = 0.0


class EpisodeMetrics(BaseModel):
    total_active_queries: int = 0
    expert_consultations_used: int = 0
    information_gain_achieved: float = 0.0
    confidence_improvement: int = 0
    learning_efficiency: float = 0.0
    exploration_exploitation_ratio: float = 0.0
    learning_velocity: float = 0.0
    uncertainty_reduction: float = 0.0


class EpisodeResult(BaseModel):
    """Immutable record of one finished episode."""

    model_config = {"frozen": True}

    episode_id: str = Field(default_factory=_new_id)
    episode_number: int = Field(ge=1)
    agent_id: str = ""
    steps: tuple[StepRecord, ...] = ()
    total_reward: float = 0.0
    termination_reason: TerminationReason
    success: bool = False
    metrics: EpisodeMetrics = Field(default_factory=EpisodeMetrics)
    uncertainty_analysis: UncertaintyAnalysis = Field(default_factory=UncertaintyAnalysis)
    curriculum_snapshot: dict[str, Any] = Field(default_factory=dict)
    case_ids: tuple[str, ...] = ()
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=_utcnow)
    ended_at: datetime = Field(default_factory=_utcnow)

    @property
    def step_count(self) -> int:
        return len(self.steps)

    @property
    def duration_s(self) -> float:
        return (self.ended_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EpisodeResult":
        return cls.model_validate(data)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, payload: str) -> "EpisodeResult":
        return cls.model_validate_json(payload)

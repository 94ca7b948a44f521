"""Expert consultation coordination.

A consultation is the most expensive thing a step can do, so each episode
gets a small budget. The per-episode lifecycle is:

1. ``start_episode`` refills the budget and forgets any pending requests.
2. ``submit`` consumes one unit and sends a request to the channel.
   ``BudgetExhausted`` is raised when nothing is left.
3. ``resolve`` completes a request exactly once. It calibrates the
   consultation threshold from the reward that followed and marks
   knowledge gaps the feedback covered as addressed.
4. ``end_episode`` discards requests that never got an answer.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Optional

from triage_trainer.budget import Budget
from triage_trainer.config import ConsultationConfig
from triage_trainer.errors import BudgetExhausted, ConsultationTimeout
from triage_trainer.interfaces import ConsultationChannel
from triage_trainer.models import (
    Action,
    ConsultationRequest,
    ConsultationResponse,
    DomainComplexity,
    QueryContext,
    State,
    UncertaintyMetrics,
    _new_id,
)
from triage_trainer.consultation.experts import (
    CATEGORY_SPECIALTY,
    ExpertProfile,
    ExpertSelectionStrategy,
    FeedbackQuality,
    LearningImpact,
    assess_feedback_quality,
    assess_learning_impact,
    default_experts,
    select_expert,
)
from triage_trainer.selection.complexity import categorize_complaint

logger = logging.getLogger(__name__)

HIGH_COMPONENT_UNCERTAINTY = 0.7
LOAD_URGENCY_WEIGHT = 0.3
QUALITY_EMA = 0.8  # Weight kept on the running feedback-quality average
VELOCITY_EMA = 0.9  # Weight kept on the running learning-velocity average
ADAPTIVE_IMMEDIATE_QUALITY = 0.7


class ConsultationPriority(IntEnum):
    ROUTINE = 1
    LOW = 2
    MODERATE = 3
    HIGH = 4
    CRITICAL = 5


@dataclass
class KnowledgeGap:
    """A recurring area where the agent needed help."""

    type: str
    chief_complaint: str
    severity: str
    id: str = field(default_factory=_new_id)
    frequency: int = 1
    first_seen: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_seen: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    addressed: bool = False


@dataclass
class ConsultationOutcome:
    """What resolving one consultation changed."""

    request_id: str
    threshold_before: float
    threshold_after: float
    quality: FeedbackQuality
    impact: LearningImpact
    gaps_addressed: list[str] = field(default_factory=list)
    deferred: bool = False


def gap_severity(confidence: float) -> str:
    if confidence < 0.3:
        return "critical"
    if confidence < 0.5:
        return "high"
    if confidence < 0.7:
        return "medium"
    return "low"


def question_type(uncertainty: UncertaintyMetrics, context: QueryContext) -> str:
    if uncertainty.epistemic > HIGH_COMPONENT_UNCERTAINTY:
        return "model_uncertainty"
    if uncertainty.aleatoric > HIGH_COMPONENT_UNCERTAINTY:
        return "environmental_uncertainty"
    if context.domain_complexity == DomainComplexity.EXPERT:
        return "expert_knowledge"
    return "general_guidance"


def consultation_priority(uncertainty: UncertaintyMetrics, state: State) -> ConsultationPriority:
    acuity = state.data.get("acuity")
    if acuity == "critical" or uncertainty.total > 1.0:
        return ConsultationPriority.CRITICAL
    if acuity == "high" or uncertainty.total > 0.9:
        return ConsultationPriority.HIGH
    if uncertainty.total > 0.8:
        return ConsultationPriority.MODERATE
    if uncertainty.total > 0.6:
        return ConsultationPriority.LOW
    return ConsultationPriority.ROUTINE


class ConsultationCoordinator:
    """Owns the consultation budget, threshold and knowledge gaps of a session.

    Args:
        channel: Transport used to reach experts
        config: Budget, threshold and calibration settings
        experts: Roster to assign requests to (defaults to the built-in pair)
    """

    def __init__(
        self,
        channel: ConsultationChannel,
        config: Optional[ConsultationConfig] = None,
        experts: Optional[list[ExpertProfile]] = None,
    ):
        self.config = replace(config) if config is not None else ConsultationConfig()
        self.channel = channel
        self.experts = experts if experts is not None else default_experts()
        self.budget = Budget("consultation", self.config.budget)
        self._threshold = self.config.threshold
        self._strategy = ExpertSelectionStrategy(self.config.expert_strategy)
        self._pending: dict[str, ConsultationRequest] = {}
        self._resolved_ids: set[str] = set()
        self._deferred_rewards: list[float] = []
        self._gaps: dict[str, KnowledgeGap] = {}

        self._total_requested = 0
        self._total_resolved = 0
        self._total_timeouts = 0
        self._total_discarded = 0
        self._avg_quality = 0.0
        self._learning_velocity = 0.0

    @property
    def threshold(self) -> float:
        """Total uncertainty above which a step is worth a consultation."""
        return self._threshold

    @property
    def pending(self) -> list[ConsultationRequest]:
        return list(self._pending.values())

    @property
    def knowledge_gaps(self) -> list[KnowledgeGap]:
        return sorted(self._gaps.values(), key=lambda g: g.frequency, reverse=True)

    # -------------------------------------------------------------------------
    # Episode lifecycle
    # -------------------------------------------------------------------------

    def start_episode(self) -> None:
        self.budget.reset()
        self._discard_pending()
        self._deferred_rewards.clear()

    def end_episode(self) -> int:
        """Discard unanswered requests and apply batched calibration.

        Returns:
            Number of requests discarded
        """
        discarded = self._discard_pending()

        for reward in self._deferred_rewards:
            self._nudge_threshold(reward)
        self._deferred_rewards.clear()
        return discarded

    def _discard_pending(self) -> int:
        discarded = len(self._pending)
        for request in self._pending.values():
            logger.warning(f"[CONSULT] Discarding unanswered request {request.id} at episode end")
            self._release_expert(request)
        self._total_discarded += discarded
        self._pending.clear()
        return discarded

    def _release_expert(self, request: ConsultationRequest) -> None:
        for expert in self.experts:
            if expert.id == request.expert_id and expert.active_consultations > 0:
                expert.active_consultations -= 1

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def should_consult(self, uncertainty: UncertaintyMetrics) -> bool:
        return uncertainty.total > self._threshold and not self.budget.exhausted

    def build_request(
        self,
        state: State,
        action: Optional[Action],
        uncertainty: UncertaintyMetrics,
        context: QueryContext,
    ) -> ConsultationRequest:
        """Compose a request without touching the budget."""
        complaint = str(state.data.get("chief_complaint", ""))
        specialty = CATEGORY_SPECIALTY.get(categorize_complaint(complaint), "emergency_medicine")
        expert = select_expert(self.experts, specialty, self._strategy)
        q_type = question_type(uncertainty, context)
        return ConsultationRequest(
            state_id=state.id,
            question=self._question_text(q_type, state, action),
            question_type=q_type,
            context={
                **context.model_dump(mode="json"),
                "chief_complaint": complaint,
                "acuity": state.data.get("acuity"),
                "specialty": specialty,
                "complexity": state.data.get("complexity", 0.0),
            },
            action=action,
            uncertainty=uncertainty,
            priority=int(consultation_priority(uncertainty, state)),
            urgency=min(1.0, uncertainty.total + context.system_load * LOAD_URGENCY_WEIGHT),
            expert_id=expert.id if expert else None,
        )

    def _question_text(self, q_type: str, state: State, action: Optional[Action]) -> str:
        complaint = state.data.get("chief_complaint", "this patient")
        proposed = action.key if action is not None else "no action"
        if q_type == "model_uncertainty":
            return (
                f"I'm uncertain about my clinical assessment of {complaint}. "
                f"My options score very differently. Is {proposed} appropriate?"
            )
        open_gaps = [g.type for g in self.knowledge_gaps if not g.addressed][:3]
        if open_gaps:
            return (
                f"I've identified potential knowledge gaps in: {', '.join(open_gaps)}. "
                f"How should I approach {complaint}?"
            )
        return f"Could you validate my triage decision ({proposed}) for {complaint}?"

    async def submit(
        self,
        state: State,
        action: Optional[Action],
        uncertainty: UncertaintyMetrics,
        context: Optional[QueryContext] = None,
    ) -> ConsultationRequest:
        """Consume one unit of budget and send a request to the channel.

        Raises:
            BudgetExhausted: If the episode's consultations are used up
        """
        self.budget.consume()
        context = context or QueryContext.from_state(state)
        request = self.build_request(state, action, uncertainty, context)
        self._pending[request.id] = request
        self._total_requested += 1
        self._record_gap(state, uncertainty)
        for expert in self.experts:
            if expert.id == request.expert_id:
                expert.active_consultations += 1

        await self.channel.submit(request)
        logger.info(
            f"[CONSULT] Requested {request.question_type} (priority {request.priority}, "
            f"{self.budget.remaining} left this episode)"
        )
        return request

    async def try_submit(
        self,
        state: State,
        action: Optional[Action],
        uncertainty: UncertaintyMetrics,
        context: Optional[QueryContext] = None,
    ) -> Optional[ConsultationRequest]:
        """``submit`` that returns None instead of raising on an empty budget."""
        try:
            return await self.submit(state, action, uncertainty, context)
        except BudgetExhausted:
            logger.debug("[CONSULT] Budget exhausted, skipping consultation")
            return None

    async def await_response(self, request: ConsultationRequest) -> Optional[ConsultationResponse]:
        """Wait up to the configured timeout for the channel's answer.

        A timed-out request stays pending and is discarded at episode end.
        """
        try:
            return await asyncio.wait_for(self.channel.await_response(request), self.config.timeout_s)
        except asyncio.TimeoutError:
            self._total_timeouts += 1
            logger.warning(f"[CONSULT] {ConsultationTimeout(request.id, self.config.timeout_s)}")
            return None

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def resolve(
        self,
        response: ConsultationResponse,
        reward: float,
        had_alternatives: bool = True,
    ) -> Optional[ConsultationOutcome]:
        """Complete a pending request with its response.

        Args:
            response: The expert's answer
            reward: Reward of the step that followed the consultation
            had_alternatives: Whether the agent had more than one option

        Returns:
            What the resolution changed, or None if the request is not
            pending (already resolved, discarded or unknown)
        """
        request = self._pending.pop(response.request_id, None)
        if request is None:
            state = "already resolved" if response.request_id in self._resolved_ids else "not pending"
            logger.warning(f"[CONSULT] Ignoring response for {response.request_id}: {state}")
            return None
        self._resolved_ids.add(request.id)
        self._total_resolved += 1
        self._release_expert(request)

        quality = assess_feedback_quality(response)
        impact = assess_learning_impact(quality, response, reward, had_alternatives)
        self._avg_quality = QUALITY_EMA * self._avg_quality + (1 - QUALITY_EMA) * quality.overall
        self._learning_velocity = VELOCITY_EMA * self._learning_velocity + (1 - VELOCITY_EMA) * impact.long_term

        before = self._threshold
        deferred = self._defer(quality)
        if deferred:
            self._deferred_rewards.append(reward)
        else:
            self._nudge_threshold(reward)

        addressed = self._address_gaps(response)
        return ConsultationOutcome(
            request_id=request.id,
            threshold_before=before,
            threshold_after=self._threshold,
            quality=quality,
            impact=impact,
            gaps_addressed=addressed,
            deferred=deferred,
        )

    def _defer(self, quality: FeedbackQuality) -> bool:
        mode = self.config.integration_mode
        if mode == "batch":
            return True
        if mode == "adaptive":
            return quality.overall < ADAPTIVE_IMMEDIATE_QUALITY
        return False

    def _nudge_threshold(self, reward: float) -> None:
        if reward > 0:
            new = max(self.config.min_threshold, self._threshold - self.config.lower_step)
        else:
            new = min(self.config.max_threshold, self._threshold + self.config.raise_step)
        if new != self._threshold:
            logger.debug(f"[CONSULT] Threshold {self._threshold:.3f} -> {new:.3f} (reward {reward:.2f})")
        self._threshold = new

    # -------------------------------------------------------------------------
    # Knowledge gaps
    # -------------------------------------------------------------------------

    def _record_gap(self, state: State, uncertainty: UncertaintyMetrics) -> KnowledgeGap:
        complaint = str(state.data.get("chief_complaint", "unknown"))
        gap_type = categorize_complaint(complaint)
        now = datetime.now(timezone.utc)
        gap = self._gaps.get(gap_type)
        if gap is None:
            gap = KnowledgeGap(
                type=gap_type,
                chief_complaint=complaint,
                severity=gap_severity(uncertainty.confidence),
            )
            self._gaps[gap_type] = gap
        else:
            gap.frequency += 1
            gap.last_seen = now
            gap.addressed = False
            gap.severity = gap_severity(uncertainty.confidence)

        if len(self._gaps) > self.config.max_knowledge_gaps:
            keep = self.knowledge_gaps[: self.config.max_knowledge_gaps // 2]
            self._gaps = {g.type: g for g in keep}
        return gap

    def _address_gaps(self, response: ConsultationResponse) -> list[str]:
        text = response.feedback_text.lower()
        addressed = []
        for gap in self._gaps.values():
            if not gap.addressed and gap.type.lower() in text:
                gap.addressed = True
                gap.last_seen = response.timestamp
                addressed.append(gap.type)
        return addressed

    def set_threshold(self, value: float) -> float:
        """Set the threshold within its calibration bounds."""
        self._threshold = max(self.config.min_threshold, min(self.config.max_threshold, value))
        return self._threshold

    def get_consultation_stats(self) -> dict[str, Any]:
        return {
            "threshold": self._threshold,
            "budget_remaining": self.budget.remaining,
            "total_requested": self._total_requested,
            "total_resolved": self._total_resolved,
            "total_timeouts": self._total_timeouts,
            "total_discarded": self._total_discarded,
            "pending": len(self._pending),
            "avg_feedback_quality": self._avg_quality,
            "learning_velocity": self._learning_velocity,
            "knowledge_gaps": len(self._gaps),
            "open_knowledge_gaps": sum(1 for g in self._gaps.values() if not g.addressed),
        }

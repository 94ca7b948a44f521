"""Simulated expert consultation channel.

Stands in for a human reviewer. Answers are templated and the expert's
confidence is drawn from a seeded generator. A configurable share of
requests is never answered, which lets callers exercise the timeout path.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import numpy as np

from triage_trainer.consultation.experts import ExpertProfile, default_experts, expert_confidence
from triage_trainer.models import (
    ACUITY_TRIAGE_LEVEL,
    Action,
    ActionType,
    Acuity,
    ConsultationRequest,
    ConsultationResponse,
)
from triage_trainer.selection.complexity import categorize_complaint

logger = logging.getLogger(__name__)


class SimulatedConsultationChannel:
    """In-process expert that answers from the presented acuity.

    Args:
        seed: Seed for confidences and dropped requests
        latency_s: Simulated response delay
        drop_rate: Probability a request is never answered
        experts: Roster used to personalise confidence
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        latency_s: float = 0.0,
        drop_rate: float = 0.0,
        experts: Optional[list[ExpertProfile]] = None,
    ):
        if not 0.0 <= drop_rate <= 1.0:
            raise ValueError(f"drop_rate must be in [0, 1], got {drop_rate}")
        self._rng = np.random.default_rng(seed)
        self.latency_s = latency_s
        self.drop_rate = drop_rate
        self._experts = {e.id: e for e in (experts if experts is not None else default_experts())}
        self._submitted: dict[str, ConsultationRequest] = {}
        self._dropped: set[str] = set()

    @property
    def submitted_count(self) -> int:
        return len(self._submitted)

    async def submit(self, request: ConsultationRequest) -> None:
        self._submitted[request.id] = request
        if self._rng.random() < self.drop_rate:
            self._dropped.add(request.id)
        logger.debug(f"[CHANNEL] Received {request.question_type} request {request.id}")

    async def await_response(self, request: ConsultationRequest) -> Optional[ConsultationResponse]:
        if request.id not in self._submitted:
            return None
        if request.id in self._dropped:
            # Never answered: the caller's timeout ends the wait
            await asyncio.Event().wait()
        if self.latency_s > 0:
            await asyncio.sleep(self.latency_s)
        return self._answer(request)

    def _answer(self, request: ConsultationRequest) -> ConsultationResponse:
        acuity = request.context.get("acuity")
        complaint = str(request.context.get("chief_complaint", ""))
        category = categorize_complaint(complaint)

        recommendation = None
        if acuity is not None:
            level = ACUITY_TRIAGE_LEVEL[Acuity(acuity)]
            recommendation = Action(type=ActionType.TRIAGE_ASSIGN, parameters={"level": level})

        expert = self._experts.get(request.expert_id or "")
        if expert is not None:
            base = expert_confidence(expert, request.context.get("specialty"), float(request.context.get("complexity", 0.0)))
            confidence = float(np.clip(base + self._rng.uniform(-0.05, 0.05), 0.0, 1.0))
        else:
            confidence = float(self._rng.uniform(0.7, 1.0))

        level_text = f"level {recommendation.parameters['level']}" if recommendation else "a reassessment"
        explanation = (
            f"For {complaint or 'this presentation'} with {acuity or 'unknown'} acuity, "
            f"I would assign {level_text}. Weigh vital signs and time-critical causes before queue position."
        )
        feedback = (
            f"Review {category} presentations: check red-flag findings first and "
            f"treat borderline cases as the more urgent level."
        )
        return ConsultationResponse(
            request_id=request.id,
            recommendation=recommendation,
            confidence=confidence,
            explanation=explanation,
            feedback_text=feedback,
            expert_id=request.expert_id,
        )

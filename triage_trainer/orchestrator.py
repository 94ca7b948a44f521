"""Active-learning episode orchestration.

Drives the agent/environment loop and, at every step, decides whether the
moment is worth an active query or an expert consultation. Between
episodes it feeds results back into the curriculum and the case selection
engine.

Each orchestrator instance is one training session. All budgets, the
curriculum level and the selection strategy belong to that instance, so
several sessions can run side by side in one event loop.

Per-step flow:
    uncertainty -> (query?) -> (consultation?) -> agent action
    -> environment step -> agent update -> subsystem bookkeeping
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Sequence

import numpy as np

from triage_trainer.analytics import (
    GlobalMetrics,
    analyze_uncertainty,
    compute_episode_metrics,
    compute_trends,
    optimization_recommendations,
)
from triage_trainer.config import AccelerationMode, TrainingConfig
from triage_trainer.consultation.coordinator import ConsultationCoordinator
from triage_trainer.control import SessionControl
from triage_trainer.errors import EpisodeFailure, NoActionsAvailable
from triage_trainer.events import EventBus, EventType
from triage_trainer.interfaces import (
    Agent,
    CaseGenerator,
    CaseLoadingEnvironment,
    ConsultationChannel,
    Environment,
)
from triage_trainer.learning.curriculum import CurriculumManager
from triage_trainer.learning.query_selector import ActiveQuerySelector
from triage_trainer.learning.uncertainty import UncertaintyQuantifier
from triage_trainer.models import (
    Action,
    ActionType,
    Case,
    EpisodeResult,
    Experience,
    QueryContext,
    State,
    StepRecord,
    TerminationReason,
    _new_id,
    standard_triage_actions,
)
from triage_trainer.selection.complexity import competency_tags
from triage_trainer.selection.engine import (
    CaseSelectionEngine,
    PerformanceRecord,
    candidate_pool_size,
)
from triage_trainer.simulation.channel import SimulatedConsultationChannel

logger = logging.getLogger(__name__)

# Competency credit per level of triage error
COMPETENCY_ERROR_PENALTY = 0.35
# Adaptive-mode tuning at optimisation checkpoints
ADAPTIVE_QUERY_THRESHOLD_STEP = 0.05
ADAPTIVE_QUERY_THRESHOLD_FLOOR = 0.3
ADAPTIVE_CONSULT_THRESHOLD_STEP = 0.02


class AdaptationType(str, Enum):
    CURRICULUM_ADVANCEMENT = "curriculum_advancement"
    STRATEGY_CHANGE = "strategy_change"
    THRESHOLD_ADJUSTMENT = "threshold_adjustment"
    EXPERT_CONSULTATION = "expert_consultation"
    PATIENT_SELECTION_ADAPTATION = "patient_selection_adaptation"


@dataclass
class AdaptationRecord:
    type: AdaptationType
    episode_number: int
    description: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class _EpisodeState:
    """Scratch state for the episode in progress."""

    number: int
    started_at: datetime
    steps: list[StepRecord] = field(default_factory=list)
    total_reward: float = 0.0
    consultations: int = 0
    case_ids: list[str] = field(default_factory=list)
    competency_scores: dict[str, list[float]] = field(default_factory=dict)


class ActiveLearningOrchestrator:
    """Runs active-learning training episodes for one agent.

    Args:
        agent: Policy under training
        environment: Environment stepped by the loop
        config: Session configuration (acceleration profile is applied here)
        case_generator: Source of candidate cases. When given and the
            environment can load cases, each episode's cases are chosen
            by the selection engine.
        channel: Expert transport (defaults to the simulated expert)
        quantifier: Uncertainty estimator
        event_bus: Outbound event channel
        committee: Extra agents for query-by-committee
        session_id: Identifier stamped on emitted events
    """

    def __init__(
        self,
        agent: Agent,
        environment: Environment,
        config: Optional[TrainingConfig] = None,
        case_generator: Optional[CaseGenerator] = None,
        channel: Optional[ConsultationChannel] = None,
        quantifier: Optional[UncertaintyQuantifier] = None,
        event_bus: Optional[EventBus] = None,
        committee: Optional[Sequence[Agent]] = None,
        session_id: Optional[str] = None,
    ):
        self.config = (config or TrainingConfig()).with_acceleration()
        self.session_id = session_id or _new_id()
        self.agent = agent
        self.environment = environment
        self.case_generator = case_generator
        self.committee = list(committee or [])
        self.quantifier = quantifier or UncertaintyQuantifier()
        self.events = event_bus or EventBus(self.session_id)
        self.control = SessionControl()
        self._channel = channel or SimulatedConsultationChannel()
        self._build_subsystems()

    def _build_subsystems(self) -> None:
        self.query_selector = ActiveQuerySelector(self.config.query)
        self.curriculum = CurriculumManager(self.config.curriculum)
        self.selection = CaseSelectionEngine(
            curriculum=self.curriculum,
            params=self.config.selection,
            uncertainty_probe=self._probe_case,
        )
        self.consultation = ConsultationCoordinator(self._channel, self.config.consultation)
        self.query_budget = self.query_selector.new_budget()
        self.history: deque[EpisodeResult] = deque(maxlen=self.config.orchestrator.history_size)
        self.metrics = GlobalMetrics()
        self.adaptations: deque[AdaptationRecord] = deque(maxlen=200)
        self.last_optimization: dict[str, Any] = {}
        self._episode_number = 0
        self._current_step = 0
        self._selected_cases: dict[str, Case] = {}
        self.events.emit(
            EventType.CURRICULUM_INITIALIZED,
            level=self.curriculum.level,
            max_level=self.curriculum.curriculum.max_level,
        )

    # -------------------------------------------------------------------------
    # Session control
    # -------------------------------------------------------------------------

    @property
    def episode_count(self) -> int:
        return self._episode_number

    def pause(self) -> None:
        self.control.pause()

    def resume(self) -> None:
        self.control.resume()

    def stop(self) -> None:
        self.control.stop()

    def reset(self) -> None:
        """Discard all session state. Not allowed while training."""
        self.control.reset()
        self._build_subsystems()
        logger.info(f"[ORCHESTRATOR] Session {self.session_id} reset")

    async def run_training(self, episodes: int, raise_on_failure: bool = False) -> list[EpisodeResult]:
        """Run up to ``episodes`` episodes, stopping early on request.

        Failed episodes are recorded and training continues unless
        ``raise_on_failure`` is set.

        Returns:
            Results of every episode run, failed and stopped ones included
        """
        self.control.start()
        self.events.emit(EventType.TRAINING_STARTED, episodes=episodes, agent_id=self.agent.id)
        logger.info(f"[ORCHESTRATOR] Training {self.agent.id} for {episodes} episodes")
        results: list[EpisodeResult] = []
        try:
            for _ in range(episodes):
                if self.control.stop_requested:
                    break
                try:
                    result = await self.run_episode()
                except EpisodeFailure as failure:
                    results.append(failure.result)
                    if raise_on_failure:
                        raise
                    continue
                results.append(result)
                if result.termination_reason == TerminationReason.STOPPED:
                    break
        finally:
            self.control.finish()
            self.events.emit(EventType.TRAINING_STOPPED, episodes_run=len(results))
        return results

    # -------------------------------------------------------------------------
    # Episodes
    # -------------------------------------------------------------------------

    async def run_episode(self) -> EpisodeResult:
        """Run one episode to a terminal condition.

        Returns:
            The finalized episode result

        Raises:
            EpisodeFailure: If the environment, agent or case supply raised.
                The partial result is already recorded in ``history``.
        """
        self._episode_number += 1
        episode = _EpisodeState(number=self._episode_number, started_at=datetime.now(timezone.utc))
        self._current_step = 0
        self.query_budget.reset()
        self.consultation.start_episode()

        reason: Optional[TerminationReason] = None
        failure: Optional[BaseException] = None
        try:
            self.agent.start_episode()
            self.events.emit(EventType.EPISODE_STARTED, episode=episode.number, level=self.curriculum.level)
            episode.case_ids = await self._prepare_cases(episode.number)
            state = await self.environment.reset()
            max_steps = self.config.orchestrator.max_steps_per_episode
            while True:
                if not await self.control.checkpoint():
                    reason = TerminationReason.STOPPED
                    break
                if len(episode.steps) >= max_steps:
                    reason = TerminationReason.MAX_STEPS_REACHED
                    break
                record, state, done = await self._execute_step(state, episode)
                episode.steps.append(record)
                episode.total_reward += record.reward
                if done:
                    reason = TerminationReason.ENVIRONMENT_TERMINAL
                    break
                if self._diminishing_returns(episode.steps):
                    reason = TerminationReason.ACTIVE_LEARNING_TERMINATION
                    break
        except Exception as e:
            failure = e
            reason = TerminationReason.ERROR
            logger.exception(f"[ORCHESTRATOR] Episode {episode.number} failed at step {len(episode.steps)}")
        finally:
            try:
                self.agent.end_episode()
            except Exception as e:
                logger.exception(f"[ORCHESTRATOR] Agent cleanup failed for episode {episode.number}")
                if failure is None:
                    failure = e
                    reason = TerminationReason.ERROR
            self.consultation.end_episode()

        result = self._finalize(episode, reason or TerminationReason.CUSTOM_TERMINATION, failure)
        if failure is not None:
            self.events.emit(EventType.EPISODE_FAILED, episode=episode.number, error=repr(failure))
            raise EpisodeFailure(result, failure) from failure
        return result

    async def _prepare_cases(self, episode_number: int) -> list[str]:
        """Select this episode's cases and hand them to the environment."""
        if self.case_generator is None or not isinstance(self.environment, CaseLoadingEnvironment):
            return []
        target = self.config.orchestrator.cases_per_episode
        pool = [await self.case_generator.generate() for _ in range(candidate_pool_size(target))]
        before = self.selection.strategy
        result = self.selection.select(pool, target_count=target)
        self.environment.load_cases(result.cases)
        self._selected_cases = {c.id: c for c in result.cases}

        if self.selection.strategy != before:
            self._record_adaptation(
                AdaptationType.STRATEGY_CHANGE,
                episode_number,
                f"Selection strategy {before.value} -> {self.selection.strategy.value}",
                {"from": before.value, "to": self.selection.strategy.value},
            )
            self.events.emit(
                EventType.STRATEGY_CHANGED,
                previous=before.value,
                strategy=self.selection.strategy.value,
            )
        if result.adaptation_made:
            self._record_adaptation(
                AdaptationType.PATIENT_SELECTION_ADAPTATION,
                episode_number,
                result.rationale,
                {"histogram": result.difficulty_histogram},
            )
        return [c.id for c in result.cases]

    async def _execute_step(self, state: State, episode: _EpisodeState) -> tuple[StepRecord, State, bool]:
        step_number = len(episode.steps)
        self._current_step = step_number
        actions = self.environment.get_available_actions(state)
        context = QueryContext.from_state(
            state, recent_performance=self.selection.recent_performance().success_rate
        )

        # Uncertainty
        fallback = not actions
        tentative: Optional[Action] = None
        confidences: Optional[list[float]] = None
        if fallback:
            logger.warning(f"[ORCHESTRATOR] {NoActionsAvailable(state.id)}, falling back to wait")
            uncertainty = self.quantifier.estimate(self.agent, state, None, [])
        else:
            confidences = [self.agent.get_confidence(state, a) for a in actions]
            tentative = actions[int(np.argmax(confidences))]
            uncertainty = self.quantifier.estimate(self.agent, state, tentative, actions)

        # Querying
        query = self.query_selector.maybe_query(
            state, actions, uncertainty, self.query_budget, confidences=confidences, context=context
        )
        if query is None and self.committee and actions:
            query = self.query_selector.committee_query(
                state, actions, [self.agent, *self.committee], uncertainty, self.query_budget, context
            )
        if query is not None:
            self.events.emit(
                EventType.ACTIVE_QUERY_GENERATED,
                episode=episode.number,
                step=step_number,
                query_type=query.type.value,
                expected_benefit=query.expected_benefit,
            )

        # Consulting
        request = None
        response = None
        if self.consultation.should_consult(uncertainty):
            request = await self.consultation.try_submit(state, tentative, uncertainty, context)
            if request is not None:
                episode.consultations += 1
                self.events.emit(
                    EventType.EXPERT_CONSULTATION_REQUESTED,
                    episode=episode.number,
                    step=step_number,
                    question_type=request.question_type,
                    priority=request.priority,
                )
                response = await self.consultation.await_response(request)

        # Acting
        action = Action.wait() if fallback else self.agent.select_action(state, actions)
        step_result = await self.environment.step(action)
        reward = step_result.reward.value
        done = step_result.done or step_result.state.is_terminal

        # Updating
        info = dict(step_result.info)
        if response is not None and response.recommendation is not None:
            info["expert_recommendation"] = response.recommendation.key
            info["expert_confidence"] = response.confidence
        self.agent.update(
            Experience(
                state=state,
                action=action,
                reward=step_result.reward,
                next_state=step_result.state,
                done=done,
                weight=1.0 + (query.expected_benefit if query is not None else 0.0),
                info=info,
            )
        )

        if query is not None:
            contribution = self.query_selector.process_query_result(query, reward)
            self.events.emit(
                EventType.ACTIVE_QUERY_PROCESSED,
                episode=episode.number,
                query_id=query.id,
                contribution=contribution,
            )
        if response is not None:
            outcome = self.consultation.resolve(response, reward, had_alternatives=len(actions) > 1)
            if outcome is not None:
                self.events.emit(
                    EventType.EXPERT_CONSULTATION_RESOLVED,
                    episode=episode.number,
                    request_id=outcome.request_id,
                    threshold=outcome.threshold_after,
                    gaps_addressed=outcome.gaps_addressed,
                )
                self._record_adaptation(
                    AdaptationType.EXPERT_CONSULTATION,
                    episode.number,
                    f"Expert feedback applied (quality {outcome.quality.overall:.2f})",
                    {"threshold_before": outcome.threshold_before, "threshold_after": outcome.threshold_after},
                )

        self._track_competency(action, info, episode)
        record = StepRecord(
            step_number=step_number,
            state_id=state.id,
            action=action,
            reward=reward,
            uncertainty=uncertainty,
            learning_opportunity=uncertainty.learning_opportunity,
            query=query,
            consultation_id=request.id if request is not None else None,
            fallback=fallback,
            done=done,
        )
        self.events.emit(
            EventType.STEP_COMPLETED,
            episode=episode.number,
            step=step_number,
            reward=reward,
            uncertainty=uncertainty.total,
        )
        logger.debug(
            f"[ORCHESTRATOR] Episode {episode.number} step {step_number}: {action.key} "
            f"reward={reward:.2f} uncertainty={uncertainty.total:.2f}"
        )
        return record, step_result.state, done

    def _diminishing_returns(self, steps: list[StepRecord]) -> bool:
        window = self.config.orchestrator.termination_window
        if len(steps) < window:
            return False
        recent = [s.learning_opportunity for s in steps[-window:]]
        return float(np.mean(recent)) < self.config.orchestrator.termination_floor

    def _track_competency(self, action: Action, info: dict[str, Any], episode: _EpisodeState) -> None:
        if action.type != ActionType.TRIAGE_ASSIGN:
            return
        case = self._selected_cases.get(info.get("case_id", ""))
        if case is None or "true_level" not in info:
            return
        error = abs(int(info.get("assigned_level", 0)) - int(info["true_level"]))
        score = max(0.0, 1.0 - COMPETENCY_ERROR_PENALTY * error)
        for tag in competency_tags(case):
            episode.competency_scores.setdefault(tag, []).append(score)

    def _probe_case(self, case: Case) -> float:
        """Uncertainty of the agent on a case, used by uncertainty-focused selection."""
        _, metrics = self.quantifier.estimate_best(self.agent, case.to_state(), standard_triage_actions())
        return min(1.0, metrics.total)

    # -------------------------------------------------------------------------
    # Finalization and learning
    # -------------------------------------------------------------------------

    def _finalize(
        self,
        episode: _EpisodeState,
        reason: TerminationReason,
        failure: Optional[BaseException],
    ) -> EpisodeResult:
        analysis = analyze_uncertainty(episode.steps)
        metrics = compute_episode_metrics(episode.steps, episode.consultations, analysis)
        success = reason != TerminationReason.ERROR and (
            episode.total_reward >= self.config.orchestrator.success_threshold
        )
        result = EpisodeResult(
            episode_number=episode.number,
            agent_id=self.agent.id,
            steps=tuple(episode.steps),
            total_reward=episode.total_reward,
            termination_reason=reason,
            success=success,
            metrics=metrics,
            uncertainty_analysis=analysis,
            curriculum_snapshot=self.curriculum.curriculum.snapshot(),
            case_ids=tuple(episode.case_ids),
            error=repr(failure) if failure is not None else None,
            started_at=episode.started_at,
            ended_at=datetime.now(timezone.utc),
        )
        self.history.append(result)
        self.metrics.update(result, self.consultation.budget.maximum)

        if reason not in (TerminationReason.ERROR, TerminationReason.STOPPED):
            self._learn_from_episode(result, episode)

        self.events.emit(
            EventType.EPISODE_COMPLETED,
            episode=result.episode_number,
            reason=reason.value,
            total_reward=result.total_reward,
            steps=result.step_count,
            success=result.success,
            queries=metrics.total_active_queries,
            consultations=metrics.expert_consultations_used,
        )
        logger.info(
            f"[ORCHESTRATOR] Episode {result.episode_number} ended ({reason.value}): "
            f"reward={result.total_reward:.2f} steps={result.step_count} "
            f"queries={metrics.total_active_queries} consultations={metrics.expert_consultations_used}"
        )

        interval = self.config.orchestrator.optimization_interval
        if interval > 0 and episode.number % interval == 0:
            self.optimize()
        return result

    def _learn_from_episode(self, result: EpisodeResult, episode: _EpisodeState) -> None:
        for tag, scores in episode.competency_scores.items():
            self.selection.update_competency(tag, float(np.mean(scores)))
        self.selection.record_performance(
            PerformanceRecord(reward=result.total_reward, success=result.success, case_ids=list(result.case_ids))
        )

        avg_confidence = (
            float(np.mean([s.uncertainty.confidence for s in result.steps])) if result.steps else 0.0
        )
        change = self.curriculum.record_episode(result.success, result.total_reward, avg_confidence)
        if change is not None:
            event = EventType.CURRICULUM_ADVANCED if change.to_level > change.from_level else EventType.CURRICULUM_REGRESSED
            self.events.emit(event, from_level=change.from_level, to_level=change.to_level)
            self._record_adaptation(
                AdaptationType.CURRICULUM_ADVANCEMENT,
                result.episode_number,
                f"Curriculum level {change.from_level} -> {change.to_level}",
                {"success_rate": change.success_rate, "consistency": change.consistency},
            )
        self.events.emit(
            EventType.EPISODE_LEARNING_PROCESSED,
            episode=result.episode_number,
            learning_velocity=result.metrics.learning_velocity,
            competencies=dict(self.selection.competencies),
        )

    def optimize(self) -> dict[str, Any]:
        """Periodic optimisation pass over the retained history.

        Computes trends and recommendations. In adaptive acceleration mode
        it also loosens the query and consultation thresholds when the
        session is under-using them.
        """
        trends = compute_trends(list(self.history))
        recommendations = optimization_recommendations(self.metrics)
        adjustments: dict[str, float] = {}

        if self.config.orchestrator.acceleration_mode == AccelerationMode.ADAPTIVE:
            if self.metrics.avg_learning_efficiency < 0.5 or trends["learning_efficiency"].direction == "declining":
                current = self.query_selector.uncertainty_threshold
                target = max(ADAPTIVE_QUERY_THRESHOLD_FLOOR, current - ADAPTIVE_QUERY_THRESHOLD_STEP)
                if target < current:
                    adjustments["query_threshold"] = self.query_selector.set_uncertainty_threshold(target)
            if self.metrics.expert_utilization < 0.3:
                current = self.consultation.threshold
                new = self.consultation.set_threshold(current - ADAPTIVE_CONSULT_THRESHOLD_STEP)
                if new < current:
                    adjustments["consultation_threshold"] = new
            for name, value in adjustments.items():
                self._record_adaptation(
                    AdaptationType.THRESHOLD_ADJUSTMENT,
                    self._episode_number,
                    f"{name} set to {value:.2f}",
                    {"name": name, "value": value},
                )
                self.events.emit(EventType.THRESHOLD_ADJUSTED, name=name, value=value)

        self.last_optimization = {
            "episode": self._episode_number,
            "trends": {k: vars(v) for k, v in trends.items()},
            "recommendations": recommendations,
            "adjustments": adjustments,
        }
        self.events.emit(EventType.PERIODIC_OPTIMIZATION, **self.last_optimization)
        for rec in recommendations:
            logger.info(f"[ORCHESTRATOR] Recommendation: {rec}")
        return self.last_optimization

    def _record_adaptation(
        self,
        adaptation_type: AdaptationType,
        episode_number: int,
        description: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.adaptations.append(
            AdaptationRecord(
                type=adaptation_type,
                episode_number=episode_number,
                description=description,
                details=details or {},
            )
        )

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "state": self.control.state.value,
            "agent_id": self.agent.id,
            "episode": self._episode_number,
            "step": self._current_step,
            "curriculum_level": self.curriculum.level,
            "selection_strategy": self.selection.strategy.value,
            "query_budget_remaining": self.query_budget.remaining,
            "consultation_budget_remaining": self.consultation.budget.remaining,
            "query_threshold": self.query_selector.uncertainty_threshold,
            "consultation_threshold": self.consultation.threshold,
        }

    def get_learning_analytics(self) -> dict[str, Any]:
        return {
            "global": self.metrics.to_dict(),
            "curriculum": self.curriculum.get_stats(),
            "selection": self.selection.get_selection_stats(),
            "queries": self.query_selector.get_query_stats(),
            "consultation": self.consultation.get_consultation_stats(),
            "last_optimization": self.last_optimization,
            "recent_adaptations": [
                {"type": a.type.value, "episode": a.episode_number, "description": a.description}
                for a in list(self.adaptations)[-10:]
            ],
        }

    def get_system_health(self) -> dict[str, Any]:
        """Coarse health summary for monitoring."""
        failure_rate = self.metrics.failures / self.metrics.episodes if self.metrics.episodes else 0.0
        event_stats = self.events.get_stats()
        issues = []
        if failure_rate > 0.1:
            issues.append(f"episode failure rate {failure_rate:.2f}")
        if event_stats["delivery_failures"]:
            issues.append(f"{event_stats['delivery_failures']} event delivery failures")
        return {
            "status": "healthy" if not issues else "degraded",
            "issues": issues,
            "state": self.control.state.value,
            "episodes": self.metrics.episodes,
            "failure_rate": failure_rate,
            "history_size": len(self.history),
            "pending_consultations": len(self.consultation.pending),
            "events": event_stats,
            "agent": self.agent.get_stats(),
        }

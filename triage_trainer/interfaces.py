"""Contracts for the collaborators a training session drives.

Any object implementing these methods can be plugged into the
orchestrator. Reference implementations live in
``triage_trainer.simulation``.
"""

from typing import Any, Optional, Protocol, runtime_checkable

from triage_trainer.models import (
    Action,
    Case,
    ConsultationRequest,
    ConsultationResponse,
    Experience,
    State,
    StepResult,
)


@runtime_checkable
class Environment(Protocol):
    """Simulated environment stepped by the orchestrator."""

    async def reset(self) -> State:
        """Start a new episode and return the initial observation."""
        ...

    def get_available_actions(self, state: State) -> list[Action]:
        """Actions legal in ``state``. May be empty."""
        ...

    async def step(self, action: Action) -> StepResult:
        """Apply ``action`` and return the transition."""
        ...


@runtime_checkable
class CaseLoadingEnvironment(Environment, Protocol):
    """Environment whose next episode can be seeded with selected cases."""

    def load_cases(self, cases: list[Case]) -> None:
        ...


@runtime_checkable
class Agent(Protocol):
    """Decision-making policy under training."""

    id: str

    def select_action(self, state: State, actions: list[Action]) -> Action:
        ...

    def update(self, experience: Experience) -> None:
        ...

    def get_confidence(self, state: State, action: Action) -> float:
        """Confidence in ``action`` for ``state``, in [0, 1]."""
        ...

    def start_episode(self) -> None:
        ...

    def end_episode(self) -> None:
        ...

    def get_stats(self) -> dict[str, Any]:
        ...


@runtime_checkable
class CaseGenerator(Protocol):
    """Produces synthetic training cases, reproducibly under a seed."""

    async def generate(self, options: Optional[dict[str, Any]] = None) -> Case:
        ...


@runtime_checkable
class ConsultationChannel(Protocol):
    """Transport to a simulated or human expert."""

    async def submit(self, request: ConsultationRequest) -> None:
        ...

    async def await_response(self, request: ConsultationRequest) -> Optional[ConsultationResponse]:
        """Wait for the answer to ``request``. ``None`` means no answer."""
        ...

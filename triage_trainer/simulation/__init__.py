"""Reference collaborators: case generator, environment, agents and expert channel."""

from triage_trainer.simulation.agents import (
    BaseAgent,
    LinearAgent,
    RandomAgent,
    RuleBasedAgent,
)
from triage_trainer.simulation.channel import SimulatedConsultationChannel
from triage_trainer.simulation.environment import TriageEnvironment
from triage_trainer.simulation.generator import SyntheticCaseGenerator

__all__ = [
    "BaseAgent",
    "LinearAgent",
    "RandomAgent",
    "RuleBasedAgent",
    "SimulatedConsultationChannel",
    "SyntheticCaseGenerator",
    "TriageEnvironment",
]

"""Pytest configuration and fixtures."""

from typing import Optional

import pytest

from triage_trainer.models import (
    Acuity,
    Case,
    ComplexityProfile,
    PatientData,
    State,
    UncertaintyMetrics,
)
from triage_trainer.simulation import RuleBasedAgent, SyntheticCaseGenerator


def make_case(
    overall: Optional[float] = None,
    acuity: Acuity = Acuity.MEDIUM,
    complaint: str = "abdominal pain",
    age: int = 40,
    pain_level: int = 4,
    comorbidities: tuple[str, ...] = (),
    case_id: Optional[str] = None,
) -> Case:
    """Build a case, optionally with a fixed overall complexity."""
    patient = PatientData(
        age=age,
        acuity=acuity,
        chief_complaint=complaint,
        pain_level=pain_level,
        comorbidities=comorbidities,
    )
    complexity = ComplexityProfile(overall=overall) if overall is not None else None
    kwargs = {"id": case_id} if case_id else {}
    return Case(patient=patient, complexity=complexity, **kwargs)


@pytest.fixture
def case_factory():
    return make_case


@pytest.fixture
def generator():
    return SyntheticCaseGenerator(seed=42)


@pytest.fixture
def rule_agent():
    return RuleBasedAgent()


@pytest.fixture
def patient_state():
    return State(
        data={
            "case_id": "c1",
            "age": 60,
            "acuity": "high",
            "chief_complaint": "chest pain",
            "pain_level": 7,
            "comorbidity_count": 2,
            "queue_length": 6,
            "time_of_day": 14,
            "system_load": 0.5,
        }
    )


@pytest.fixture
def high_uncertainty():
    """Total uncertainty 0.9 with moderate information gain."""
    return UncertaintyMetrics(epistemic=0.9, aleatoric=0.0, confidence=0.5, information_gain=0.5)


@pytest.fixture
def low_uncertainty():
    return UncertaintyMetrics(epistemic=0.1, aleatoric=0.1, confidence=0.9, information_gain=0.1)

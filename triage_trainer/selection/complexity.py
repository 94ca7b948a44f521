"""Complexity profiling for training cases.

A profile scores four aspects of a case (medical, diagnostic, resource,
time urgency) and blends them into an overall difficulty in [0, 1]. Every
contribution is recorded as a named factor so a selection can explain
itself.

Profiles are cached by (age bucket, acuity, chief complaint, comorbidity
count). Two distinct cases that share this key get the same profile.
This is an accepted approximation: the key covers every input that moves
the score except pain level.
"""

import logging
from typing import Optional

from triage_trainer.models import Acuity, Case, ComplexityFactor, ComplexityProfile, PatientData

logger = logging.getLogger(__name__)

# Overall blend weights
MEDICAL_WEIGHT = 0.3
DIAGNOSTIC_WEIGHT = 0.3
RESOURCE_WEIGHT = 0.2
URGENCY_WEIGHT = 0.2

AGE_BUCKET_YEARS = 20

# Complaints that are hard to work up from the presentation alone
COMPLEX_COMPLAINTS = (
    "syncope",
    "altered mental status",
    "weakness",
    "fatigue",
    "multiple complaints",
    "vague symptoms",
    "psychiatric",
    "substance abuse",
    "chronic pain",
)

ACUITY_DIAGNOSTIC_SCORE: dict[Acuity, float] = {
    Acuity.LOW: 0.1,
    Acuity.MEDIUM: 0.3,
    Acuity.HIGH: 0.5,
    Acuity.CRITICAL: 0.7,
}

# Keyword -> complaint category, first match wins
COMPLAINT_CATEGORIES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("cardiac", ("chest", "heart", "palpitation")),
    ("respiratory", ("breath", "lung", "cough", "wheez")),
    ("gastrointestinal", ("abdominal", "stomach", "vomit", "nausea")),
    ("neurological", ("head", "neuro", "seizure", "stroke", "syncope")),
    ("trauma", ("trauma", "injury", "fracture", "laceration", "fall")),
)

# Competency tags used by competency-based selection
COMPETENCIES = (
    "life_threat_assessment",
    "symptom_evaluation",
    "resource_allocation",
    "time_management",
)


def categorize_complaint(chief_complaint: str) -> str:
    text = chief_complaint.lower()
    for category, keywords in COMPLAINT_CATEGORIES:
        if any(k in text for k in keywords):
            return category
    return "other"


def age_bucket(age: int) -> int:
    return (age // AGE_BUCKET_YEARS) * AGE_BUCKET_YEARS


def is_complex_complaint(chief_complaint: str) -> bool:
    text = chief_complaint.lower()
    return any(c in text for c in COMPLEX_COMPLAINTS)


def case_features(case: Case) -> dict[str, str]:
    """Categorical features used for diversity-maximizing selection."""
    p = case.patient
    return {
        "age_group": str(age_bucket(p.age)),
        "acuity": p.acuity.value,
        "complaint_category": categorize_complaint(p.chief_complaint),
        "comorbidity": "high" if len(p.comorbidities) > 2 else "low",
    }


def competency_tags(case: Case) -> list[str]:
    """Competencies a case exercises, most important first."""
    p = case.patient
    tags = []
    if p.acuity in (Acuity.CRITICAL, Acuity.HIGH):
        tags.append("life_threat_assessment")
    if is_complex_complaint(p.chief_complaint) or len(p.comorbidities) > 2:
        tags.append("symptom_evaluation")
    if "trauma" in p.chief_complaint.lower() or p.acuity == Acuity.CRITICAL:
        tags.append("resource_allocation")
    if p.acuity == Acuity.CRITICAL or p.pain_level >= 8:
        tags.append("time_management")
    if not tags:
        tags.append("symptom_evaluation")
    return tags


def profile_cache_key(patient: PatientData) -> str:
    return (
        f"{age_bucket(patient.age)}_{patient.acuity.value}_"
        f"{patient.chief_complaint.lower()}_{len(patient.comorbidities)}"
    )


def compute_profile(patient: PatientData) -> ComplexityProfile:
    """Score a patient presentation. Pure and deterministic."""
    factors: list[ComplexityFactor] = []

    medical = 0.0
    if patient.comorbidities:
        contribution = min(0.4, len(patient.comorbidities) * 0.1)
        medical += contribution
        factors.append(
            ComplexityFactor(
                factor="comorbidities",
                contribution=contribution,
                description=f"{len(patient.comorbidities)} comorbid conditions",
            )
        )
    if patient.age < 18 or patient.age > 75:
        medical += 0.2
        factors.append(
            ComplexityFactor(factor="age", contribution=0.2, description=f"Extreme age ({patient.age})")
        )
    if patient.pain_level >= 8:
        medical += 0.2
        factors.append(
            ComplexityFactor(factor="pain", contribution=0.2, description=f"Severe pain ({patient.pain_level}/10)")
        )

    diagnostic = 0.0
    if is_complex_complaint(patient.chief_complaint):
        diagnostic += 0.3
        factors.append(
            ComplexityFactor(
                factor="complex_complaint",
                contribution=0.3,
                description=f"Non-specific presentation: {patient.chief_complaint}",
            )
        )
    acuity_score = ACUITY_DIAGNOSTIC_SCORE[patient.acuity]
    diagnostic += acuity_score
    factors.append(
        ComplexityFactor(factor="acuity", contribution=acuity_score, description=f"{patient.acuity.value} acuity")
    )

    resource = 0.0
    if "trauma" in patient.chief_complaint.lower() or patient.acuity == Acuity.CRITICAL:
        resource = 0.4
        factors.append(
            ComplexityFactor(factor="resources", contribution=0.4, description="Needs trauma or resuscitation resources")
        )

    urgency = 0.0
    if patient.acuity in (Acuity.CRITICAL, Acuity.HIGH):
        urgency = 0.3
        factors.append(
            ComplexityFactor(factor="time_urgency", contribution=0.3, description="Time-critical presentation")
        )

    medical = min(1.0, medical)
    diagnostic = min(1.0, diagnostic)
    overall = min(
        1.0,
        MEDICAL_WEIGHT * medical
        + DIAGNOSTIC_WEIGHT * diagnostic
        + RESOURCE_WEIGHT * resource
        + URGENCY_WEIGHT * urgency,
    )
    return ComplexityProfile(
        medical=medical,
        diagnostic=diagnostic,
        resource=resource,
        time_urgency=urgency,
        overall=overall,
        factors=tuple(factors),
    )


class ComplexityProfiler:
    """Computes complexity profiles with a shared cache."""

    def __init__(self, max_entries: int = 5000):
        self._cache: dict[str, ComplexityProfile] = {}
        self._max_entries = max_entries
        self.hits = 0
        self.misses = 0

    def profile(self, patient: PatientData) -> ComplexityProfile:
        key = profile_cache_key(patient)
        cached = self._cache.get(key)
        if cached is not None:
            self.hits += 1
            return cached
        self.misses += 1
        profile = compute_profile(patient)
        if len(self._cache) >= self._max_entries:
            # Evict the oldest insertion
            self._cache.pop(next(iter(self._cache)))
        self._cache[key] = profile
        return profile

    def ensure_profile(self, case: Case) -> Case:
        """Return ``case`` with a profile attached, computing it if missing."""
        if case.complexity is not None:
            return case
        return case.with_profile(self.profile(case.patient))

    def get_stats(self) -> dict[str, int]:
        return {"entries": len(self._cache), "hits": self.hits, "misses": self.misses}


def difficulty_histogram(cases: list[Case]) -> dict[str, float]:
    """Bucket counts of case complexity plus the average."""
    histogram: dict[str, float] = {"simple": 0, "moderate": 0, "complex": 0, "expert": 0, "average": 0.0}
    if not cases:
        return histogram
    for case in cases:
        c = case.overall_complexity
        if c < 0.3:
            histogram["simple"] += 1
        elif c < 0.6:
            histogram["moderate"] += 1
        elif c < 0.8:
            histogram["complex"] += 1
        else:
            histogram["expert"] += 1
    histogram["average"] = sum(c.overall_complexity for c in cases) / len(cases)
    return histogram


def profile_summary(case: Case) -> Optional[str]:
    """One-line description of a case's strongest complexity factor."""
    if case.complexity is None or not case.complexity.factors:
        return None
    top = max(case.complexity.factors, key=lambda f: f.contribution)
    return f"{top.factor} ({top.contribution:.2f}): {top.description}"

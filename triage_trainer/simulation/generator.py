"""Synthetic patient case generation.

Draws presentations from fixed categorical distributions with a seeded
numpy generator, so the same seed always yields the same sequence of
cases.
"""

import logging
from typing import Any, Optional

import numpy as np

from triage_trainer.models import Acuity, Case, PatientData

logger = logging.getLogger(__name__)

ACUITY_WEIGHTS = {
    Acuity.LOW: 0.35,
    Acuity.MEDIUM: 0.35,
    Acuity.HIGH: 0.2,
    Acuity.CRITICAL: 0.1,
}

COMPLAINTS: dict[Acuity, list[str]] = {
    Acuity.LOW: ["minor laceration", "sore throat", "ankle injury", "rash", "chronic pain"],
    Acuity.MEDIUM: ["abdominal pain", "vomiting", "headache", "fever", "weakness", "fatigue"],
    Acuity.HIGH: ["chest pain", "shortness of breath", "syncope", "altered mental status", "fracture"],
    Acuity.CRITICAL: ["major trauma", "cardiac arrest", "stroke symptoms", "respiratory failure"],
}

COMORBIDITIES = [
    "hypertension",
    "diabetes",
    "copd",
    "heart failure",
    "chronic kidney disease",
    "asthma",
    "atrial fibrillation",
]

# (mean, std) heart rate and systolic pressure by acuity
VITALS: dict[Acuity, tuple[tuple[float, float], tuple[float, float]]] = {
    Acuity.LOW: ((78, 8), (122, 10)),
    Acuity.MEDIUM: ((90, 10), (128, 14)),
    Acuity.HIGH: ((108, 14), (138, 20)),
    Acuity.CRITICAL: ((126, 20), (92, 25)),
}


class SyntheticCaseGenerator:
    """Seeded generator of synthetic triage cases.

    Options accepted by ``generate``:
        acuity: Force an acuity ("low" .. "critical")
        min_age / max_age: Restrict the age range
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._rng = np.random.default_rng(seed)
        self._count = 0

    def _pick_acuity(self, options: dict[str, Any]) -> Acuity:
        if "acuity" in options:
            return Acuity(options["acuity"])
        levels = list(ACUITY_WEIGHTS)
        probs = np.array([ACUITY_WEIGHTS[a] for a in levels])
        return levels[int(self._rng.choice(len(levels), p=probs / probs.sum()))]

    def generate_sync(self, options: Optional[dict[str, Any]] = None) -> Case:
        options = options or {}
        acuity = self._pick_acuity(options)
        min_age = int(options.get("min_age", 1))
        max_age = int(options.get("max_age", 95))
        age = int(self._rng.integers(min_age, max_age + 1))

        complaints = COMPLAINTS[acuity]
        complaint = complaints[int(self._rng.integers(len(complaints)))]

        # Older patients carry more comorbidities
        n_comorbid = int(min(len(COMORBIDITIES), self._rng.poisson(age / 30)))
        comorbid = tuple(sorted(self._rng.choice(COMORBIDITIES, size=n_comorbid, replace=False).tolist()))

        pain_center = {Acuity.LOW: 3, Acuity.MEDIUM: 5, Acuity.HIGH: 7, Acuity.CRITICAL: 8}[acuity]
        pain = int(np.clip(round(self._rng.normal(pain_center, 2)), 0, 10))

        (hr_mu, hr_sd), (sbp_mu, sbp_sd) = VITALS[acuity]
        vitals = {
            "heart_rate": float(round(self._rng.normal(hr_mu, hr_sd))),
            "systolic_bp": float(round(self._rng.normal(sbp_mu, sbp_sd))),
            "spo2": float(np.clip(round(self._rng.normal(97 if acuity != Acuity.CRITICAL else 88, 2)), 60, 100)),
        }

        self._count += 1
        return Case(
            id=f"case-{self.seed if self.seed is not None else 'x'}-{self._count:05d}",
            patient=PatientData(
                age=age,
                acuity=acuity,
                chief_complaint=complaint,
                pain_level=pain,
                comorbidities=comorbid,
                vitals=vitals,
            ),
        )

    async def generate(self, options: Optional[dict[str, Any]] = None) -> Case:
        return self.generate_sync(options)

    async def generate_batch(self, count: int, options: Optional[dict[str, Any]] = None) -> list[Case]:
        return [self.generate_sync(options) for _ in range(count)]

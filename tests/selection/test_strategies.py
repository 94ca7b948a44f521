"""Tests for the case selection strategies."""

import inspect

import pytest

from triage_trainer.config import SelectionParameters
from triage_trainer.models import Acuity
from triage_trainer.selection.strategies import (
    AdaptiveHybridSelector,
    CaseSelector,
    CompetencyBasedSelector,
    CurriculumProgressiveSelector,
    DiversityMaximizingSelector,
    SelectionContext,
    SelectionStrategyType,
    UncertaintyFocusedSelector,
    build_selectors,
    maximally_diverse,
    select_with_diversity,
    stratified_subset,
)


@pytest.fixture
def mixed_pool(case_factory):
    return [
        case_factory(overall=0.1, acuity=Acuity.LOW, complaint="rash", age=25, case_id="low-rash"),
        case_factory(overall=0.2, acuity=Acuity.LOW, complaint="sore throat", age=30, case_id="low-throat"),
        case_factory(overall=0.4, acuity=Acuity.MEDIUM, complaint="abdominal pain", age=45, case_id="med-abd"),
        case_factory(overall=0.5, acuity=Acuity.MEDIUM, complaint="vomiting", age=50, case_id="med-vomit"),
        case_factory(overall=0.7, acuity=Acuity.HIGH, complaint="chest pain", age=65, case_id="high-chest"),
        case_factory(overall=0.8, acuity=Acuity.HIGH, complaint="shortness of breath", age=70, case_id="high-sob"),
        case_factory(overall=0.9, acuity=Acuity.CRITICAL, complaint="major trauma", age=35, case_id="crit-trauma"),
        case_factory(overall=0.95, acuity=Acuity.CRITICAL, complaint="cardiac arrest", age=80, case_id="crit-arrest"),
    ]


# =============================================================================
# Helper Tests
# =============================================================================


class TestHelpers:
    """Tests for the shared selection helpers."""

    def test_stratified_subset_spans_quartiles(self, case_factory):
        cases = [case_factory(overall=i / 10) for i in range(8)]
        picked = stratified_subset(cases, 4)
        assert [c.overall_complexity for c in picked] == pytest.approx([0.0, 0.2, 0.4, 0.6])

    def test_stratified_subset_small_pool(self, case_factory):
        cases = [case_factory(overall=v) for v in (0.5, 0.1)]
        assert [c.overall_complexity for c in stratified_subset(cases, 5)] == [0.1, 0.5]

    def test_select_with_diversity_avoids_repeat_categories(self, case_factory):
        chest_a = case_factory(complaint="chest pain", case_id="a")
        chest_b = case_factory(complaint="chest tightness", case_id="b")
        cough = case_factory(complaint="cough", case_id="c")
        scored = [(chest_a, 0.9), (chest_b, 0.85), (cough, 0.6)]
        picked = select_with_diversity(scored, 2, diversity_weight=0.5)
        assert [c.id for c in picked] == ["a", "c"]

    def test_maximally_diverse_covers_new_features(self, mixed_pool):
        picked = maximally_diverse(mixed_pool, 3)
        acuities = {c.patient.acuity for c in picked}
        assert len(picked) == 3
        assert len(acuities) == 3


# =============================================================================
# Strategy Tests
# =============================================================================


class TestStrategies:
    """Tests for each selection strategy."""

    def test_curriculum_without_manager_prefers_difficulty_range(self, mixed_pool):
        outcome = CurriculumProgressiveSelector().select(mixed_pool, 2, SelectionContext())
        assert [c.id for c in outcome.cases] == ["med-abd", "med-vomit"]
        assert outcome.expected_benefit == 0.6

    def test_uncertainty_focused_uses_probe(self, mixed_pool):
        probe = {"low-rash": 0.95, "low-throat": 0.9}
        ctx = SelectionContext(
            uncertainty_probe=lambda case: probe.get(case.id, 0.1),
            params=SelectionParameters(diversity_weight=0.0),
        )
        outcome = UncertaintyFocusedSelector().select(mixed_pool, 2, ctx)
        assert [c.id for c in outcome.cases] == ["low-rash", "low-throat"]
        assert outcome.expected_benefit == 0.9

    def test_uncertainty_focused_boosts_weak_competency(self, case_factory):
        selector = UncertaintyFocusedSelector()
        case = case_factory(overall=0.2, acuity=Acuity.HIGH, complaint="chest pain")
        weak = SelectionContext(competencies={"life_threat_assessment": 0.0})
        strong = SelectionContext(competencies={"life_threat_assessment": 1.0})
        assert selector.score(case, weak) == pytest.approx((0.4 * 0.2 + 0.2 * 1.0) / 0.6)
        assert selector.score(case, strong) == pytest.approx((0.4 * 0.2) / 0.6)

    def test_uncertainty_weight_shifts_blend(self, case_factory):
        selector = UncertaintyFocusedSelector()
        case = case_factory(overall=0.2, acuity=Acuity.HIGH, complaint="chest pain")
        competencies = {"life_threat_assessment": 0.0}
        balanced = SelectionContext(competencies=competencies)
        uncertainty_led = SelectionContext(
            competencies=competencies,
            params=SelectionParameters(uncertainty_weight=0.8, performance_weight=0.0),
        )
        assert selector.score(case, uncertainty_led) == pytest.approx(0.2)
        assert selector.score(case, uncertainty_led) < selector.score(case, balanced)

    def test_zero_weights_fall_back_to_uncertainty(self, case_factory):
        case = case_factory(overall=0.3, acuity=Acuity.HIGH, complaint="chest pain")
        ctx = SelectionContext(params=SelectionParameters(uncertainty_weight=0.0, performance_weight=0.0))
        assert UncertaintyFocusedSelector().score(case, ctx) == pytest.approx(0.3)

    def test_diversity_maximizing(self, mixed_pool):
        outcome = DiversityMaximizingSelector().select(mixed_pool, 4, SelectionContext())
        assert len(outcome.cases) == 4
        assert len({c.id for c in outcome.cases}) == 4
        assert outcome.expected_benefit == 0.7

    def test_competency_targets_struggling_area(self, mixed_pool):
        ctx = SelectionContext(competencies={"life_threat_assessment": 0.3, "symptom_evaluation": 0.9})
        outcome = CompetencyBasedSelector().select(mixed_pool, 4, ctx)
        assert {c.patient.acuity for c in outcome.cases} <= {Acuity.HIGH, Acuity.CRITICAL}
        assert "life_threat_assessment" in outcome.rationale

    def test_competency_without_struggles_picks_hardest(self, mixed_pool):
        ctx = SelectionContext(competencies={"life_threat_assessment": 0.9})
        outcome = CompetencyBasedSelector().select(mixed_pool, 2, ctx)
        assert [c.id for c in outcome.cases] == ["crit-arrest", "crit-trauma"]


# =============================================================================
# Adaptive Hybrid Tests
# =============================================================================


class TestAdaptiveHybrid:
    """Tests for the blended strategy."""

    @pytest.mark.parametrize(
        "success_rate,primary,ratio",
        [
            (0.3, SelectionStrategyType.CURRICULUM_PROGRESSIVE, 0.7),
            (0.7, SelectionStrategyType.COMPETENCY_BASED, 0.7),
            (0.9, SelectionStrategyType.UNCERTAINTY_FOCUSED, 0.6),
        ],
    )
    def test_blend(self, success_rate, primary, ratio):
        assert AdaptiveHybridSelector.blend(success_rate) == (primary, ratio)

    def test_fills_batch_without_duplicates(self, mixed_pool):
        selector = build_selectors()[SelectionStrategyType.ADAPTIVE_HYBRID]
        outcome = selector.select(mixed_pool, 5, SelectionContext(success_rate=0.5))
        assert len(outcome.cases) == 5
        assert len({c.id for c in outcome.cases}) == 5
        assert outcome.adaptation_made
        assert outcome.expected_benefit == 0.85

    def test_build_selectors_covers_every_type(self):
        assert set(build_selectors()) == set(SelectionStrategyType)


class TestSelectorSignatures:
    """Every strategy keeps the annotated CaseSelector.select signature."""

    @pytest.mark.parametrize("selector", list(build_selectors().values()), ids=lambda s: s.strategy_type.value)
    def test_select_annotations_match_base(self, selector):
        expected = inspect.signature(CaseSelector.select)
        assert inspect.signature(type(selector).select) == expected

"""Tests for the triage environment and case generator."""

import pytest

from triage_trainer.models import Action, ActionType, Acuity
from triage_trainer.simulation import SyntheticCaseGenerator, TriageEnvironment


def assign(level):
    return Action(type=ActionType.TRIAGE_ASSIGN, parameters={"level": level})


@pytest.fixture
def env(case_factory):
    env = TriageEnvironment(seed=0)
    env.load_cases([case_factory(case_id="first"), case_factory(case_id="second")])
    return env


# =============================================================================
# Generator Tests
# =============================================================================


class TestGenerator:
    """Tests for SyntheticCaseGenerator."""

    def test_ids_are_sequential(self, generator):
        assert generator.generate_sync().id == "case-42-00001"
        assert generator.generate_sync().id == "case-42-00002"

    def test_same_seed_same_cases(self):
        a = SyntheticCaseGenerator(seed=7)
        b = SyntheticCaseGenerator(seed=7)
        assert [a.generate_sync().patient for _ in range(5)] == [b.generate_sync().patient for _ in range(5)]

    def test_forced_acuity_and_age(self, generator):
        case = generator.generate_sync({"acuity": "critical", "min_age": 70, "max_age": 75})
        assert case.patient.acuity == Acuity.CRITICAL
        assert 70 <= case.patient.age <= 75

    @pytest.mark.asyncio
    async def test_generate_batch(self, generator):
        batch = await generator.generate_batch(4)
        assert len({c.id for c in batch}) == 4


# =============================================================================
# Environment Tests
# =============================================================================


class TestEnvironment:
    """Tests for TriageEnvironment stepping and rewards."""

    @pytest.mark.asyncio
    async def test_reset_uses_loaded_cases(self, env):
        state = await env.reset()
        assert state.data["case_id"] == "first"
        assert state.data["queue_length"] == 1
        assert env.queue_length == 2

    @pytest.mark.asyncio
    async def test_correct_assignment(self, env):
        await env.reset()
        result = await env.step(assign(3))

        assert result.reward.value == 5.0
        assert result.info["correct"]
        assert result.state.data["case_id"] == "second"
        assert not result.done

    @pytest.mark.asyncio
    async def test_under_triage_penalised_harder(self, env):
        await env.reset()
        under = await env.step(assign(4))
        over = await env.step(assign(2))

        assert under.reward.value == pytest.approx(0.0)
        assert over.reward.value == pytest.approx(2.0)

    @pytest.mark.asyncio
    async def test_terminal_when_queue_empty(self, env):
        await env.reset()
        await env.step(assign(3))
        result = await env.step(assign(3))

        assert result.done
        assert result.state.is_terminal
        assert env.get_available_actions(result.state) == []

    @pytest.mark.asyncio
    async def test_tests_are_limited(self, env):
        state = await env.reset()
        for _ in range(2):
            result = await env.step(Action(type=ActionType.ORDER_TEST))
            assert result.reward.value == -0.5
            state = result.state

        assert state.data["tests_ordered"] == 2
        assert all(a.type != ActionType.ORDER_TEST for a in env.get_available_actions(state))

    @pytest.mark.asyncio
    async def test_wait_penalty_scales_with_acuity(self, env):
        await env.reset()
        result = await env.step(Action.wait())
        assert result.reward.value == -0.5
        assert result.state.data["case_id"] == "first"

    @pytest.mark.asyncio
    async def test_empty_environment_is_terminal(self):
        env = TriageEnvironment()
        state = await env.reset()

        assert state.is_terminal
        assert env.get_available_actions(state) == []
        result = await env.step(assign(1))
        assert result.done
        assert result.reward.value == 0.0

    @pytest.mark.asyncio
    async def test_generates_when_nothing_loaded(self, generator):
        env = TriageEnvironment(generator=generator, cases_per_episode=3)
        await env.reset()
        assert env.queue_length == 3

    @pytest.mark.asyncio
    async def test_loaded_cases_used_once(self, env):
        await env.reset()
        state = await env.reset()
        assert state.is_terminal

    @pytest.mark.asyncio
    async def test_complexity_exposed_in_state(self, case_factory):
        env = TriageEnvironment()
        env.load_cases([case_factory(overall=0.4)])
        state = await env.reset()
        assert state.data["complexity"] == 0.4

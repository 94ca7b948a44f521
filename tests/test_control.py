"""Tests for cooperative session control."""

import asyncio

import pytest

from triage_trainer.control import SessionControl, SessionState
from triage_trainer.errors import InvalidTransition


@pytest.fixture
def control():
    return SessionControl()


# =============================================================================
# Transition Tests
# =============================================================================


class TestTransitions:
    """Tests for the session state machine."""

    def test_initial_state(self, control):
        assert control.state == SessionState.IDLE
        assert not control.stop_requested

    def test_start_pause_resume(self, control):
        control.start()
        assert control.state == SessionState.RUNNING
        control.pause()
        assert control.is_paused
        control.resume()
        assert control.state == SessionState.RUNNING

    def test_pause_when_idle_rejected(self, control):
        with pytest.raises(InvalidTransition):
            control.pause()

    def test_resume_when_running_rejected(self, control):
        control.start()
        with pytest.raises(InvalidTransition):
            control.resume()

    def test_double_start_rejected(self, control):
        control.start()
        with pytest.raises(InvalidTransition):
            control.start()

    def test_stop_when_idle_is_noop(self, control):
        control.stop()
        assert control.state == SessionState.IDLE
        assert not control.stop_requested

    def test_stop_is_idempotent(self, control):
        control.start()
        control.stop()
        control.stop()
        assert control.state == SessionState.STOPPING
        assert control.stop_requested

    def test_finish_after_stop(self, control):
        control.start()
        control.stop()
        control.finish()
        assert control.state == SessionState.STOPPED

    def test_finish_without_stop_returns_to_idle(self, control):
        control.start()
        control.finish()
        assert control.state == SessionState.IDLE

    def test_reset_while_running_rejected(self, control):
        control.start()
        with pytest.raises(InvalidTransition):
            control.reset()

    def test_restart_after_stop(self, control):
        control.start()
        control.stop()
        control.finish()
        control.start()
        assert control.state == SessionState.RUNNING
        assert not control.stop_requested


# =============================================================================
# Checkpoint Tests
# =============================================================================


class TestCheckpoint:
    """Tests for the suspension point awaited at every step."""

    @pytest.mark.asyncio
    async def test_checkpoint_passes_when_running(self, control):
        control.start()
        assert await control.checkpoint() is True

    @pytest.mark.asyncio
    async def test_checkpoint_reports_stop(self, control):
        control.start()
        control.stop()
        assert await control.checkpoint() is False

    @pytest.mark.asyncio
    async def test_checkpoint_blocks_while_paused(self, control):
        control.start()
        control.pause()
        task = asyncio.create_task(control.checkpoint())
        await asyncio.sleep(0.01)
        assert not task.done()

        control.resume()
        assert await asyncio.wait_for(task, timeout=1.0) is True

    @pytest.mark.asyncio
    async def test_stop_releases_paused_checkpoint(self, control):
        control.start()
        control.pause()
        task = asyncio.create_task(control.checkpoint())
        await asyncio.sleep(0.01)

        control.stop()
        assert await asyncio.wait_for(task, timeout=1.0) is False

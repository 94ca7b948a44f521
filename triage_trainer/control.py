"""Cooperative pause/stop control for a training session.

The orchestrator awaits ``checkpoint()`` at the start of every step. A
paused session blocks there on an ``asyncio.Event`` until resumed, and
no thread spins while it waits. A stop request releases any pause and
makes the next checkpoint report that the loop should exit.
"""

import asyncio
import logging
from enum import Enum

from triage_trainer.errors import InvalidTransition

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPING = "stopping"
    STOPPED = "stopped"


class SessionControl:
    """Pause/resume/stop token shared by a session and its controller."""

    def __init__(self):
        self._resume = asyncio.Event()
        self._resume.set()
        self._stop_requested = False
        self.state = SessionState.IDLE

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    @property
    def is_paused(self) -> bool:
        return self.state == SessionState.PAUSED

    def start(self) -> None:
        if self.state in (SessionState.RUNNING, SessionState.PAUSED):
            raise InvalidTransition(self.state.value, "start")
        self._stop_requested = False
        self._resume.set()
        self.state = SessionState.RUNNING

    def pause(self) -> None:
        if self.state != SessionState.RUNNING:
            raise InvalidTransition(self.state.value, "pause")
        self._resume.clear()
        self.state = SessionState.PAUSED
        logger.info("[CONTROL] Session paused")

    def resume(self) -> None:
        if self.state != SessionState.PAUSED:
            raise InvalidTransition(self.state.value, "resume")
        self.state = SessionState.RUNNING
        self._resume.set()
        logger.info("[CONTROL] Session resumed")

    def stop(self) -> None:
        """Request a stop. Safe to call from any state; idempotent."""
        if self.state in (SessionState.IDLE, SessionState.STOPPED):
            return
        self._stop_requested = True
        self.state = SessionState.STOPPING
        self._resume.set()
        logger.info("[CONTROL] Stop requested")

    def finish(self) -> None:
        self.state = SessionState.STOPPED if self._stop_requested else SessionState.IDLE
        self._resume.set()

    def reset(self) -> None:
        if self.state in (SessionState.RUNNING, SessionState.PAUSED, SessionState.STOPPING):
            raise InvalidTransition(self.state.value, "reset")
        self._stop_requested = False
        self._resume.set()
        self.state = SessionState.IDLE

    async def checkpoint(self) -> bool:
        """Suspend while paused.

        Returns:
            True if the loop may continue, False if a stop was requested
        """
        await self._resume.wait()
        return not self._stop_requested

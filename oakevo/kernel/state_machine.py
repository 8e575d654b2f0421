"""Run state machine — enforces valid evolution-run lifecycle transitions."""

from __future__ import annotations

import asyncio
from typing import Callable, Awaitable

from oakevo.types import RunState
from oakevo.exceptions import RunStateError

TransitionCallback = Callable[[str, RunState, RunState], Awaitable[None]]

TERMINAL_STATES: frozenset[RunState] = frozenset({
    RunState.CONVERGED,
    RunState.GENERATION_LIMIT_REACHED,
    RunState.STOPPED,
    RunState.ERRORED,
})

# Valid state transitions
VALID_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.IDLE: {RunState.RUNNING},
    RunState.RUNNING: set(TERMINAL_STATES),
    RunState.CONVERGED: {RunState.IDLE},
    RunState.GENERATION_LIMIT_REACHED: {RunState.IDLE},
    RunState.STOPPED: {RunState.IDLE},
    RunState.ERRORED: {RunState.IDLE},
}


class RunStateMachine:
    """Manages the lifecycle state of a single evolution loop.

    Enforces that only valid transitions occur and notifies listeners
    on every state change.
    """

    def __init__(self, run_id: str):
        self.run_id = run_id
        self._state = RunState.IDLE
        self._listeners: list[TransitionCallback] = []
        self._lock = asyncio.Lock()

    @property
    def state(self) -> RunState:
        return self._state

    async def transition(self, target: RunState) -> None:
        async with self._lock:
            valid = VALID_TRANSITIONS.get(self._state, set())
            if target not in valid:
                raise RunStateError(
                    f"Cannot transition run {self.run_id} "
                    f"from {self._state.value} to {target.value}"
                )
            old = self._state
            self._state = target
        # Notify listeners outside the lock
        for listener in self._listeners:
            await listener(self.run_id, old, target)

    def on_transition(self, callback: TransitionCallback) -> None:
        self._listeners.append(callback)

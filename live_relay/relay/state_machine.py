"""RelayStateMachine: lifecycle of one relay session.

Pure, synchronous component: it does not know WebSocket, the provider SDK,
or asyncio. The caller (RelaySession) calls transition() at the right times
and asks can_forward / is_closed before acting.

States:
    CONNECTING -> READY -> CLOSED

Rules:
- CLOSED is terminal: no transitions are accepted from CLOSED.
- Any non-terminal state can transition to CLOSED.
- Invalid transitions raise InvalidTransitionError.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from live_relay._types import RelayState
from live_relay.exceptions import InvalidTransitionError

if TYPE_CHECKING:
    from collections.abc import Callable

# Valid transitions: {current_state: {allowed_target_states}}
_VALID_TRANSITIONS: dict[RelayState, frozenset[RelayState]] = {
    RelayState.CONNECTING: frozenset({RelayState.READY, RelayState.CLOSED}),
    RelayState.READY: frozenset({RelayState.CLOSED}),
    RelayState.CLOSED: frozenset(),
}


class RelayStateMachine:
    """State machine for relay sessions.

    Args:
        on_enter: Callbacks called upon ENTERING a state.
        clock: Function that returns a monotonic timestamp (for deterministic tests).
    """

    def __init__(
        self,
        on_enter: dict[RelayState, Callable[[], None]] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._state = RelayState.CONNECTING
        self._on_enter = on_enter or {}
        self._clock = clock or time.monotonic
        self._created_at = self._clock()
        self._state_entered_at = self._created_at

    @property
    def state(self) -> RelayState:
        """Current session state."""
        return self._state

    @property
    def can_forward(self) -> bool:
        """True only while directives may be sent upstream."""
        return self._state is RelayState.READY

    @property
    def is_closed(self) -> bool:
        return self._state is RelayState.CLOSED

    @property
    def elapsed_in_state_ms(self) -> int:
        """Time (ms) the session has been in the current state."""
        return int((self._clock() - self._state_entered_at) * 1000)

    @property
    def age_s(self) -> float:
        """Seconds since the session was created."""
        return self._clock() - self._created_at

    def transition(self, target: RelayState) -> None:
        """Transition to the target state.

        Raises:
            InvalidTransitionError: If the transition is invalid.
        """
        if target not in _VALID_TRANSITIONS[self._state]:
            raise InvalidTransitionError(self._state.value, target.value)

        self._state = target
        self._state_entered_at = self._clock()

        enter_cb = self._on_enter.get(target)
        if enter_cb is not None:
            enter_cb()

"""
SkinDoc — Session State Machine

Enforces the call lifecycle: IDLE → CONNECTING → JOINED → LEFT,
with ERRORED reachable from CONNECTING or JOINED (and from any
pre-join state when provisioning fails).
All state transitions go through this module so illegitimate states
are impossible and every transition is logged.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional, Set

logger = logging.getLogger("skindoc.state")


class LifecycleState(str, Enum):
    """Call lifecycle states."""
    IDLE = "idle"                # No call attempted yet
    CONNECTING = "connecting"    # Conversation provisioned, transport joining
    JOINED = "joined"            # Transport confirmed the join
    LEFT = "left"                # Left by command or by the transport
    ERRORED = "errored"          # Provisioning / connection failure


# States from which a new join() is accepted
JOINABLE_STATES = frozenset({
    LifecycleState.IDLE, LifecycleState.LEFT, LifecycleState.ERRORED,
})

# States in which a conversation URL is held
ACTIVE_STATES = frozenset({LifecycleState.CONNECTING, LifecycleState.JOINED})


# Legal state transitions
_TRANSITIONS: Dict[LifecycleState, Set[LifecycleState]] = {
    LifecycleState.IDLE:       {LifecycleState.CONNECTING, LifecycleState.ERRORED},
    LifecycleState.CONNECTING: {LifecycleState.JOINED, LifecycleState.LEFT, LifecycleState.ERRORED},
    LifecycleState.JOINED:     {LifecycleState.LEFT, LifecycleState.ERRORED},
    LifecycleState.LEFT:       {LifecycleState.CONNECTING, LifecycleState.ERRORED},
    LifecycleState.ERRORED:    {LifecycleState.CONNECTING, LifecycleState.LEFT},
}

_HISTORY_LIMIT = 50


class SessionStateMachine:
    """
    Enforces legal state transitions and notifies a listener.

    Usage:
        sm = SessionStateMachine(on_transition=my_callback)
        sm.transition(LifecycleState.CONNECTING)    # OK
        sm.transition(LifecycleState.JOINED)        # OK
        sm.transition(LifecycleState.IDLE)          # illegal → raises
    """

    def __init__(
        self,
        on_transition: Optional[Callable[[LifecycleState, LifecycleState, str], None]] = None,
    ) -> None:
        self._state = LifecycleState.IDLE
        self._on_transition = on_transition
        self._history: Deque[Dict] = deque(maxlen=_HISTORY_LIMIT)
        self._entered_at = time.time()

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def history(self) -> List[Dict]:
        return list(self._history)

    def can_transition(self, target: LifecycleState) -> bool:
        return target == self._state or target in _TRANSITIONS.get(self._state, set())

    def transition(self, target: LifecycleState, reason: str = "") -> bool:
        """
        Attempt a state transition. Raises ValueError on illegal transitions.
        Returns False when already in the target state.
        """
        if target == self._state:
            return False

        allowed = _TRANSITIONS.get(self._state, set())
        if target not in allowed:
            raise ValueError(
                f"Illegal state transition: {self._state.value} → {target.value}. "
                f"Allowed from {self._state.value}: {sorted(s.value for s in allowed)}. "
                f"Reason: {reason}"
            )

        prev = self._state
        now = time.time()
        self._history.append({
            "from": prev.value,
            "to": target.value,
            "reason": reason,
            "timestamp": now,
            "duration_in_prev_ms": round((now - self._entered_at) * 1000, 1),
        })
        self._state = target
        self._entered_at = now

        logger.info(
            f"STATE: {prev.value} → {target.value}"
            + (f" ({reason})" if reason else "")
        )

        if self._on_transition:
            try:
                self._on_transition(prev, target, reason)
            except Exception as e:
                logger.error(f"State transition callback error: {e}")
        return True

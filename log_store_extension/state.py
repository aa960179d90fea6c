"""Extension lifecycle state, owned by the lifecycle driver."""

import logging
import threading
from enum import Enum

logger = logging.getLogger(__name__)


class ExtensionState(Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    SUBSCRIBED = "subscribed"
    POLLING = "polling"
    DRAINING = "draining"
    TERMINATED = "terminated"


_TRANSITIONS = {
    ExtensionState.UNREGISTERED: {ExtensionState.REGISTERED, ExtensionState.TERMINATED},
    ExtensionState.REGISTERED: {ExtensionState.SUBSCRIBED, ExtensionState.TERMINATED},
    ExtensionState.SUBSCRIBED: {
        ExtensionState.POLLING,
        ExtensionState.DRAINING,
        ExtensionState.TERMINATED,
    },
    ExtensionState.POLLING: {ExtensionState.DRAINING, ExtensionState.TERMINATED},
    ExtensionState.DRAINING: {ExtensionState.TERMINATED},
    ExtensionState.TERMINATED: set(),
}

# States in which the receiver still accepts pushes.
ACCEPTING_STATES = frozenset({
    ExtensionState.REGISTERED,
    ExtensionState.SUBSCRIBED,
    ExtensionState.POLLING,
})


class ExtensionStateCell:
    """Holds the single process-wide ExtensionState.

    Only the lifecycle driver calls ``advance``; everyone else gets a
    ``StateView``.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._state = ExtensionState.UNREGISTERED

    @property
    def current(self) -> ExtensionState:
        with self._lock:
            return self._state

    def advance(self, new_state: ExtensionState):
        """Move to ``new_state``. Re-entering the current state is a no-op.

        Raises:
            RuntimeError: If the transition is not allowed.
        """
        with self._lock:
            old_state = self._state
            if new_state == old_state:
                return
            if new_state not in _TRANSITIONS[old_state]:
                raise RuntimeError(
                    f"Illegal state transition {old_state.name} -> {new_state.name}"
                )
            self._state = new_state
        logger.debug("State %s -> %s", old_state.name, new_state.name)

    def view(self) -> "StateView":
        return StateView(self)


class StateView:
    """Read-only access to an ExtensionStateCell."""

    def __init__(self, cell: ExtensionStateCell):
        self._cell = cell

    @property
    def current(self) -> ExtensionState:
        return self._cell.current

    @property
    def accepting(self) -> bool:
        return self._cell.current in ACCEPTING_STATES

"""
VM State Machine

Power states reported by Hyper-V and the transitions allowed between them.
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import Callable, Dict, List, Optional, Set

from common.exceptions import InvalidStateError

logger = logging.getLogger(__name__)


class VmState(Enum):
    """Msvm_ComputerSystem.EnabledState values."""
    UNKNOWN = 0
    RUNNING = 2
    OFF = 3
    SHUTTING_DOWN = 4
    NOT_APPLICABLE = 5
    DISABLED = 6
    PAUSED = 32768
    SUSPENDED = 32769
    STARTING = 32770
    SNAPSHOTTING = 32771
    SAVING = 32773
    STOPPING = 32774
    PAUSING = 32776
    RESUMING = 32777

    @classmethod
    def from_code(cls, code: Optional[int]) -> "VmState":
        """Map a state code, falling back to UNKNOWN for unrecognized values."""
        try:
            return cls(code)
        except ValueError:
            return cls.UNKNOWN

    @property
    def code(self) -> int:
        return self.value

    @property
    def label(self) -> str:
        return _LABELS.get(self, self.name.replace("_", " ").title())

    @property
    def is_transitional(self) -> bool:
        return self in _TRANSITIONAL

    def __str__(self) -> str:
        return self.label


_LABELS = {
    VmState.SUSPENDED: "Saved",
    VmState.NOT_APPLICABLE: "Not Applicable",
}

_TRANSITIONAL = frozenset({
    VmState.STARTING,
    VmState.STOPPING,
    VmState.SHUTTING_DOWN,
    VmState.SAVING,
    VmState.PAUSING,
    VmState.RESUMING,
    VmState.SNAPSHOTTING,
})


class RequestedState(Enum):
    """RequestedState argument of Msvm_ComputerSystem.RequestStateChange."""
    RUNNING = 2
    OFF = 3
    RESET = 11
    PAUSED = 32768
    SAVED = 32769

    @property
    def code(self) -> int:
        return self.value


class VMTransition(Enum):
    """Power operations guarded by the state machine."""
    START = auto()
    STOP = auto()
    PAUSE = auto()
    RESUME = auto()
    SAVE = auto()
    RESET = auto()

    @property
    def operation(self) -> str:
        return self.name.lower()


# Format: {current_state: {transition: requested_state}}
# Graceful stops do not use RequestStateChange; STOP maps to the forced request.
VALID_TRANSITIONS: Dict[VmState, Dict[VMTransition, RequestedState]] = {
    VmState.OFF: {
        VMTransition.START: RequestedState.RUNNING,
    },
    VmState.RUNNING: {
        VMTransition.STOP: RequestedState.OFF,
        VMTransition.PAUSE: RequestedState.PAUSED,
        VMTransition.SAVE: RequestedState.SAVED,
        VMTransition.RESET: RequestedState.RESET,
    },
    VmState.PAUSED: {
        VMTransition.START: RequestedState.RUNNING,
        VMTransition.STOP: RequestedState.OFF,
        VMTransition.RESUME: RequestedState.RUNNING,
        VMTransition.SAVE: RequestedState.SAVED,
    },
    VmState.SUSPENDED: {
        VMTransition.START: RequestedState.RUNNING,
        VMTransition.STOP: RequestedState.OFF,
    },
}

TransitionCallback = Callable[[str, VmState, VmState], None]


class VMStateMachine:
    """
    Guards power operations against the last known VM state.

    The state held here is a cached snapshot; the lifecycle controller
    re-syncs it from Hyper-V after every operation.
    """

    def __init__(self, vm_name: str, initial_state: VmState = VmState.UNKNOWN):
        self.vm_name = vm_name
        self._state = initial_state
        self._callbacks: List[TransitionCallback] = []

    @property
    def state(self) -> VmState:
        return self._state

    def can_transition(self, transition: VMTransition) -> bool:
        return transition in VALID_TRANSITIONS.get(self._state, {})

    def get_available_transitions(self) -> Set[VMTransition]:
        return set(VALID_TRANSITIONS.get(self._state, {}).keys())

    def require(self, transition: VMTransition) -> RequestedState:
        """
        Check a transition before it is requested.

        Returns:
            The state to request from Hyper-V

        Raises:
            InvalidStateError: If the transition is not allowed from the current state
        """
        if not self.can_transition(transition):
            raise InvalidStateError(self.vm_name, self._state.label, transition.operation)
        return VALID_TRANSITIONS[self._state][transition]

    def complete(self, transition: VMTransition, new_state: VmState) -> None:
        """Record the refreshed state after a transition and notify observers."""
        old_state = self._state
        self._state = new_state
        logger.info(
            f"VM {self.vm_name}: {old_state.label} -> {new_state.label} "
            f"(via {transition.name})"
        )

        for callback in self._callbacks:
            try:
                callback(self.vm_name, old_state, new_state)
            except Exception as e:
                logger.warning(f"Transition callback error: {e}")

    def set_state(self, state: VmState) -> None:
        """Synchronize with Hyper-V without validation or notification."""
        self._state = state
        logger.debug(f"VM {self.vm_name}: state synced to {state.label}")

    def on_transition(self, callback: TransitionCallback) -> None:
        """
        Register a callback fired after each completed transition.

        Args:
            callback: Function(vm_name, old_state, new_state)
        """
        self._callbacks.append(callback)

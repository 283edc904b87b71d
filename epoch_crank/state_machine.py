"""
Epoch Crank - Transition State Machine.

============================================================
PURPOSE
============================================================
Tracks where the orchestration loop is in an epoch transition.

STATE MACHINE:

    STEADY(E) ──────► TRANSITIONING(E -> E') ──────► STEADY(E')
                          │        ▲
             close failed │        │ next tick
                          ▼        │
                   RETRY_PENDING(E -> E', attempt N)

    RETRY_PENDING with N == MAX_CLOSE_ATTEMPTS is fatal.

INVARIANTS:
- last_epoch only moves when close and initialize both succeeded
- attempt_count resets to 0 on every completed transition
- A tick aborted before close returns to the phase it started from

============================================================
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Set

from .config import DEFAULT_MAX_CLOSE_ATTEMPTS
from .exceptions import InvalidTransitionError


logger = logging.getLogger(__name__)


MAX_CLOSE_ATTEMPTS = DEFAULT_MAX_CLOSE_ATTEMPTS


class TransitionPhase(Enum):
    """Phase of the epoch transition."""
    STEADY = "steady"
    TRANSITIONING = "transitioning"
    RETRY_PENDING = "retry_pending"


VALID_TRANSITIONS: Dict[TransitionPhase, Set[TransitionPhase]] = {
    TransitionPhase.STEADY: {
        TransitionPhase.TRANSITIONING,
    },
    TransitionPhase.TRANSITIONING: {
        TransitionPhase.STEADY,
        TransitionPhase.RETRY_PENDING,
    },
    TransitionPhase.RETRY_PENDING: {
        TransitionPhase.TRANSITIONING,
    },
}


@dataclass
class LoopState:
    """
    Loop-owned transition state.

    Owned by exactly one CrankLoop and only changed through the methods
    below.
    """

    last_epoch: int
    known_entities: frozenset[str] = field(default_factory=frozenset)
    phase: TransitionPhase = TransitionPhase.STEADY
    attempt_count: int = 0
    target_epoch: Optional[int] = None
    max_close_attempts: int = MAX_CLOSE_ATTEMPTS

    # Phase to return to when a tick aborts before close
    _entered_from: Optional[TransitionPhase] = field(default=None, repr=False)

    @property
    def close_failed(self) -> bool:
        return self.phase is TransitionPhase.RETRY_PENDING

    @property
    def retries_exhausted(self) -> bool:
        return self.attempt_count >= self.max_close_attempts

    def needs_transition(self, observed_epoch: int) -> bool:
        """Whether this tick should run the close and initialize sequence."""
        if self.phase is TransitionPhase.RETRY_PENDING:
            return not self.retries_exhausted
        return observed_epoch != self.last_epoch

    def _move(self, to_phase: TransitionPhase) -> None:
        if to_phase not in VALID_TRANSITIONS[self.phase]:
            raise InvalidTransitionError(
                f"Invalid transition: {self.phase.value} -> {to_phase.value}",
                details={"last_epoch": self.last_epoch, "attempt_count": self.attempt_count},
            )
        logger.debug(f"Transition phase {self.phase.value} -> {to_phase.value}")
        self.phase = to_phase

    def begin(self, target_epoch: int) -> None:
        """Enter TRANSITIONING toward target_epoch."""
        self._entered_from = self.phase
        self._move(TransitionPhase.TRANSITIONING)
        self.target_epoch = target_epoch

    def abort(self) -> None:
        """Leave TRANSITIONING without having attempted close."""
        if self.phase is not TransitionPhase.TRANSITIONING:
            raise InvalidTransitionError(f"Cannot abort from {self.phase.value}")
        self._move(self._entered_from or TransitionPhase.STEADY)
        if self.phase is TransitionPhase.STEADY:
            self.target_epoch = None
        self._entered_from = None

    def record_close_failure(self) -> int:
        """Enter RETRY_PENDING and return the new attempt count."""
        self._move(TransitionPhase.RETRY_PENDING)
        self.attempt_count += 1
        self._entered_from = None
        return self.attempt_count

    def complete(self, epoch: int) -> None:
        """Close and initialize both succeeded for epoch."""
        self._move(TransitionPhase.STEADY)
        self.last_epoch = epoch
        self.attempt_count = 0
        self.target_epoch = None
        self._entered_from = None

    def to_dict(self) -> dict:
        return {
            "last_epoch": self.last_epoch,
            "phase": self.phase.value,
            "attempt_count": self.attempt_count,
            "target_epoch": self.target_epoch,
            "known_entities": len(self.known_entities),
        }

from __future__ import annotations

import logging
from enum import StrEnum

from statemachine import State, StateMachine

from natsuki_quest.api.models import RewindTrigger, StateAggregate
from natsuki_quest.divergence import DivergenceMode, diff_states
from natsuki_quest.errors import CheckpointMissing
from natsuki_quest.initial_state import CanonicalState
from natsuki_quest.snapshots import SnapshotManager, structural_copy

logger = logging.getLogger(__name__)


SYSTEM_ERROR_CAUSE = "system error"
UNKNOWN_DEATH_CAUSE = "Unknown cause of death"
UNSTABLE_REWIND_NOTE = (
    "\n\n[A painful rewind... The world stabilizes, but the path is unclear. "
    "You are back at the beginning.]"
)


class RewindPhase(StrEnum):
    active = "active"
    death_signaled = "death_signaled"
    rewound = "rewound"


class RewindFSM(StateMachine):
    """Guards the order of one rewind: a death must be signaled before collapsing.

    The engine does the state work; the machine only refuses out-of-order steps.
    """

    active = State(RewindPhase.active.value, value=RewindPhase.active.value, initial=True)
    death_signaled = State(RewindPhase.death_signaled.value, value=RewindPhase.death_signaled.value)
    rewound = State(RewindPhase.rewound.value, value=RewindPhase.rewound.value)

    signal_death = active.to(death_signaled)
    collapse = death_signaled.to(rewound)
    resume = rewound.to(active)

    @property
    def phase(self) -> RewindPhase:
        return RewindPhase(str(self.current_state.value))


def failure_line(*, loop: int, outcome: str) -> str:
    return f"\n[Loop #{loop} Failed: {outcome}]"


class RewindEngine:
    def __init__(self, *, snapshots: SnapshotManager, initial: CanonicalState) -> None:
        self._snapshots = snapshots
        self._initial = initial

    def rewind(
        self,
        current: StateAggregate,
        *,
        trigger: RewindTrigger = RewindTrigger.manual,
        cause: str | None = None,
    ) -> StateAggregate:
        """Discard `current` in favor of a copy of its checkpoint.

        Never raises. Without a checkpoint the opening state is the target and
        the death is recorded as a system error.
        """

        fsm = RewindFSM()
        try:
            fsm.signal_death()
            nxt = self._collapse(current, trigger=trigger, cause=cause)
            fsm.collapse()
            fsm.resume()
        except Exception:
            logger.exception("Rewind failed at phase %s; falling back to the opening state", fsm.phase.value)
            return self._emergency(current, trigger=trigger)

        logger.info(
            "Loop %s ended (%s, trigger=%s); now loop %s",
            current.current_loop,
            nxt.last_death_cause,
            trigger.value,
            nxt.current_loop,
        )
        return nxt

    def _collapse(self, current: StateAggregate, *, trigger: RewindTrigger, cause: str | None) -> StateAggregate:
        try:
            reference = self._snapshots.require_checkpoint(current)
            death_cause = cause or current.last_outcome or UNKNOWN_DEATH_CAUSE
        except CheckpointMissing:
            logger.warning("No checkpoint at loop %s; rewinding to the opening state", current.current_loop)
            reference = self._initial.materialize()
            death_cause = SYSTEM_ERROR_CAUSE

        losses = diff_states(current, reference, DivergenceMode.final)

        nxt = structural_copy(reference)
        nxt.current_loop = current.current_loop + 1
        nxt.is_game_over = False
        nxt.memory = reference.memory + failure_line(loop=current.current_loop, outcome=current.last_outcome)
        nxt.last_rbd_losses = losses
        nxt.rbd_trigger = trigger
        nxt.last_death_cause = death_cause
        return nxt

    def _emergency(self, current: StateAggregate, *, trigger: RewindTrigger) -> StateAggregate:
        nxt = self._initial.materialize()
        nxt.current_loop = current.current_loop + 1
        nxt.is_game_over = False
        nxt.narrative = nxt.narrative + UNSTABLE_REWIND_NOTE
        nxt.memory = nxt.memory + failure_line(loop=current.current_loop, outcome=current.last_outcome)
        nxt.last_rbd_losses = []
        nxt.rbd_trigger = trigger
        nxt.last_death_cause = SYSTEM_ERROR_CAUSE
        return nxt

from __future__ import annotations

import copy
import logging
from datetime import UTC, datetime

from natsuki_quest.api.models import StateAggregate
from natsuki_quest.errors import CheckpointMissing
from natsuki_quest.initial_state import CanonicalState

logger = logging.getLogger(__name__)


DEFAULT_CHECKPOINT_REASON = "Checkpoint set by the player"


def _now() -> datetime:
    return datetime.now(tz=UTC)


def structural_copy(state: StateAggregate) -> StateAggregate:
    """Copy every field of `state` except its checkpoint, which is left empty.

    This is the only way checkpoints are made, so a checkpoint can never hold
    another one.
    """

    fields = {
        name: copy.deepcopy(getattr(state, name))
        for name in StateAggregate.model_fields
        if name != "checkpoint"
    }
    return StateAggregate.model_construct(checkpoint=None, **fields)


class SnapshotManager:
    def __init__(self, *, initial: CanonicalState) -> None:
        self._initial = initial

    def set_checkpoint(self, state: StateAggregate, *, reason: str | None = None) -> StateAggregate:
        """Return a copy of `state` whose checkpoint is a snapshot of `state` itself.

        `state` is left untouched. Any checkpoint it already had is replaced.
        """

        snapshot = structural_copy(state)
        updated = state.model_copy(
            update={
                "checkpoint": snapshot,
                "checkpoint_reason": reason or DEFAULT_CHECKPOINT_REASON,
                "checkpoint_set_at": _now(),
            },
            deep=True,
        )
        logger.info("Checkpoint set at loop %s: %s", state.current_loop, updated.checkpoint_reason)
        return updated

    def require_checkpoint(self, state: StateAggregate) -> StateAggregate:
        if state.checkpoint is None:
            raise CheckpointMissing("No checkpoint has been set")
        return state.checkpoint

    def reference_for(self, state: StateAggregate) -> StateAggregate:
        """The state a rewind would collapse into: the checkpoint, else the opening state."""

        try:
            return self.require_checkpoint(state)
        except CheckpointMissing:
            return self._initial.materialize()

    @staticmethod
    def checkpoint_age(state: StateAggregate) -> int:
        if state.checkpoint is None:
            return 0
        return max(0, state.turn_count - state.checkpoint.turn_count)

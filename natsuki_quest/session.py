from __future__ import annotations

import logging

from natsuki_quest.api.models import CheckpointStatus, LossReport, RewindTrigger, SaveSummary, StateAggregate
from natsuki_quest.coordinator import MutationCoordinator, TurnOutcome
from natsuki_quest.divergence import DivergenceMode, diff_states
from natsuki_quest.errors import LoopRegression
from natsuki_quest.generation.base import GenerationService
from natsuki_quest.initial_state import CanonicalState
from natsuki_quest.rewind import RewindEngine
from natsuki_quest.settings import GameSettings
from natsuki_quest.snapshots import SnapshotManager
from natsuki_quest.state_store import StateStore, require_state

logger = logging.getLogger(__name__)


OPENING_CHECKPOINT_REASON = "The beginning of your journey"


class GameSession:
    """Player-facing operations over one store and one opening state.

    Checkpoint, rewind and preview are pure transformations of the state
    passed in; persisting their result is the caller's choice (see `save`).
    Only `new_game` and `start_turn` write to the store themselves.
    """

    def __init__(
        self,
        *,
        store: StateStore,
        generator: GenerationService,
        initial: CanonicalState,
        settings: GameSettings | None = None,
    ) -> None:
        self.settings = settings or GameSettings()
        self._store = store
        self._initial = initial
        self.snapshots = SnapshotManager(initial=initial)
        self.rewinds = RewindEngine(snapshots=self.snapshots, initial=initial)
        self.coordinator = MutationCoordinator(
            store=store,
            generator=generator,
            snapshots=self.snapshots,
            rewinds=self.rewinds,
            settings=self.settings,
        )

    def new_game(self, owner_id: str) -> StateAggregate:
        state = self.snapshots.set_checkpoint(self._initial.materialize(), reason=OPENING_CHECKPOINT_REASON)
        self._store.put(owner_id, state)
        logger.info("New game for %s", owner_id)
        return state

    def load(self, owner_id: str) -> StateAggregate:
        return require_state(self._store, owner_id)

    def save(self, owner_id: str, state: StateAggregate) -> StateAggregate:
        """Persist `state` over the current save.

        Raises LoopRegression when `state` is from an earlier loop than the
        stored game; only `new_game` starts the count over.
        """

        stored = self._store.get(owner_id)
        if stored is not None and state.current_loop < stored.current_loop:
            raise LoopRegression(
                f"Cannot save loop {state.current_loop} over loop {stored.current_loop}; start a new game instead"
            )
        self._store.put(owner_id, state)
        return state

    def list_saves(self) -> list[SaveSummary]:
        summaries = []
        for owner_id in self._store.owners():
            state = self._store.get(owner_id)
            if state is not None:
                summaries.append(SaveSummary.of(owner_id, state))
        return summaries

    async def start_turn(
        self,
        *,
        owner_id: str,
        action: str,
        prior_state: StateAggregate | None = None,
        auxiliary_context: dict[str, str] | None = None,
    ) -> TurnOutcome:
        return await self.coordinator.start_turn(
            owner_id=owner_id,
            action=action,
            prior_state=prior_state,
            auxiliary_context=auxiliary_context,
        )

    def set_checkpoint(self, state: StateAggregate, *, reason: str | None = None) -> StateAggregate:
        return self.snapshots.set_checkpoint(state, reason=reason)

    def trigger_rewind(
        self,
        state: StateAggregate,
        *,
        trigger: RewindTrigger | None = None,
        cause: str | None = None,
    ) -> StateAggregate:
        # Rewinding from the game-over screen follows a death the game master narrated.
        if trigger is None:
            trigger = RewindTrigger.ai_automatic if state.is_game_over else RewindTrigger.manual
        return self.rewinds.rewind(state, trigger=trigger, cause=cause)

    def preview_potential_losses(self, state: StateAggregate) -> LossReport:
        """What a rewind right now would take away, worded as a forecast."""

        return diff_states(state, self.snapshots.reference_for(state), DivergenceMode.preview)

    def checkpoint_status(self, state: StateAggregate) -> CheckpointStatus:
        return CheckpointStatus(
            has_checkpoint=state.checkpoint is not None,
            checkpoint_age=self.snapshots.checkpoint_age(state),
            checkpoint_reason=state.checkpoint_reason if state.checkpoint is not None else None,
            losses=self.preview_potential_losses(state),
        )

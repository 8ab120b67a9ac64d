from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass

from pydantic import ValidationError

from natsuki_quest.api.models import RewindTrigger, StateAggregate, StateProjection, TurnProvenance
from natsuki_quest.errors import GameNotFound, GenerationUnavailable, StoreUnavailable
from natsuki_quest.generation.base import GenerationRequest, GenerationResult, GenerationService
from natsuki_quest.rewind import RewindEngine
from natsuki_quest.settings import GameSettings
from natsuki_quest.snapshots import SnapshotManager
from natsuki_quest.state_store import StateStore

logger = logging.getLogger(__name__)


APOLOGY_LINE = (
    "\n\n[An error occurred. The threads of fate are tangled. "
    "Please try a different choice or start a new loop.]"
)
FALLBACK_CHOICES = ("Try again",)

DEFAULT_AI_CHECKPOINT_REASON = "Strategic save point set by the game master"
DEFAULT_AI_REWIND_REASON = "The game master determined this death required immediate return."

# Fields the generation result may overwrite, in overlay order.
DELTA_FIELDS = ("narrative", "choices", "inventory", "characters", "is_game_over", "last_outcome")


@dataclass(frozen=True, slots=True)
class TurnOutcome:
    state: StateAggregate
    provenance: TurnProvenance


def tool_touched_fields(prior: StateAggregate, after_tools: StateAggregate) -> set[str]:
    """Delta fields whose stored value changed while the generation call ran."""

    return {name for name in DELTA_FIELDS if getattr(prior, name) != getattr(after_tools, name)}


def append_memory(memory: str, line: str, *, limit: int) -> str:
    combined = memory + line
    return combined[-limit:] if limit > 0 else combined


class MutationCoordinator:
    """Runs one player turn as a fixed pipeline.

    read prior -> generate (tools may write the store meanwhile) -> re-read ->
    merge (tool writes win over the generation delta) -> checkpoint / rewind
    decisions -> persist.

    Every path returns a playable state; failures are reported through
    `TurnProvenance.warnings` and the log rather than raised.
    """

    def __init__(
        self,
        *,
        store: StateStore,
        generator: GenerationService,
        snapshots: SnapshotManager,
        rewinds: RewindEngine,
        settings: GameSettings,
    ) -> None:
        self._store = store
        self._generator = generator
        self._snapshots = snapshots
        self._rewinds = rewinds
        self._settings = settings

    async def start_turn(
        self,
        *,
        owner_id: str,
        action: str,
        prior_state: StateAggregate | None = None,
        auxiliary_context: dict[str, str] | None = None,
        timeout_s: float | None = None,
    ) -> TurnOutcome:
        provenance = TurnProvenance()
        prior = self._read_prior(owner_id=owner_id, fallback=prior_state, provenance=provenance)

        request = GenerationRequest(
            owner_id=owner_id,
            projection=StateProjection.of(prior),
            player_action=action,
            auxiliary_context=dict(auxiliary_context or {}),
        )
        timeout = timeout_s if timeout_s is not None else self._settings.generation_timeout_s

        try:
            result = await asyncio.wait_for(self._generator.generate(request), timeout=timeout)
        except TimeoutError:
            logger.warning("Generation for %s timed out after %.1fs", owner_id, timeout)
            return self._failed_turn(prior, provenance, f"Generation timed out after {timeout:.1f}s")
        except (GenerationUnavailable, ValidationError) as e:
            logger.warning("Generation for %s unavailable: %s", owner_id, e)
            return self._failed_turn(prior, provenance, f"Generation unavailable: {e}")
        except Exception as e:
            # The generation service is opaque; nothing it does may break the turn.
            logger.exception("Generation for %s failed unexpectedly", owner_id)
            return self._failed_turn(prior, provenance, f"Generation failed: {type(e).__name__}")

        base = self._reread(owner_id=owner_id, prior=prior, provenance=provenance)
        state = self._merge(prior=prior, base=base, result=result, action=action, provenance=provenance)
        state = self._apply_decisions(state=state, result=result, provenance=provenance)

        try:
            self._store.put(owner_id, state)
            provenance.persisted = True
        except StoreUnavailable as e:
            logger.error("Turn for %s computed but not saved: %s", owner_id, e)
            provenance.warnings.append(f"State could not be saved: {e}")

        return TurnOutcome(state=state, provenance=provenance)

    def _read_prior(
        self,
        *,
        owner_id: str,
        fallback: StateAggregate | None,
        provenance: TurnProvenance,
    ) -> StateAggregate:
        try:
            stored = self._store.get(owner_id)
        except StoreUnavailable as e:
            if fallback is None:
                raise
            logger.warning("Store unavailable before turn for %s; using caller state: %s", owner_id, e)
            provenance.warnings.append(f"Store unavailable, continuing from the displayed state: {e}")
            return fallback

        if stored is not None:
            return stored
        if fallback is None:
            raise GameNotFound("Game not found")

        # Tools read the store, so an unsaved game is written before they run.
        try:
            self._store.put(owner_id, fallback)
        except StoreUnavailable as e:
            logger.warning("Could not seed store for %s: %s", owner_id, e)
            provenance.warnings.append(f"Store unavailable, tool effects may be lost: {e}")
        return fallback

    def _reread(self, *, owner_id: str, prior: StateAggregate, provenance: TurnProvenance) -> StateAggregate:
        try:
            after_tools = self._store.get(owner_id)
        except StoreUnavailable as e:
            logger.warning("Re-read after generation failed for %s; merging onto prior state: %s", owner_id, e)
            provenance.warnings.append(f"Tool changes could not be re-read and may be missing: {e}")
            return prior

        if after_tools is None:
            logger.warning("Save for %s vanished during generation; merging onto prior state", owner_id)
            provenance.warnings.append("Save disappeared during the turn; tool changes may be missing")
            return prior
        return after_tools

    def _merge(
        self,
        *,
        prior: StateAggregate,
        base: StateAggregate,
        result: GenerationResult,
        action: str,
        provenance: TurnProvenance,
    ) -> StateAggregate:
        touched = tool_touched_fields(prior, base)
        merged = base.model_copy(deep=True)

        for name in DELTA_FIELDS:
            value = getattr(result, name)
            if value is None:
                continue
            if name in touched:
                logger.debug("Keeping tool-applied %s over the generation delta", name)
                provenance.tool_fields_kept.append(name)
                continue
            setattr(merged, name, copy.deepcopy(value))

        merged.turn_count = base.turn_count + 1
        merged.memory = append_memory(
            merged.memory,
            f"\n- Chose '{action}', which resulted in: {merged.last_outcome}",
            limit=self._settings.memory_limit,
        )
        return merged

    def _apply_decisions(
        self,
        *,
        state: StateAggregate,
        result: GenerationResult,
        provenance: TurnProvenance,
    ) -> StateAggregate:
        if result.should_set_checkpoint:
            reason = result.checkpoint_reason or DEFAULT_AI_CHECKPOINT_REASON
            state = self._snapshots.set_checkpoint(state, reason=reason)
            provenance.ai_checkpoint_set = True
            provenance.checkpoint_reason = reason

        if result.should_trigger_rewind:
            if state.is_game_over:
                # The player sees the game-over screen and rewinds from there.
                logger.info("Ignoring rewind request at loop %s: game over is shown", state.current_loop)
            else:
                reason = result.rewind_reason or DEFAULT_AI_REWIND_REASON
                state = self._rewinds.rewind(
                    state,
                    trigger=RewindTrigger.ai_narrative,
                    cause=state.last_outcome or result.rewind_reason,
                )
                provenance.ai_rbd_triggered = True
                provenance.rbd_reason = reason

        return state

    def _failed_turn(self, prior: StateAggregate, provenance: TurnProvenance, warning: str) -> TurnOutcome:
        failed = prior.model_copy(deep=True)
        failed.narrative = prior.narrative + APOLOGY_LINE
        failed.choices = list(prior.choices) or list(FALLBACK_CHOICES)
        provenance.generation_failed = True
        provenance.warnings.append(warning)
        return TurnOutcome(state=failed, provenance=provenance)

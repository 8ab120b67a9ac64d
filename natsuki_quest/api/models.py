from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator


class Character(BaseModel):
    name: str
    affinity: int = Field(0, ge=0, le=100)
    status: str = "Met"
    description: str = ""
    avatar: str = "https://placehold.co/100x100.png"

    # Where the character currently is; None until a tool places them.
    current_location: str | None = None


class Item(BaseModel):
    id: str
    name: str
    description: str = ""
    icon: str = ""
    quantity: int = Field(1, ge=1)


class Skill(BaseModel):
    id: str
    name: str
    description: str = ""
    icon: str = ""


class QuestCategory(StrEnum):
    main = "MAIN"
    side = "SIDE"
    romance = "ROMANCE"
    faction = "FACTION"
    exploration = "EXPLORATION"


class QuestStatus(StrEnum):
    active = "ACTIVE"
    completed = "COMPLETED"
    failed = "FAILED"
    paused = "PAUSED"


class QuestObjective(BaseModel):
    id: str
    description: str
    is_completed: bool = False
    progress: int | None = None
    max_progress: int | None = None


class Quest(BaseModel):
    id: str
    title: str
    description: str = ""
    category: QuestCategory = QuestCategory.side
    status: QuestStatus = QuestStatus.active
    objectives: list[QuestObjective] = Field(default_factory=list)
    location: str | None = None
    npcs_involved: list[str] = Field(default_factory=list)


class ReputationChange(BaseModel):
    amount: int
    reason: str
    location: str | None = None
    timestamp: datetime


class Reputation(BaseModel):
    id: str
    faction: str
    level: int = Field(0, ge=-100, le=100)
    title: str | None = None
    history: list[ReputationChange] = Field(default_factory=list)


class ConflictType(StrEnum):
    jealousy = "JEALOUSY"
    rivalry = "RIVALRY"
    romance = "ROMANCE"
    political = "POLITICAL"
    personal = "PERSONAL"


class RelationshipConflict(BaseModel):
    id: str
    characters: list[str]
    conflict_type: ConflictType = ConflictType.personal
    description: str = ""
    is_resolved: bool = False
    resolution: str | None = None


class LossCategory(StrEnum):
    inventory = "inventory"
    relationship = "relationship"
    quest = "quest"
    skill = "skill"
    location = "location"
    knowledge = "knowledge"


class LossSeverity(StrEnum):
    minor = "minor"
    moderate = "moderate"
    major = "major"


class LossEntry(BaseModel):
    category: LossCategory
    description: str
    details: str
    severity: LossSeverity


# Ordered; at most one entry per category.
LossReport = list[LossEntry]


class RewindTrigger(StrEnum):
    manual = "manual"
    ai_automatic = "ai_automatic"
    ai_narrative = "ai_narrative"


class StateAggregate(BaseModel):
    """Everything persisted for one player.

    Optional fields are explicit: `None` means "never set", which is not the
    same as an empty value (e.g. `last_rbd_losses=[]` after a loss-free rewind).
    """

    narrative: str = ""
    choices: list[str] = Field(default_factory=list)

    characters: list[Character] = Field(default_factory=list)
    inventory: list[Item] = Field(default_factory=list)
    skills: list[Skill] = Field(default_factory=list)

    active_quests: list[Quest] = Field(default_factory=list)
    completed_quests: list[Quest] = Field(default_factory=list)
    reputations: list[Reputation] = Field(default_factory=list)

    current_location: str = ""
    # Set semantics, kept as a list so saves stay stable in insertion order.
    discovered_lore: list[str] = Field(default_factory=list)
    relationship_conflicts: list[RelationshipConflict] = Field(default_factory=list)

    current_loop: int = Field(1, ge=1)
    # Completed turns in the current timeline; restored with the checkpoint on rewind.
    turn_count: int = Field(0, ge=0)
    is_game_over: bool = False
    last_outcome: str = ""

    # Survives rewinds; the only thing the player carries between loops.
    memory: str = ""

    checkpoint: StateAggregate | None = None
    checkpoint_reason: str | None = None
    checkpoint_set_at: datetime | None = None

    # Provenance of the most recent rewind.
    last_rbd_losses: list[LossEntry] | None = None
    rbd_trigger: RewindTrigger | None = None
    last_death_cause: str | None = None

    @field_validator("checkpoint")
    @classmethod
    def _checkpoint_has_depth_one(cls, value: StateAggregate | None) -> StateAggregate | None:
        # Old saves may carry nested checkpoints; a checkpoint never holds one.
        if value is not None and value.checkpoint is not None:
            return value.model_copy(update={"checkpoint": None})
        return value


class StateProjection(BaseModel):
    """Read-only view of a state handed to the generation service."""

    model_config = {"frozen": True}

    narrative: str
    choices: tuple[str, ...]
    characters: tuple[Character, ...]
    inventory: tuple[Item, ...]
    skills: tuple[Skill, ...]
    active_quests: tuple[Quest, ...]
    current_location: str
    discovered_lore: tuple[str, ...]
    memory: str
    current_loop: int

    @classmethod
    def of(cls, state: StateAggregate) -> StateProjection:
        copied = state.model_copy(deep=True)
        return cls(
            narrative=copied.narrative,
            choices=tuple(copied.choices),
            characters=tuple(copied.characters),
            inventory=tuple(copied.inventory),
            skills=tuple(copied.skills),
            active_quests=tuple(copied.active_quests),
            current_location=copied.current_location,
            discovered_lore=tuple(copied.discovered_lore),
            memory=copied.memory,
            current_loop=copied.current_loop,
        )


class TurnProvenance(BaseModel):
    """What happened during a turn, for the UI to surface."""

    ai_checkpoint_set: bool = False
    checkpoint_reason: str | None = None
    ai_rbd_triggered: bool = False
    rbd_reason: str | None = None

    # Fields where a tool mutation beat the generation delta.
    tool_fields_kept: list[str] = Field(default_factory=list)

    generation_failed: bool = False
    persisted: bool = False
    warnings: list[str] = Field(default_factory=list)


# ---- HTTP payloads ----


class TurnRequest(BaseModel):
    action: str = Field(..., min_length=1, max_length=2000)


class TurnResponse(BaseModel):
    state: StateAggregate
    provenance: TurnProvenance


class CheckpointRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class RewindRequest(BaseModel):
    # None: ai_automatic when rewinding from a game over, manual otherwise.
    trigger: RewindTrigger | None = None
    cause: str | None = Field(None, max_length=500)


class CheckpointStatus(BaseModel):
    has_checkpoint: bool
    # Turns played since the checkpoint was taken.
    checkpoint_age: int
    checkpoint_reason: str | None = None
    losses: list[LossEntry] = Field(default_factory=list)


class SaveSummary(BaseModel):
    owner_id: str
    current_loop: int
    current_location: str
    is_game_over: bool
    checkpoint_reason: str | None = None

    @classmethod
    def of(cls, owner_id: str, state: StateAggregate) -> SaveSummary:
        return cls(
            owner_id=owner_id,
            current_loop=state.current_loop,
            current_location=state.current_location,
            is_game_over=state.is_game_over,
            checkpoint_reason=state.checkpoint_reason if state.checkpoint is not None else None,
        )


class SaveListResponse(BaseModel):
    saves: list[SaveSummary]


# ---- WebSocket events ----


class StateChange(StrEnum):
    new_game = "new_game"
    saved = "saved"
    turn = "turn"
    checkpoint = "checkpoint"
    rewind = "rewind"


class StateEvent(BaseModel):
    """Pushed to a player's sockets after their save changes.

    Carries enough for a status bar (loop, checkpoint, how the last death was
    handled) without shipping the whole aggregate.
    """

    type: str = "state_updated"
    owner_id: str
    change: StateChange
    current_loop: int
    is_game_over: bool
    has_checkpoint: bool
    checkpoint_reason: str | None = None
    ai_checkpoint_set: bool = False
    ai_rbd_triggered: bool = False
    rbd_trigger: RewindTrigger | None = None
    last_death_cause: str | None = None
    losses: int = 0
    # Set when the turn fell back to the prior state.
    generation_failed: bool = False

    @classmethod
    def of(
        cls,
        owner_id: str,
        change: StateChange,
        state: StateAggregate,
        provenance: TurnProvenance | None = None,
    ) -> StateEvent:
        rewound = change == StateChange.rewind or (provenance is not None and provenance.ai_rbd_triggered)
        return cls(
            owner_id=owner_id,
            change=change,
            current_loop=state.current_loop,
            is_game_over=state.is_game_over,
            has_checkpoint=state.checkpoint is not None,
            checkpoint_reason=state.checkpoint_reason if state.checkpoint is not None else None,
            ai_checkpoint_set=provenance.ai_checkpoint_set if provenance else False,
            ai_rbd_triggered=provenance.ai_rbd_triggered if provenance else False,
            rbd_trigger=state.rbd_trigger if rewound else None,
            last_death_cause=state.last_death_cause if rewound else None,
            losses=len(state.last_rbd_losses or []) if rewound else 0,
            generation_failed=provenance.generation_failed if provenance else False,
        )

"""Named state mutations the game master can call mid-generation.

Each call is an independent read-merge-write against the store for one
owner: load the latest save, change one thing, write it back. Later calls in
the same turn see the effects of earlier ones.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from natsuki_quest.api.models import (
    Character,
    ConflictType,
    Item,
    Quest,
    QuestCategory,
    QuestObjective,
    QuestStatus,
    RelationshipConflict,
    Reputation,
    ReputationChange,
    Skill,
    StateAggregate,
)
from natsuki_quest.errors import StoreUnavailable
from natsuki_quest.generation.base import ToolCall
from natsuki_quest.state_store import StateStore

logger = logging.getLogger(__name__)


MAX_REPUTATION_STEP = 20


class ToolRejected(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class ToolResult:
    name: str
    success: bool
    message: str


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


def _character(state: StateAggregate, name: str) -> Character:
    for char in state.characters:
        if char.name.casefold() == name.casefold():
            return char
    raise ToolRejected(f"Unknown character: {name}")


# ---- inventory ----


class InventoryArgs(BaseModel):
    item_id: str
    item_name: str
    item_description: str = ""
    item_icon: str = ""
    quantity: int


def update_player_inventory(state: StateAggregate, args: InventoryArgs) -> str:
    if args.quantity == 0:
        raise ToolRejected("quantity must be non-zero")

    idx = next((i for i, item in enumerate(state.inventory) if item.id == args.item_id), None)

    if args.quantity > 0:
        if idx is None:
            state.inventory.append(
                Item(
                    id=args.item_id,
                    name=args.item_name,
                    description=args.item_description,
                    icon=args.item_icon,
                    quantity=args.quantity,
                )
            )
        else:
            state.inventory[idx].quantity += args.quantity
        return f"Added {args.quantity} {args.item_name}(s) to inventory"

    if idx is None:
        raise ToolRejected(f"Cannot remove {args.item_name} - item not found in inventory")
    remaining = state.inventory[idx].quantity + args.quantity
    if remaining <= 0:
        del state.inventory[idx]
    else:
        state.inventory[idx].quantity = remaining
    return f"Removed {abs(args.quantity)} {args.item_name}(s) from inventory"


# ---- characters ----


class AffinityArgs(BaseModel):
    character_name: str
    change: int
    reason: str = ""


def update_character_affinity(state: StateAggregate, args: AffinityArgs) -> str:
    char = _character(state, args.character_name)
    before = char.affinity
    char.affinity = _clamp(before + args.change, 0, 100)
    return f"{char.name} affinity {before} -> {char.affinity}"


class IntroduceCharacterArgs(BaseModel):
    name: str
    description: str = ""
    status: str = "Met"
    affinity: int = Field(0, ge=0, le=100)
    location: str | None = None


def introduce_character(state: StateAggregate, args: IntroduceCharacterArgs) -> str:
    if any(c.name.casefold() == args.name.casefold() for c in state.characters):
        raise ToolRejected(f"{args.name} is already known")
    state.characters.append(
        Character(
            name=args.name,
            affinity=args.affinity,
            status=args.status,
            description=args.description,
            current_location=args.location or state.current_location or None,
        )
    )
    return f"{args.name} introduced"


class CharacterLocationArgs(BaseModel):
    character_name: str
    new_location: str


def update_character_location(state: StateAggregate, args: CharacterLocationArgs) -> str:
    char = _character(state, args.character_name)
    old = char.current_location or "an unknown place"
    char.current_location = args.new_location
    return f"{char.name} moved from {old} to {args.new_location}"


# ---- world ----


class PlayerLocationArgs(BaseModel):
    location: str = Field(..., min_length=1)


def set_player_location(state: StateAggregate, args: PlayerLocationArgs) -> str:
    old = state.current_location
    state.current_location = args.location
    return f"Moved from {old} to {args.location}"


class ReputationArgs(BaseModel):
    faction: str
    change: int
    reason: str


_REPUTATION_TIERS = (
    (80, "Champion"),
    (60, "Hero"),
    (40, "Ally"),
    (20, "Friend"),
    (0, "Neutral"),
    (-20, "Unfriendly"),
    (-40, "Hostile"),
    (-60, "Enemy"),
    (-80, "Nemesis"),
)


def reputation_title(faction: str, level: int) -> str:
    for floor, label in _REPUTATION_TIERS:
        if level >= floor:
            return f"{faction} {label}"
    return f"{faction} Archenemy"


def adjust_reputation(state: StateAggregate, args: ReputationArgs) -> str:
    step = _clamp(args.change, -MAX_REPUTATION_STEP, MAX_REPUTATION_STEP)
    rep = next((r for r in state.reputations if r.faction.casefold() == args.faction.casefold()), None)
    if rep is None:
        slug = "_".join(args.faction.casefold().split())
        rep = Reputation(id=f"rep_{slug}", faction=args.faction)
        state.reputations.append(rep)

    rep.level = _clamp(rep.level + step, -100, 100)
    rep.title = reputation_title(rep.faction, rep.level)
    rep.history.append(
        ReputationChange(amount=step, reason=args.reason, location=state.current_location or None, timestamp=_now())
    )
    return f"{rep.faction} reputation {step:+d} (now {rep.level}, {rep.title})"


class LoreArgs(BaseModel):
    lore_id: str = Field(..., min_length=1)


def discover_lore(state: StateAggregate, args: LoreArgs) -> str:
    if args.lore_id in state.discovered_lore:
        return f"Lore {args.lore_id} was already known"
    state.discovered_lore.append(args.lore_id)
    return f"Lore {args.lore_id} discovered"


class SkillArgs(BaseModel):
    skill_id: str
    name: str
    description: str = ""
    icon: str = ""


def learn_skill(state: StateAggregate, args: SkillArgs) -> str:
    if any(s.id == args.skill_id for s in state.skills):
        raise ToolRejected(f"Skill {args.skill_id} already learned")
    state.skills.append(Skill(id=args.skill_id, name=args.name, description=args.description, icon=args.icon))
    return f"Learned {args.name}"


# ---- quests ----


class CreateQuestArgs(BaseModel):
    quest_id: str
    title: str
    description: str = ""
    category: QuestCategory = QuestCategory.side
    location: str | None = None
    objectives: list[str] = Field(default_factory=list)


def create_quest(state: StateAggregate, args: CreateQuestArgs) -> str:
    known = {q.id for q in state.active_quests} | {q.id for q in state.completed_quests}
    if args.quest_id in known:
        raise ToolRejected(f"Quest {args.quest_id} already exists")
    state.active_quests.append(
        Quest(
            id=args.quest_id,
            title=args.title,
            description=args.description,
            category=args.category,
            location=args.location,
            objectives=[
                QuestObjective(id=f"{args.quest_id}_obj_{n}", description=text)
                for n, text in enumerate(args.objectives, start=1)
            ],
        )
    )
    return f"Quest started: {args.title}"


class CompleteQuestArgs(BaseModel):
    quest_id: str


def complete_quest(state: StateAggregate, args: CompleteQuestArgs) -> str:
    idx = next((i for i, q in enumerate(state.active_quests) if q.id == args.quest_id), None)
    if idx is None:
        raise ToolRejected(f"No active quest {args.quest_id}")
    quest = state.active_quests.pop(idx)
    quest.status = QuestStatus.completed
    for objective in quest.objectives:
        objective.is_completed = True
    state.completed_quests.append(quest)
    return f"Quest completed: {quest.title}"


# ---- relationship conflicts ----


class ConflictArgs(BaseModel):
    conflict_id: str
    characters: list[str] = Field(..., min_length=2)
    conflict_type: ConflictType = ConflictType.personal
    description: str = ""


def record_relationship_conflict(state: StateAggregate, args: ConflictArgs) -> str:
    if any(c.id == args.conflict_id for c in state.relationship_conflicts):
        raise ToolRejected(f"Conflict {args.conflict_id} already recorded")
    state.relationship_conflicts.append(
        RelationshipConflict(
            id=args.conflict_id,
            characters=args.characters,
            conflict_type=args.conflict_type,
            description=args.description,
        )
    )
    return f"Conflict between {', '.join(args.characters)} recorded"


class ResolveConflictArgs(BaseModel):
    conflict_id: str
    resolution: str


def resolve_relationship_conflict(state: StateAggregate, args: ResolveConflictArgs) -> str:
    conflict = next((c for c in state.relationship_conflicts if c.id == args.conflict_id), None)
    if conflict is None:
        raise ToolRejected(f"No conflict {args.conflict_id}")
    conflict.is_resolved = True
    conflict.resolution = args.resolution
    return f"Conflict {args.conflict_id} resolved"


# ---- registry ----


@dataclass(frozen=True, slots=True)
class ToolSpec:
    name: str
    description: str
    args_model: type[BaseModel]
    apply: Callable[[StateAggregate, Any], str]

    def describe(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "arguments": self.args_model.model_json_schema()}


DEFAULT_TOOLS: dict[str, ToolSpec] = {
    spec.name: spec
    for spec in (
        ToolSpec(
            "update_player_inventory",
            "Add (positive quantity) or remove (negative quantity) items from the player's inventory.",
            InventoryArgs,
            update_player_inventory,
        ),
        ToolSpec(
            "update_character_affinity",
            "Change how a known character feels about the player (affinity stays within 0-100).",
            AffinityArgs,
            update_character_affinity,
        ),
        ToolSpec("introduce_character", "Add a newly met character to the roster.", IntroduceCharacterArgs, introduce_character),
        ToolSpec(
            "update_character_location",
            "Move a known character to another location.",
            CharacterLocationArgs,
            update_character_location,
        ),
        ToolSpec("set_player_location", "Move the player to a new location.", PlayerLocationArgs, set_player_location),
        ToolSpec(
            "adjust_reputation",
            "Adjust standing with a faction (at most 20 points per call) and log why.",
            ReputationArgs,
            adjust_reputation,
        ),
        ToolSpec("discover_lore", "Mark a lore entry as discovered.", LoreArgs, discover_lore),
        ToolSpec("learn_skill", "Grant the player a new skill.", SkillArgs, learn_skill),
        ToolSpec("create_quest", "Start a quest with optional objectives.", CreateQuestArgs, create_quest),
        ToolSpec("complete_quest", "Mark an active quest as completed.", CompleteQuestArgs, complete_quest),
        ToolSpec(
            "record_relationship_conflict",
            "Record a conflict between two or more characters.",
            ConflictArgs,
            record_relationship_conflict,
        ),
        ToolSpec(
            "resolve_relationship_conflict",
            "Resolve a previously recorded relationship conflict.",
            ResolveConflictArgs,
            resolve_relationship_conflict,
        ),
    )
}


class ToolExecutor:
    def __init__(self, *, store: StateStore, tools: Mapping[str, ToolSpec] | None = None) -> None:
        self._store = store
        self._tools = dict(tools if tools is not None else DEFAULT_TOOLS)

    def describe(self) -> list[dict[str, Any]]:
        return [spec.describe() for spec in self._tools.values()]

    def execute(self, *, owner_id: str, call: ToolCall) -> ToolResult:
        """Run one tool call to completion. Failures come back as results, not exceptions."""

        spec = self._tools.get(call.name)
        if spec is None:
            return ToolResult(call.name, False, f"Unknown tool: {call.name}")

        try:
            args = spec.args_model.model_validate(call.arguments)
        except ValidationError as e:
            return ToolResult(call.name, False, f"Invalid arguments: {e.error_count()} errors")

        try:
            state = self._store.get(owner_id)
            if state is None:
                return ToolResult(call.name, False, "No game save found for this player")
            message = spec.apply(state, args)
            self._store.put(owner_id, state)
        except ToolRejected as e:
            return ToolResult(call.name, False, str(e))
        except StoreUnavailable as e:
            logger.warning("Tool %s for %s hit the store: %s", call.name, owner_id, e)
            return ToolResult(call.name, False, "Failed due to a storage error")

        logger.info("Tool %s for %s: %s", call.name, owner_id, message)
        return ToolResult(call.name, True, message)

    def execute_all(self, *, owner_id: str, calls: list[ToolCall]) -> list[ToolResult]:
        # In order; each call observes the previous call's write.
        return [self.execute(owner_id=owner_id, call=call) for call in calls]

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from natsuki_quest.api.models import StateAggregate


@dataclass(frozen=True, slots=True)
class CanonicalState:
    """The opening state of a new game, held as an immutable serialized value.

    Passed explicitly into the session so rewinds without a checkpoint have a
    well-defined target. `materialize()` hands out an independent copy each time.
    """

    payload: str

    @staticmethod
    def from_state(state: StateAggregate) -> CanonicalState:
        if state.checkpoint is not None:
            raise ValueError("The canonical initial state cannot carry a checkpoint")
        return CanonicalState(payload=state.model_dump_json())

    def materialize(self) -> StateAggregate:
        return StateAggregate.model_validate_json(self.payload)


_OPENING_NARRATIVE = (
    "You blink, and the familiar sight of the convenience store dissolves into a riot of color and noise. "
    "A bustling street, filled with strange people and stranger creatures, stretches before you. "
    "A dragon-drawn carriage clatters past. The air smells of spices you can't name. "
    "This is definitely not Japan. You are Natsuki Subaru, and your adventure in another world has just begun. "
    "Before you can get your bearings, you spot a flash of silver hair and purple eyes in the crowd: "
    "a girl with an ethereal beauty, clearly in distress."
)


def _opening(now: datetime) -> dict[str, Any]:
    market = "Lugunica Capital - Market District"
    return {
        "narrative": _OPENING_NARRATIVE,
        "choices": [
            "Try to help the silver-haired girl.",
            "Ignore her and explore the city.",
            "Look for someone who can explain what's happening.",
        ],
        "characters": [
            {
                "name": "Emilia",
                "affinity": 10,
                "status": "Met",
                "description": "A kind-hearted half-elf with a troubled past, currently a candidate for the royal selection.",
                "current_location": market,
            },
            {
                "name": "Puck",
                "affinity": 5,
                "status": "Met",
                "description": "Emilia's spirit companion, a powerful being in the form of a small, cat-like creature.",
                "current_location": market,
            },
        ],
        "inventory": [
            {
                "id": "item_1",
                "name": "Flip Phone",
                "description": "A relic from your old world. Mostly useless, but holds sentimental value.",
                "icon": "Smartphone",
            },
            {
                "id": "item_2",
                "name": "Bag of Groceries",
                "description": "Some snacks you bought. Might come in handy.",
                "icon": "ShoppingBag",
            },
        ],
        "skills": [
            {
                "id": "skill_1",
                "name": "Return by Death",
                "description": (
                    "Upon death, you return to a previous 'save point' in time. "
                    "You are the only one who remembers what happened."
                ),
                "icon": "ClockRewind",
            }
        ],
        "active_quests": [
            {
                "id": "quest_main_1",
                "title": "Find Your Place in This New World",
                "description": (
                    "You've been transported to a fantasy world. "
                    "Figure out how to survive and find your purpose."
                ),
                "category": "MAIN",
                "status": "ACTIVE",
                "objectives": [
                    {
                        "id": "obj_1",
                        "description": "Meet the locals and understand the world",
                        "progress": 0,
                        "max_progress": 3,
                    },
                    {"id": "obj_2", "description": "Find a place to stay for the night"},
                ],
                "location": "Lugunica Capital",
                "npcs_involved": ["Emilia"],
            }
        ],
        "reputations": [
            {"id": "rep_lugunica", "faction": "Kingdom of Lugunica", "level": 0},
            {
                "id": "rep_emilia_camp",
                "faction": "Emilia Camp",
                "level": 5,
                "title": "Curious Stranger",
                "history": [
                    {
                        "amount": 5,
                        "reason": "Initial meeting with Emilia",
                        "location": "Lugunica Capital",
                        "timestamp": now.isoformat(),
                    }
                ],
            },
        ],
        "current_location": market,
    }


def default_canonical_state(*, now: datetime | None = None) -> CanonicalState:
    state = StateAggregate.model_validate(_opening(now or datetime.now(tz=UTC)))
    return CanonicalState.from_state(state)

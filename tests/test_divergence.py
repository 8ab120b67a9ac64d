from __future__ import annotations

from natsuki_quest.api.models import (
    Character,
    Item,
    LossCategory,
    LossSeverity,
    Quest,
    Skill,
    StateAggregate,
)
from natsuki_quest.divergence import DivergenceMode, diff_states


def _items(*ids: str) -> list[Item]:
    return [Item(id=i, name=f"Item {i}") for i in ids]


def _by_category(report, category: LossCategory):  # type: ignore[no-untyped-def]
    return next((e for e in report if e.category == category), None)


def test_two_lost_items_are_moderate() -> None:
    current = StateAggregate(inventory=_items("A", "B", "C"))
    reference = StateAggregate(inventory=_items("A"))

    entry = _by_category(diff_states(current, reference), LossCategory.inventory)

    assert entry is not None
    assert entry.severity == LossSeverity.moderate
    assert entry.description == "2 items lost"
    assert entry.details == "Item B, Item C"


def test_four_lost_items_are_major() -> None:
    current = StateAggregate(inventory=_items("A", "B", "C", "D", "E"))
    reference = StateAggregate(inventory=_items("A"))

    entry = _by_category(diff_states(current, reference), LossCategory.inventory)

    assert entry is not None
    assert entry.severity == LossSeverity.major


def test_single_lost_item_is_minor() -> None:
    entry = _by_category(
        diff_states(StateAggregate(inventory=_items("A", "B")), StateAggregate(inventory=_items("A"))),
        LossCategory.inventory,
    )
    assert entry is not None
    assert entry.severity == LossSeverity.minor
    assert entry.description == "1 item lost"


def test_same_inventory_ids_produce_no_inventory_entry() -> None:
    current = StateAggregate(inventory=[Item(id="A", name="Apple", quantity=5)])
    reference = StateAggregate(inventory=[Item(id="A", name="Apple", quantity=1)])

    assert _by_category(diff_states(current, reference), LossCategory.inventory) is None


def test_large_affinity_change_is_major() -> None:
    current = StateAggregate(characters=[Character(name="Emilia", affinity=80)])
    reference = StateAggregate(characters=[Character(name="Emilia", affinity=55)])

    entry = _by_category(diff_states(current, reference), LossCategory.relationship)

    assert entry is not None
    assert entry.severity == LossSeverity.major
    assert entry.details == "Emilia (+25)"


def test_relationship_changes_aggregate_into_one_entry() -> None:
    current = StateAggregate(
        characters=[
            Character(name="Emilia", affinity=20),
            Character(name="Puck", affinity=0),
            Character(name="Felt", affinity=12),
            Character(name="Rom", affinity=40),
        ]
    )
    reference = StateAggregate(
        characters=[
            Character(name="Emilia", affinity=10),
            Character(name="Puck", affinity=5),
            Character(name="Felt", affinity=10),
        ]
    )

    report = diff_states(current, reference)
    entries = [e for e in report if e.category == LossCategory.relationship]

    # Felt is below the noise floor; Rom is new and has nothing to compare against.
    assert len(entries) == 1
    assert entries[0].severity == LossSeverity.moderate
    assert entries[0].details == "Emilia (+10), Puck (-5)"


def test_small_affinity_drift_is_ignored() -> None:
    current = StateAggregate(characters=[Character(name="Emilia", affinity=14)])
    reference = StateAggregate(characters=[Character(name="Emilia", affinity=10)])

    assert diff_states(current, reference) == []


def test_quest_skill_location_and_knowledge_rules() -> None:
    reference = StateAggregate(current_location="Market", discovered_lore=["royal_selection"])
    current = StateAggregate(
        current_location="Loot House",
        active_quests=[Quest(id="q_felt", title="Recover the insignia")],
        skills=[Skill(id=f"s{n}", name=f"Skill {n}") for n in range(3)],
        discovered_lore=["royal_selection", "witch_cult", "elsa", "bowel_hunter", "insignia"],
    )

    report = diff_states(current, reference, DivergenceMode.final)

    assert [e.category for e in report] == [
        LossCategory.quest,
        LossCategory.skill,
        LossCategory.location,
        LossCategory.knowledge,
    ]
    quest, skill, location, knowledge = report
    assert quest.severity == LossSeverity.moderate
    assert skill.severity == LossSeverity.major
    assert location.severity == LossSeverity.minor
    assert location.details == "From Loot House back to Market"
    assert knowledge.severity == LossSeverity.major
    assert knowledge.description == "4 lore entries forgotten"


def test_preview_wording_differs_from_final() -> None:
    current = StateAggregate(inventory=_items("A", "B"), current_location="Slums")
    reference = StateAggregate(inventory=_items("A"), current_location="Market")

    preview = diff_states(current, reference, DivergenceMode.preview)
    final = diff_states(current, reference, DivergenceMode.final)

    assert preview[0].description == "1 item gained"
    assert final[0].description == "1 item lost"
    assert preview[1].description == "Location changed"
    assert final[1].description == "Location reset"
    assert [e.severity for e in preview] == [e.severity for e in final]


def test_identical_states_report_nothing(initial: StateAggregate) -> None:
    assert diff_states(initial, initial.model_copy(deep=True)) == []


def test_repeated_ids_count_once() -> None:
    current = StateAggregate(
        inventory=[Item(id="A", name="Apple"), Item(id="B", name="Bread"), Item(id="B", name="Bread")],
        skills=[Skill(id="s1", name="Return by Death"), Skill(id="s2", name="Shamac"), Skill(id="s2", name="Shamac")],
        active_quests=[Quest(id="q1", title="Recover the insignia"), Quest(id="q1", title="Recover the insignia")],
    )
    reference = StateAggregate(inventory=[Item(id="A", name="Apple")], skills=[Skill(id="s1", name="Return by Death")])

    report = diff_states(current, reference)
    inventory = _by_category(report, LossCategory.inventory)
    skills = _by_category(report, LossCategory.skill)
    quests = _by_category(report, LossCategory.quest)

    assert inventory is not None and inventory.description == "1 item lost"
    assert inventory.severity == LossSeverity.minor
    assert inventory.details == "Bread"
    assert skills is not None and skills.description == "1 skill lost"
    assert skills.details == "Shamac"
    assert quests is not None and quests.description == "1 quest reset"

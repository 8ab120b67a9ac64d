"""Loss/gain report between a live state and the state it would rewind into.

Pure functions only; nothing here reads or writes the store.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Protocol, TypeVar

from natsuki_quest.api.models import LossCategory, LossEntry, LossReport, LossSeverity, StateAggregate


class DivergenceMode(StrEnum):
    # Live state vs. its still-active checkpoint, shown before anything happens.
    preview = "preview"
    # State about to be discarded vs. the checkpoint it collapses into.
    final = "final"


RELATIONSHIP_NOISE_BELOW = 5
RELATIONSHIP_MAJOR_ABOVE = 20


def _plural(n: int, word: str, plural: str | None = None) -> str:
    return f"{n} {word if n == 1 else (plural or word + 's')}"


class _Identified(Protocol):
    id: str


_T = TypeVar("_T", bound=_Identified)


def _new_by_id(current: list[_T], reference: list[_T]) -> list[_T]:
    """Entries of `current` whose id is absent from `reference`, first occurrence per id."""

    known = {entry.id for entry in reference}
    seen: dict[str, _T] = {}
    for entry in current:
        if entry.id not in known:
            seen.setdefault(entry.id, entry)
    return list(seen.values())


def _graded(count: int, *, major_above: int, moderate_above: int | None) -> LossSeverity:
    if count > major_above:
        return LossSeverity.major
    if moderate_above is None or count > moderate_above:
        return LossSeverity.moderate
    return LossSeverity.minor


def _inventory(current: StateAggregate, reference: StateAggregate, mode: DivergenceMode) -> LossEntry | None:
    extra = _new_by_id(current.inventory, reference.inventory)
    if not extra:
        return None
    verb = "gained" if mode == DivergenceMode.preview else "lost"
    return LossEntry(
        category=LossCategory.inventory,
        description=f"{_plural(len(extra), 'item')} {verb}",
        details=", ".join(i.name for i in extra),
        severity=_graded(len(extra), major_above=3, moderate_above=1),
    )


def _relationships(current: StateAggregate, reference: StateAggregate, mode: DivergenceMode) -> LossEntry | None:
    ref_by_name = {c.name: c for c in reference.characters}
    changed: list[tuple[str, int]] = []
    for char in current.characters:
        ref = ref_by_name.get(char.name)
        if ref is None:
            continue
        delta = char.affinity - ref.affinity
        if abs(delta) < RELATIONSHIP_NOISE_BELOW:
            continue
        changed.append((char.name, delta))

    if not changed:
        return None

    verb = "changed" if mode == DivergenceMode.preview else "reset"
    major = any(abs(delta) > RELATIONSHIP_MAJOR_ABOVE for _, delta in changed)
    return LossEntry(
        category=LossCategory.relationship,
        description=f"{_plural(len(changed), 'relationship')} {verb}",
        details=", ".join(f"{name} ({delta:+d})" for name, delta in changed),
        severity=LossSeverity.major if major else LossSeverity.moderate,
    )


def _quests(current: StateAggregate, reference: StateAggregate, mode: DivergenceMode) -> LossEntry | None:
    extra = _new_by_id(current.active_quests, reference.active_quests)
    if not extra:
        return None
    verb = "started" if mode == DivergenceMode.preview else "reset"
    return LossEntry(
        category=LossCategory.quest,
        description=f"{_plural(len(extra), 'quest')} {verb}",
        details=", ".join(q.title for q in extra),
        severity=LossSeverity.moderate,
    )


def _skills(current: StateAggregate, reference: StateAggregate, mode: DivergenceMode) -> LossEntry | None:
    extra = _new_by_id(current.skills, reference.skills)
    if not extra:
        return None
    verb = "learned" if mode == DivergenceMode.preview else "lost"
    return LossEntry(
        category=LossCategory.skill,
        description=f"{_plural(len(extra), 'skill')} {verb}",
        details=", ".join(s.name for s in extra),
        severity=_graded(len(extra), major_above=2, moderate_above=None),
    )


def _location(current: StateAggregate, reference: StateAggregate, mode: DivergenceMode) -> LossEntry | None:
    if current.current_location == reference.current_location:
        return None
    if mode == DivergenceMode.preview:
        description = "Location changed"
        details = f"From {reference.current_location} to {current.current_location}"
    else:
        description = "Location reset"
        details = f"From {current.current_location} back to {reference.current_location}"
    return LossEntry(
        category=LossCategory.location,
        description=description,
        details=details,
        severity=LossSeverity.minor,
    )


def _knowledge(current: StateAggregate, reference: StateAggregate, mode: DivergenceMode) -> LossEntry | None:
    known = set(reference.discovered_lore)
    extra = [lore_id for lore_id in dict.fromkeys(current.discovered_lore) if lore_id not in known]
    if not extra:
        return None
    n = len(extra)
    verb = "discovered" if mode == DivergenceMode.preview else "forgotten"
    return LossEntry(
        category=LossCategory.knowledge,
        description=f"{_plural(n, 'lore entry', 'lore entries')} {verb}",
        details=", ".join(extra),
        severity=_graded(n, major_above=3, moderate_above=None),
    )


_CATEGORY_RULES = (_inventory, _relationships, _quests, _skills, _location, _knowledge)


def diff_states(
    current: StateAggregate,
    reference: StateAggregate,
    mode: DivergenceMode = DivergenceMode.final,
) -> LossReport:
    """Categorized report of what `current` has that `reference` does not.

    Categories with nothing to report are omitted, so an empty list means the
    two states agree on everything tracked here.
    """

    report: LossReport = []
    for rule in _CATEGORY_RULES:
        entry = rule(current, reference, mode)
        if entry is not None:
            report.append(entry)
    return report

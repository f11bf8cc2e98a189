"""Party composition analysis.

Flags structural gaps in the roster as advisory hints for the generation
prompt. These are never validation errors.
"""

from __future__ import annotations

from collections.abc import Sequence

from encounter_forge.models import PartyMember

TANK_CLASSES = frozenset({"fighter", "paladin", "barbarian"})
HEALER_CLASSES = frozenset({"cleric", "druid", "paladin", "bard"})
ARCANE_CLASSES = frozenset({"wizard", "sorcerer", "warlock", "bard", "artificer"})

NO_TANK = "No tank: the party lacks a durable front-liner, so favour ranged pressure and flanking over a single brute that must be held back."
NO_HEALER = "No healer: the party cannot recover hit points mid-fight, so avoid long attrition and give them chances to disengage."
SMALL_PARTY = "Small party: with two or fewer adventurers, action economy is fragile; avoid stun-locks and focus fire that ends the fight in one round."
LARGE_PARTY = "Large party: with six or more adventurers, add enough enemies or legendary actions that the party cannot swarm a lone target."


def party_roles(members: Sequence[PartyMember]) -> dict[str, bool]:
    classes = {m.class_name.strip().lower() for m in members}
    return {
        "tank": bool(classes & TANK_CLASSES),
        "healer": bool(classes & HEALER_CLASSES),
        "arcane": bool(classes & ARCANE_CLASSES),
    }


def analyze_party(members: Sequence[PartyMember]) -> list[str]:
    roles = party_roles(members)
    hints: list[str] = []
    if not roles["tank"]:
        hints.append(NO_TANK)
    if not roles["healer"]:
        hints.append(NO_HEALER)
    if len(members) <= 2:
        hints.append(SMALL_PARTY)
    if len(members) >= 6:
        hints.append(LARGE_PARTY)
    return hints

"""Deterministic encounter-balance validation.

validate() scores a parsed creature list against the party and the requested
tier. Each failed rule appends "CODE: explanation" to ValidationResult.errors;
the codes are stable so callers can branch on them:

    XP_TOO_LOW     adjusted XP below 0.8 × target min
    XP_TOO_HIGH    adjusted XP above 1.3 × target max
    CR_TOO_HIGH    a creature's CR exceeds ceil(avg level × 1.5) + 2
    NO_CREATURES   nothing was parsed
    TRIVIAL        base XP under half the easy threshold (tier ≥ 2)
    NO_SYNERGY     a lone creature under avg level + 3 (tier ≥ 3)
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from encounter_forge.extractor import cr_value
from encounter_forge.models import (
    DifficultyTier,
    ParsedCreature,
    PartyMember,
    PartyThresholds,
    ValidationResult,
)
from encounter_forge.party import average_level, compute_thresholds, target_range

LOW_TOLERANCE = 0.8
HIGH_TOLERANCE = 1.3

DEADLY_PLUS_LABEL = "Deadly-plus"

# (minimum creature count, multiplier), DMG p.82
ENCOUNTER_MULTIPLIERS: list[tuple[int, float]] = [
    (15, 4.0),
    (11, 3.0),
    (7, 2.5),
    (3, 2.0),
    (2, 1.5),
]


def encounter_multiplier(creature_count: int) -> float:
    for minimum, multiplier in ENCOUNTER_MULTIPLIERS:
        if creature_count >= minimum:
            return multiplier
    return 1.0


def classify(adjusted_xp: int, thresholds: PartyThresholds) -> str:
    """Label of the highest threshold the adjusted XP exceeds."""
    if adjusted_xp > thresholds.deadly * HIGH_TOLERANCE:
        return DEADLY_PLUS_LABEL
    if adjusted_xp > thresholds.deadly:
        return DifficultyTier.HARD.label
    if adjusted_xp > thresholds.hard:
        return DifficultyTier.CHALLENGING.label
    if adjusted_xp > thresholds.medium:
        return DifficultyTier.MODERATE.label
    return DifficultyTier.EASY.label


def max_allowed_cr(avg_level: float) -> int:
    return math.ceil(avg_level * 1.5) + 2


def validate(
    creatures: Sequence[ParsedCreature],
    members: Sequence[PartyMember],
    tier: int,
) -> ValidationResult:
    thresholds = compute_thresholds(members)
    target = target_range(tier, thresholds)
    avg = average_level(members)

    total_count = sum(c.count for c in creatures)
    base_xp = sum(c.xp * c.count for c in creatures)
    multiplier = encounter_multiplier(total_count)
    adjusted_xp = round(base_xp * multiplier)

    errors: list[str] = []
    if adjusted_xp < LOW_TOLERANCE * target.min:
        errors.append(
            f"XP_TOO_LOW: adjusted XP {adjusted_xp} is below "
            f"{LOW_TOLERANCE:.0%} of the target minimum {target.min}"
        )
    if adjusted_xp > HIGH_TOLERANCE * target.max:
        errors.append(
            f"XP_TOO_HIGH: adjusted XP {adjusted_xp} is above "
            f"{HIGH_TOLERANCE:.0%} of the target maximum {target.max}"
        )

    ceiling = max_allowed_cr(avg)
    for creature in creatures:
        if cr_value(creature.challenge_rating) > ceiling:
            errors.append(
                f"CR_TOO_HIGH: {creature.name} is CR {creature.challenge_rating}, "
                f"above the CR {ceiling} ceiling for average party level {avg:g}"
            )

    if total_count == 0:
        errors.append("NO_CREATURES: no creature blocks could be parsed from the text")
    if tier >= DifficultyTier.MODERATE and base_xp < 0.5 * thresholds.easy:
        errors.append(
            f"TRIVIAL: base XP {base_xp} is under half the party's easy threshold "
            f"({thresholds.easy})"
        )
    if total_count == 1 and tier >= DifficultyTier.CHALLENGING:
        lone = creatures[0]  # counts are ≥ 1, so one entry
        if cr_value(lone.challenge_rating) < avg + 3:
            errors.append(
                f"NO_SYNERGY: a single CR {lone.challenge_rating} {lone.name} offers no "
                f"tactical depth against average party level {avg:g}; add allies or "
                f"use a creature of CR {avg + 3:g} or higher"
            )

    return ValidationResult(
        valid=not errors,
        errors=errors,
        adjusted_xp=adjusted_xp,
        base_xp=base_xp,
        total_creature_count=total_count,
        classification_label=classify(adjusted_xp, thresholds),
        multiplier=multiplier,
        target_range=target,
        thresholds=thresholds,
    )


def validation_badge(result: ValidationResult, *, unverified: bool = False) -> str:
    """Markdown footer appended to the persisted encounter text."""
    target = result.target_range
    target_text = f"{target.min}–{target.max} XP" if target else "n/a"
    lines = ["", "---", ""]
    if result.valid:
        lines.append("> ✅ **Auto-validation passed**")
    elif unverified:
        lines.append("> ⚠️ **Not verified**: no creature stat headings could be read, "
                     "check the XP budget by hand")
    else:
        lines.append("> ❌ **Auto-validation failed**: review before running this encounter")
    lines.append(
        f"> Adjusted XP {result.adjusted_xp} (base {result.base_xp} × "
        f"{result.multiplier:g}, {result.total_creature_count} creatures) · "
        f"target {target_text} · classified {result.classification_label}"
    )
    for error in result.errors:
        lines.append(f"> - {error}")
    return "\n".join(lines) + "\n"

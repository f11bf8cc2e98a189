"""Party XP thresholds and difficulty target ranges (DMG chapter 3).

Thresholds are summed per member from the standard per-level table; the
requested DifficultyTier then maps onto an XP interval built from them:

    1 Easy         [0.7 × easy,   medium − 1]
    2 Moderate     [medium,       hard − 1]
    3 Challenging  [hard,         deadly − 1]
    4 Hard         [deadly,       1.3 × deadly]
    5 Deadly       [1.3 × deadly, 2 × deadly]
"""

from __future__ import annotations

from collections.abc import Sequence

from encounter_forge.models import DifficultyTier, PartyMember, PartyThresholds, TargetRange

# level → (easy, medium, hard, deadly)
XP_THRESHOLDS: dict[int, tuple[int, int, int, int]] = {
    1:  (25,   50,   75,   100),
    2:  (50,   100,  150,  200),
    3:  (75,   150,  225,  400),
    4:  (125,  250,  375,  500),
    5:  (250,  500,  750,  1100),
    6:  (300,  600,  900,  1400),
    7:  (350,  750,  1100, 1700),
    8:  (450,  900,  1400, 2100),
    9:  (550,  1100, 1600, 2400),
    10: (600,  1200, 1900, 2800),
    11: (800,  1600, 2400, 3600),
    12: (1000, 2000, 3000, 4500),
    13: (1100, 2200, 3400, 5100),
    14: (1250, 2500, 3800, 5700),
    15: (1400, 2800, 4300, 6400),
    16: (1600, 3200, 4800, 7200),
    17: (2000, 3900, 5900, 8800),
    18: (2100, 4200, 6300, 9500),
    19: (2400, 4900, 7300, 10900),
    20: (2800, 5700, 8500, 12700),
}


def clamp_level(level: int) -> int:
    return max(1, min(20, int(level)))


def compute_thresholds(members: Sequence[PartyMember]) -> PartyThresholds:
    """Sum the per-level thresholds across the party.

    An empty roster yields all-zero thresholds; rejecting it is the caller's job.
    """
    easy = medium = hard = deadly = 0
    for member in members:
        e, m, h, d = XP_THRESHOLDS[clamp_level(member.level)]
        easy += e
        medium += m
        hard += h
        deadly += d
    return PartyThresholds(easy=easy, medium=medium, hard=hard, deadly=deadly)


def average_level(members: Sequence[PartyMember]) -> float:
    if not members:
        return 0.0
    return sum(clamp_level(m.level) for m in members) / len(members)


def target_range(tier: int, thresholds: PartyThresholds) -> TargetRange:
    """XP interval the encounter should land in for the requested tier.

    Unknown tiers use the Challenging formula.
    """
    t = thresholds
    if tier == DifficultyTier.EASY:
        low, high = 0.7 * t.easy, t.medium - 1
    elif tier == DifficultyTier.MODERATE:
        low, high = t.medium, t.hard - 1
    elif tier == DifficultyTier.HARD:
        low, high = t.deadly, 1.3 * t.deadly
    elif tier == DifficultyTier.DEADLY:
        low, high = 1.3 * t.deadly, 2 * t.deadly
    else:
        low, high = t.hard, t.deadly - 1
    return TargetRange(min=max(0, round(low)), max=max(0, round(high)))

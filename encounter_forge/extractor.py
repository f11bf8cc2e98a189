"""Creature extraction from generated encounter markdown.

The model is asked to write one heading per creature group:

    ### 2× Ogre (CR 2, 450 XP)
    ### Goblin Boss (CR 1, 200 XP)

parse_creatures() scans for that heading shape only; it is not a markdown
parser and never raises. Headings that drift too far from the shape are
skipped, so malformed output just yields fewer creatures.
"""

from __future__ import annotations

import logging
import re

from encounter_forge.models import ParsedCreature

logger = logging.getLogger(__name__)

# DMG p.274
CR_TO_XP: dict[str, int] = {
    "0": 10,
    "1/8": 25,
    "1/4": 50,
    "1/2": 100,
    "1": 200,
    "2": 450,
    "3": 700,
    "4": 1100,
    "5": 1800,
    "6": 2300,
    "7": 2900,
    "8": 3900,
    "9": 5000,
    "10": 5900,
    "11": 7200,
    "12": 8400,
    "13": 10000,
    "14": 11500,
    "15": 13000,
    "16": 15000,
    "17": 18000,
    "18": 20000,
    "19": 22000,
    "20": 25000,
    "21": 33000,
    "22": 41000,
    "23": 50000,
    "24": 62000,
    "25": 75000,
    "26": 90000,
    "27": 105000,
    "28": 120000,
    "29": 135000,
    "30": 155000,
}

_HEADING_RE = re.compile(
    r"^\#{2,4}[ \t]*"
    r"(?:(?P<count>\d+)[ \t]*[x×][ \t]*)?"
    r"(?P<name>[^\n(]+?)[ \t]*"
    r"\([ \t]*(?:CR|Challenge)[ \t]*(?P<cr>\d+(?:\.\d+)?(?:[ \t]*/[ \t]*\d+)?)"
    r"(?:[ \t]*[,;][ \t]*(?P<xp>\d[\d., \u00a0]*)[ \t]*XP)?"
    r"[^)\n]*\)",
    re.IGNORECASE | re.MULTILINE,
)


def cr_value(cr: str) -> float:
    """Numeric value of a CR string; "1/4" → 0.25. Unparsable → 0.0."""
    text = cr.strip()
    try:
        if "/" in text:
            num, den = text.split("/", 1)
            denominator = int(den)
            if denominator == 0:
                return 0.0
            return int(num) / denominator
        return float(text)
    except ValueError:
        return 0.0


_DECIMAL_CRS = {0.125: "1/8", 0.25: "1/4", 0.5: "1/2"}


def normalize_cr(cr: str) -> str:
    """Canonical table key: strip whitespace, "01" → "1", "0.5" → "1/2"."""
    text = re.sub(r"\s+", "", cr)
    if "/" in text:
        num, _, den = text.partition("/")
        if num.isdigit() and den.isdigit():
            return f"{int(num)}/{int(den)}"
        return text
    if text.isdigit():
        return str(int(text))
    value = cr_value(text)
    if value in _DECIMAL_CRS:
        return _DECIMAL_CRS[value]
    if value and value.is_integer():
        return str(int(value))
    return text


def xp_for_cr(cr: str) -> int:
    return CR_TO_XP.get(normalize_cr(cr), 0)


def _parse_xp(raw: str | None) -> int | None:
    if not raw:
        return None
    digits = re.sub(r"\D", "", raw)
    return int(digits) if digits else None


def _clean_name(raw: str) -> str:
    return raw.strip().strip("*_").strip()


def parse_creatures(markdown_text: str) -> list[ParsedCreature]:
    """Return one ParsedCreature per matching heading, in document order.

    The CR table is authoritative for XP; the XP written in the heading is
    used only when the CR is not in the table. Same-name blocks are not merged.
    """
    creatures: list[ParsedCreature] = []
    for match in _HEADING_RE.finditer(markdown_text or ""):
        name = _clean_name(match.group("name"))
        if not name:
            continue
        cr = normalize_cr(match.group("cr"))
        count = int(match.group("count")) if match.group("count") else 1
        claimed = _parse_xp(match.group("xp"))

        xp = xp_for_cr(cr)
        if cr not in CR_TO_XP:
            xp = claimed or 0
        elif claimed is not None and claimed != xp:
            logger.debug("XP mismatch for %s (CR %s): text says %d, table says %d",
                         name, cr, claimed, xp)

        creatures.append(ParsedCreature(
            name=name,
            challenge_rating=cr,
            xp=xp,
            count=max(1, count),
            claimed_xp=claimed,
        ))
    return creatures

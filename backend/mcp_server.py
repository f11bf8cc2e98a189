"""FastMCP server exposing the deterministic encounter core as MCP tools.

Tools:
  - party_thresholds(party_members, difficulty): XP thresholds + target range
  - parse_encounter(encounter_text): creature headings found in text
  - validate_encounter(encounter_text, party_members, difficulty): full ValidationResult

No LLM calls are made; these let an MCP client check an encounter it wrote
itself against the same rules the generator enforces.

Usage:
    uv run python -m backend.mcp_server
"""

from mcp.server.fastmcp import FastMCP

from encounter_forge.extractor import parse_creatures
from encounter_forge.models import PartyMember
from encounter_forge.party import average_level, compute_thresholds, target_range
from encounter_forge.validator import validate
from encounter_forge.weaknesses import analyze_party

mcp = FastMCP("encounter-forge")


def _members(party_members: list[dict]) -> list[PartyMember]:
    return [PartyMember.model_validate(m) for m in party_members]


@mcp.tool()
def party_thresholds(party_members: list[dict], difficulty: int = 3) -> dict:
    """Party XP thresholds, average level, target XP range and weakness hints.

    party_members: [{"class_name": "Fighter", "level": 5}, ...]; difficulty 1-5.
    """
    members = _members(party_members)
    thresholds = compute_thresholds(members)
    return {
        "thresholds": thresholds.model_dump(),
        "average_level": average_level(members),
        "target_range": target_range(difficulty, thresholds).model_dump(),
        "weaknesses": analyze_party(members),
    }


@mcp.tool()
def parse_encounter(encounter_text: str) -> dict:
    """List the creature groups found in encounter markdown."""
    return {"creatures": [c.model_dump() for c in parse_creatures(encounter_text)]}


@mcp.tool()
def validate_encounter(encounter_text: str, party_members: list[dict], difficulty: int = 3) -> dict:
    """Score encounter markdown against the party and difficulty (1-5)."""
    members = _members(party_members)
    return validate(parse_creatures(encounter_text), members, difficulty).model_dump()


if __name__ == "__main__":
    mcp.run()

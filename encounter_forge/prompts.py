"""Handlebars prompt rendering for encounter generation.

build_prompt() turns a PromptConfig into the system/user pair sent to the
generation service. Attempt 0 gets the full design brief; later attempts get
the previous validation failures up front and are asked for a complete
rewrite, followed by the same brief.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pybars
from pydantic import BaseModel, Field

from encounter_forge.models import (
    CampaignContext,
    DifficultyTier,
    PartyMember,
    TargetRange,
    ValidationResult,
)

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}

DEFAULT_REGION = "Sword Coast"
DEFAULT_TONE = "epic"


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


class Prompt(BaseModel):
    system: str
    user: str


class PromptConfig(BaseModel):
    members: list[PartyMember]
    tier: DifficultyTier
    target: TargetRange
    average_level: float
    region: str | None = None
    tone: str | None = None
    theme: str | None = None
    specific_request: str | None = None
    campaign: CampaignContext | None = None
    hints: list[str] = Field(default_factory=list)
    previous: ValidationResult | None = None
    attempt_index: int = 0


REGION_LORE: dict[str, str] = {
    "Sword Coast": "Typical creatures: goblins, gnolls, orcs, Trade Way bandits, young dragons, coastal sea monsters, sahuagin. Climate: temperate oceanic, frequent fog. Threats: the Cult of the Dragon, the Zhentarim, Luskan pirates, the return of Tiamat.",
    "Sword Coast North": "Typical creatures: ice trolls, frost giants, winter wolves, yetis, Many-Arrows orcs, white dragons. Climate: severe cold, snowstorms. Threats: the Wild Hunt, remnants of the Many-Arrows host, northern necromancers.",
    "The North": "Typical creatures: frost and fire giants, remorhazes, wyverns, chimeras, polar bears, cave goblins. Climate: arctic to subarctic, blizzards. Threats: Auril the Frostmaiden, elemental cults, ancient dragons.",
    "Dalelands": "Typical creatures: Cormanthor drow, giant spiders, forest lycanthropes, corrupted treants, Zhentarim bandits. Climate: temperate continental, dense forests. Threats: the Zhentarim, the drow of Szith Morcane, the resurgence of Myth Drannor.",
    "Cormyr": "Typical creatures: purple dragons, border gnolls, Gnoll Pass goblinoids, undead of the Troll Marshes. Climate: temperate, seasonal rains. Threats: rogue War Wizards, cults of Shar, noble conspiracies.",
    "Calimshan": "Typical creatures: genasi, djinn, efreet, lamias, yuan-ti, giant scorpions, desert mummies. Climate: arid, extreme heat, sandstorms. Threats: criminal pashas, unbound genies, the ruins of Calim and Memnon.",
    "Chult": "Typical creatures: dinosaurs, yuan-ti, pteranodons, Death Curse zombies, froghemoths. Climate: tropical, torrential rain, humid heat. Threats: Acererak, the yuan-ti of Omu, the Death Curse.",
    "Thay": "Typical creatures: undead of every kind, golems, arcane chimeras, summoned demons. Climate: continental, arcane storms. Threats: Szass Tam, the Red Wizards, necromantic experiments.",
    "Amn": "Typical creatures: Cloud Peaks ogres, merchant-house bandits, Snakewood monsters, infiltrating yuan-ti. Climate: mediterranean, warm. Threats: rival merchant houses, the Shadow Thieves, hidden cults.",
    "Sembia": "Typical creatures: spies, assassins, guardian constructs, sewer monsters, shades of Shar. Climate: temperate continental. Threats: Netheril, political intrigue, cults of Shar, smugglers.",
    "Moonsea": "Typical creatures: Moonsea aberrations, Phlan zombies, black dragons, beholders. Climate: humid continental, fog. Threats: Mulmaster, the Temple of Elemental Evil, the Black Dragon.",
    "Western Heartlands": "Typical creatures: highway bandits, lycanthropes, Darkhold undead, Sunset Hills wyverns. Climate: temperate grassland. Threats: the Darkhold Zhentarim, demonic cults, wandering monsters.",
    "Tethyr": "Typical creatures: Forest of Tethir monsters, ogres, forest trolls, hostile wild elves. Climate: warm mediterranean. Threats: lingering civil war, deep-forest monsters, coastal pirates.",
    "Rashemen": "Typical creatures: berserkers, nature spirits, dire wolves, dark fey, elementals. Climate: cold continental, dense forests. Threats: Thay, the hags of the Ashenwood, corrupted ancestral spirits.",
}

SYSTEM_PROMPT = """You are an expert tactical encounter designer for D&D 5e in the Forgotten Realms.
Design balanced, detailed and playable encounters that follow the official 5e rules STRICTLY.

CORE RULES:
1. Use ONLY creatures from official books (Monster Manual, Volo's Guide, Mordenkainen's Tome, Fizban's Treasury and similar).
2. Challenge ratings must be exact and match the official CR-to-XP table.
3. Balance against the DMG XP thresholds and apply the group multiplier for the number of enemies (DMG p.82).
4. Give real stats: AC, HP, speed, attacks, abilities and spells as printed.

RESPONSE FORMAT (structured Markdown):

# ⚔️ [Encounter Title]

## 📊 Encounter Summary
- **Difficulty:** [tier]
- **Total XP:** [base] XP (adjusted: [adjusted] XP)
- **Creatures:** [count]
- **Environment:** [terrain/location]

## 🐉 Creatures
One heading per creature group, EXACTLY in this shape (prefix a count like "3× " when there are several):
### [count× ][Name] (CR [rating], [XP] XP)
- **Source:** [official book]
- **AC:** [value] | **HP:** [value] ([dice])
- **Speed:** [value]
- **Attacks:** [name]: +[bonus] to hit, [reach/range], [damage]
- **Special Abilities:** [full mechanical description]

## 🎯 Tactics
### First Three Rounds
**Round 1:** [actions] **Round 2:** [actions] **Round 3:** [adaptation]
- **Focus fire:** [who and why]
- **Terrain:** [how enemies use it]
- **Retreat:** [when and how]

## 🗺️ Setting
[Narrative description, interactive terrain elements with mechanical effects]

## 💰 Rewards
- **XP:** [total] (per adventurer: [share])
- **Treasure:** [DMG tables for the CR]

## 📝 DM Notes
[Running advice, variations, hooks]"""

BRIEF_TEMPLATE = """PARTY ({{party_size}} adventurers, average level {{average_level}}):
{{#each members}}- {{{class_name}}} level {{level}}
{{/each}}
TARGET DIFFICULTY: {{{tier_label}}} ({{tier}}/5)
XP BUDGET: {{target_min}}-{{target_max}} adjusted XP, after the group multiplier
REGION: {{{region}}}
TONE: {{{tone}}}

REGIONAL CONTEXT (official Forgotten Realms lore):
{{{region_lore}}}
Choose creatures that fit this region's climate, geography, fauna and active threats.
{{#if theme}}
ENCOUNTER THEME: {{{theme}}}
{{/if}}{{#if specific_request}}
SPECIFIC REQUEST: {{{specific_request}}}
{{/if}}{{#if campaign}}
CAMPAIGN CONTEXT:
- Campaign: {{{campaign.name}}}
- Level range: {{{campaign.level_range}}}
- Region: {{{campaign.region}}}
- Tone: {{{campaign.tone}}}
{{#if campaign.active_npcs}}- Active NPCs:{{#take campaign.active_npcs 5}} {{{this}}};{{/take}}
{{/if}}{{#if campaign.regions_explored}}- Explored regions:{{#take campaign.regions_explored 5}} {{{this}}};{{/take}}
{{/if}}{{#if campaign.open_conflicts}}- Open conflicts:{{#take campaign.open_conflicts 3}} {{{this}}};{{/take}}
{{/if}}{{/if}}{{#if hints}}
PARTY WEAKNESSES TO DESIGN AROUND:
{{#each hints}}- {{{this}}}
{{/each}}{{/if}}
Design the complete encounter in the required format. Use ONLY official D&D 5e creatures that fit the region, and keep the adjusted XP inside the budget."""

CORRECTION_TEMPLATE = """Your previous encounter (attempt {{attempt}}) FAILED automatic balance validation.

PROBLEMS FOUND:
{{#each errors}}- {{{this}}}
{{/each}}
NUMBERS FROM THE REJECTED VERSION:
- Base XP: {{base_xp}}
- Creatures: {{creature_count}} (group multiplier x{{multiplier}})
- Adjusted XP: {{adjusted_xp}} (classified {{{classification}}})
- Required adjusted XP: {{target_min}}-{{target_max}}

Regenerate the ENTIRE encounter from scratch. Do not patch or append to the previous text: write every section again and fix every problem listed above.

ORIGINAL BRIEF:
"""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_take(this, options, items, count):
    """{{#take array N}}...{{/take}}: iterate over the first N items."""
    result = []
    for item in list(items)[:int(count)]:
        result.extend(options["fn"](item))
    return result


_HELPERS: dict[str, Callable] = {
    "take": _helper_take,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def region_lore(region: str) -> str:
    lore = REGION_LORE.get(region)
    if lore is None:
        return (f"Region: {region}. Use creatures suited to the environment and "
                "climate of this part of Faerûn according to official lore.")
    return lore


def build_context(config: PromptConfig) -> dict[str, Any]:
    """Assemble template variables from a PromptConfig."""
    campaign = config.campaign
    region = (campaign.region if campaign and campaign.region else None) or config.region or DEFAULT_REGION
    tone = (campaign.tone if campaign and campaign.tone else None) or config.tone or DEFAULT_TONE

    ctx: dict[str, Any] = {
        "party_size": len(config.members),
        "average_level": f"{config.average_level:g}",
        "members": [m.model_dump() for m in config.members],
        "tier": int(config.tier),
        "tier_label": config.tier.label,
        "target_min": config.target.min,
        "target_max": config.target.max,
        "region": region,
        "region_lore": region_lore(region),
        "tone": tone,
        "theme": config.theme or "",
        "specific_request": config.specific_request or "",
        "campaign": campaign.model_dump() if campaign else None,
        "hints": list(config.hints),
    }

    previous = config.previous
    if previous is not None:
        ctx.update({
            "attempt": config.attempt_index,
            "errors": list(previous.errors),
            "base_xp": previous.base_xp,
            "creature_count": previous.total_creature_count,
            "multiplier": f"{previous.multiplier:g}",
            "adjusted_xp": previous.adjusted_xp,
            "classification": previous.classification_label,
        })
    return ctx


def build_prompt(config: PromptConfig) -> Prompt:
    ctx = build_context(config)
    user = render_prompt(BRIEF_TEMPLATE, ctx)
    if config.previous is not None and config.attempt_index > 0:
        user = render_prompt(CORRECTION_TEMPLATE, ctx) + user
    return Prompt(system=SYSTEM_PROMPT, user=user)

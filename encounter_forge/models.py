"""Core domain models.

Every component of the encounter engine operates on these types.
Pydantic is used for validation and serialisation at every data boundary.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Literal

from pydantic import BaseModel, Field, computed_field


class DifficultyTier(IntEnum):
    """Requested encounter difficulty, 1 (Easy) to 5 (Deadly)."""

    EASY = 1
    MODERATE = 2
    CHALLENGING = 3
    HARD = 4
    DEADLY = 5

    @property
    def label(self) -> str:
        return self.name.capitalize()


class PartyMember(BaseModel):
    """One adventurer in the party."""

    class_name: str
    level: int = Field(ge=1, le=20)


class PartyThresholds(BaseModel):
    """Summed DMG XP thresholds for the whole party."""

    easy: int = 0
    medium: int = 0
    hard: int = 0
    deadly: int = 0


class TargetRange(BaseModel):
    min: int
    max: int


class ParsedCreature(BaseModel):
    """A creature block found in generated encounter text."""

    name: str
    challenge_rating: str
    xp: int = 0
    count: int = Field(default=1, ge=1)
    claimed_xp: int | None = None  # XP written in the text, if any


class ValidationResult(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)
    adjusted_xp: int = 0
    base_xp: int = 0
    total_creature_count: int = 0
    classification_label: str = ""
    multiplier: float = 1.0
    target_range: TargetRange | None = None
    thresholds: PartyThresholds | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def codes(self) -> list[str]:
        """Machine-readable tags of `errors`, in order."""
        return [e.split(":", 1)[0] for e in self.errors]


class GenerationAttempt(BaseModel):
    """One pass of the generate-validate loop. Never persisted."""

    attempt_index: int
    prompt_text: str
    raw_model_output: str
    parsed_creatures: list[ParsedCreature] = Field(default_factory=list)
    validation_result: ValidationResult


ProviderLabel = Literal["primary", "alternative"]
ResultStatus = Literal["validated", "unverified", "unvalidated"]


class CampaignContext(BaseModel):
    """Optional campaign state folded into the generation prompt."""

    name: str = ""
    level_range: str = ""
    region: str = ""
    tone: str = ""
    active_npcs: list[str] = Field(default_factory=list)
    regions_explored: list[str] = Field(default_factory=list)
    open_conflicts: list[str] = Field(default_factory=list)


class EncounterRequest(BaseModel):
    party_members: list[PartyMember] = Field(min_length=1)
    difficulty: DifficultyTier = DifficultyTier.CHALLENGING
    region: str | None = None
    tone: str | None = None
    theme: str | None = None
    specific_request: str | None = None
    campaign: CampaignContext | None = None


class EncounterResult(BaseModel):
    encounter_text: str
    validation: ValidationResult
    provider: ProviderLabel
    attempt_index: int
    attempts: int
    status: ResultStatus


class StoredEncounter(BaseModel):
    """Encounter record persisted by Storage."""

    id: str
    title: str
    encounter_text: str
    party_members: list[PartyMember] = Field(default_factory=list)
    difficulty: DifficultyTier = DifficultyTier.CHALLENGING
    tags: list[str] = Field(default_factory=list)
    base_xp: int = 0
    adjusted_xp: int = 0
    classification: str = ""
    valid: bool = False
    creatures: list[ParsedCreature] = Field(default_factory=list)
    campaign_id: str | None = None
    mission_id: str | None = None
    created_at: str = ""
    updated_at: str = ""

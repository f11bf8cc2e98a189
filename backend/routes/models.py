"""Pydantic request/response models for API endpoints."""

from pydantic import BaseModel, Field

from encounter_forge.models import (
    DifficultyTier,
    ParsedCreature,
    PartyMember,
    PartyThresholds,
    TargetRange,
    ValidationResult,
)


class ThresholdsBody(BaseModel):
    party_members: list[PartyMember] = Field(min_length=1)
    difficulty: DifficultyTier = DifficultyTier.CHALLENGING


class ThresholdsResponse(BaseModel):
    thresholds: PartyThresholds
    average_level: float
    target_range: TargetRange
    weaknesses: list[str]


class RevalidateBody(BaseModel):
    encounter_text: str = Field(min_length=1)
    party_members: list[PartyMember] = Field(min_length=1)
    difficulty: DifficultyTier = DifficultyTier.CHALLENGING


class RevalidateResponse(BaseModel):
    validation: ValidationResult
    creatures: list[ParsedCreature]


class CreateEncounter(BaseModel):
    encounter_text: str = Field(min_length=1)
    party_members: list[PartyMember] = Field(min_length=1)
    difficulty: DifficultyTier = DifficultyTier.CHALLENGING
    title: str | None = None
    tags: list[str] = Field(default_factory=list)
    campaign_id: str | None = None
    mission_id: str | None = None


class UpdateEncounter(BaseModel):
    title: str | None = None
    encounter_text: str | None = None
    party_members: list[PartyMember] | None = None
    difficulty: DifficultyTier | None = None
    tags: list[str] | None = None
    campaign_id: str | None = None
    mission_id: str | None = None


class UpdateSettings(BaseModel):
    max_attempts: int | None = Field(default=None, ge=1, le=5)
    min_substantive_chars: int | None = Field(default=None, ge=0)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)

"""Encounter generation, revalidation and CRUD endpoints."""

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from encounter_forge.config import get_config
from encounter_forge.extractor import parse_creatures
from encounter_forge.models import EncounterRequest, EncounterResult, StoredEncounter
from encounter_forge.orchestrator import ServiceUnavailableError, generate_encounter
from encounter_forge.party import average_level, compute_thresholds, target_range
from encounter_forge.storage import Storage
from encounter_forge.validator import validate
from encounter_forge.weaknesses import analyze_party

from .models import (
    CreateEncounter,
    RevalidateBody,
    RevalidateResponse,
    ThresholdsBody,
    ThresholdsResponse,
    UpdateEncounter,
)

router = APIRouter()


def _storage(request: Request) -> Storage:
    return request.app.state.storage


def _score(fields: dict[str, Any]) -> dict[str, Any]:
    """Parse + validate the text so the stored XP summary matches it."""
    creatures = parse_creatures(fields["encounter_text"])
    result = validate(creatures, fields["party_members"], fields["difficulty"])
    return {
        **fields,
        "creatures": creatures,
        "base_xp": result.base_xp,
        "adjusted_xp": result.adjusted_xp,
        "classification": result.classification_label,
        "valid": result.valid,
    }


@router.post("/encounters/thresholds", response_model=ThresholdsResponse)
async def party_thresholds(body: ThresholdsBody):
    """XP thresholds, target range and weakness hints for a party: no generation."""
    thresholds = compute_thresholds(body.party_members)
    return ThresholdsResponse(
        thresholds=thresholds,
        average_level=average_level(body.party_members),
        target_range=target_range(body.difficulty, thresholds),
        weaknesses=analyze_party(body.party_members),
    )


@router.post("/encounters/generate", response_model=EncounterResult)
async def generate(request: Request, body: EncounterRequest):
    """Generate a balanced encounter, regenerating until it validates."""
    config = get_config(request.app.state.data_dir)
    try:
        return await generate_encounter(
            body,
            request.app.state.service,
            max_attempts=config["max_attempts"],
            min_substantive_chars=config["min_substantive_chars"],
            temperature=config["temperature"],
        )
    except ServiceUnavailableError as e:
        raise HTTPException(429, str(e))


@router.post("/encounters/revalidate", response_model=RevalidateResponse)
async def revalidate(body: RevalidateBody):
    """Re-score encounter text the DM edited by hand."""
    creatures = parse_creatures(body.encounter_text)
    return RevalidateResponse(
        validation=validate(creatures, body.party_members, body.difficulty),
        creatures=creatures,
    )


@router.get("/encounters", response_model=list[StoredEncounter])
async def list_encounters(request: Request, tag: str | None = None):
    """List stored encounters, newest first."""
    return _storage(request).list_encounters(tag=tag)


@router.post("/encounters", response_model=StoredEncounter, status_code=201)
async def create_encounter(request: Request, body: CreateEncounter):
    """Store an encounter with its computed XP summary."""
    fields = _score(body.model_dump(exclude_none=True) | {
        "party_members": body.party_members,
        "difficulty": body.difficulty,
    })
    return _storage(request).create_encounter(fields)


@router.get("/encounters/{encounter_id}", response_model=StoredEncounter)
async def get_encounter(request: Request, encounter_id: str):
    encounter = _storage(request).get_encounter(encounter_id)
    if not encounter:
        raise HTTPException(404, "Encounter not found")
    return encounter


@router.patch("/encounters/{encounter_id}", response_model=StoredEncounter)
async def update_encounter(request: Request, encounter_id: str, body: UpdateEncounter):
    """Update fields; the XP summary is recomputed from the resulting text."""
    storage = _storage(request)
    existing = storage.get_encounter(encounter_id)
    if not existing:
        raise HTTPException(404, "Encounter not found")
    fields = body.model_dump(exclude_none=True)
    merged = {
        "encounter_text": fields.get("encounter_text", existing.encounter_text),
        "party_members": body.party_members or existing.party_members,
        "difficulty": body.difficulty or existing.difficulty,
    }
    updated = storage.update_encounter(encounter_id, _score(fields | merged))
    if not updated:
        raise HTTPException(404, "Encounter not found")
    return updated


@router.delete("/encounters/{encounter_id}")
async def delete_encounter(request: Request, encounter_id: str):
    if not _storage(request).delete_encounter(encounter_id):
        raise HTTPException(404, "Encounter not found")
    return {"ok": True}

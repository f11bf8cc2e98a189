"""Health check and generation settings endpoints."""

from fastapi import APIRouter, Request

from encounter_forge.config import get_config, update_config

from .models import UpdateSettings

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings")
async def get_settings(request: Request):
    """Get generation settings (attempt bound, acceptance threshold, temperature)."""
    return get_config(request.app.state.data_dir)


@router.patch("/settings")
async def update_settings(request: Request, body: UpdateSettings):
    """Update generation settings (partial merge)."""
    return update_config(request.app.state.data_dir, body.model_dump(exclude_none=True))

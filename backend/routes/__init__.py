"""FastAPI API endpoints under /api.

Endpoint groups: health + settings, encounters (thresholds preview,
generation, revalidation of edited text, CRUD over stored encounters).

Generation returns 429 when no AI provider is available; balance failures
never produce an error status, they come back annotated in the result.
"""

from fastapi import APIRouter

from .encounters import router as encounters_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(encounters_router)

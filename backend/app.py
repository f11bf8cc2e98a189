import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from backend.routes import router
from encounter_forge.config import service_from_env
from encounter_forge.llm import GenerationService
from encounter_forge.storage import Storage

load_dotenv(Path(__file__).parent.parent / ".env")

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


def create_app(
    data_dir: Path | None = None,
    service: GenerationService | None = None,
) -> FastAPI:
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())

    app = FastAPI(title="Encounter Forge")
    app.state.data_dir = resolved
    app.state.storage = Storage(resolved)
    app.state.service = service or service_from_env()
    app.include_router(router, prefix="/api")
    return app

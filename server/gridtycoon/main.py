"""FastAPI application entrypoint for the Grid Tycoon coordination service."""
from pathlib import Path
import sys

# Ensure the project root (parent of this file's directory) is on sys.path
_THIS_DIR = Path(__file__).resolve().parent
_PROJECT_ROOT = _THIS_DIR.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

import logging

from fastapi import FastAPI

from gridtycoon.config import settings
from gridtycoon.routers import participants, sessions
from gridtycoon.services.coordinator import VERSION


logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Instantiate and configure the FastAPI application."""

    application = FastAPI(
        title="Grid Tycoon Coordinator",
        description="Registers participants, forms teams and tracks territory progress.",
        version=VERSION,
    )
    application.include_router(sessions.router)
    application.include_router(participants.router)
    return application


app = create_app()


@app.get("/")
async def root() -> dict[str, str]:
    """Lightweight health endpoint for service discovery."""
    return {"service": "gridtycoon-coordinator", "status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv

# Load the project-root .env before settings are read
project_root = Path(__file__).parent.parent
env_path = project_root / ".env"

if env_path.exists():
    load_dotenv(env_path)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from intake.settings import get_settings
from intake.utils.logging import configure_logging

from .database import init_db
from .routes import router

_settings = get_settings()
configure_logging(_settings.log_level, json_enabled=_settings.log_json)

app = FastAPI(title="Pulsewire Read API", version="0.1.0")

init_db()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_methods=["GET"],
    allow_headers=["*"],
    allow_credentials=True,
)

app.include_router(router)


@app.get("/healthz", tags=["system"])
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}

from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture()
def pipeline_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    """Point every settings object at a fresh SQLite file and fake credentials."""
    dsn = f"sqlite:///{tmp_path / 'pipeline.db'}"
    monkeypatch.setenv("POSTGRES_DSN", dsn)
    monkeypatch.setenv("INTAKE_REDIS_URL", "redis://localhost:6379/0")
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("LLM_RETRY_BACKOFF_SECONDS", "0")

    from intake.settings import reset_settings_cache
    from llm.settings import reset_llm_settings_cache
    from pulse.settings import reset_pulse_settings_cache

    reset_settings_cache()
    reset_llm_settings_cache()
    reset_pulse_settings_cache()
    yield dsn
    reset_settings_cache()
    reset_llm_settings_cache()
    reset_pulse_settings_cache()


@pytest.fixture()
def db(pipeline_env: str):
    """Create the schema and return the session_scope factory bound to it."""
    from intake.db.models import Base
    from intake.db.session import get_engine, session_scope

    Base.metadata.create_all(bind=get_engine())
    return session_scope

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from intake.db.models import (
    Company,
    CompanyGroup,
    JobRun,
    JobStage,
    JobStatus,
    RawItem,
    RawItemStatus,
    SourceType,
    StrategicSummary,
)

ROOT = Path(__file__).resolve().parents[2]


@pytest.fixture()
def sqlite_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'intake.db'}"


def _upgrade_database(db_url: str) -> None:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "intake" / "db" / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    cfg.attributes["configure_logger"] = False
    command.upgrade(cfg, "head")


def test_migrations_create_expected_tables(sqlite_url: str) -> None:
    _upgrade_database(sqlite_url)
    inspector = inspect(create_engine(sqlite_url, future=True))

    tables = set(inspector.get_table_names())
    assert {
        "companies",
        "company_groups",
        "company_group_members",
        "raw_items",
        "normalized_summaries",
        "canonical_tags",
        "canonical_themes",
        "summary_tags",
        "summary_themes",
        "topic_states",
        "topic_observations",
        "group_processing_states",
        "strategic_summaries",
        "group_snapshots",
        "job_runs",
    }.issubset(tables)

    raw_columns = {column["name"] for column in inspector.get_columns("raw_items")}
    assert {"status", "processing_at", "attempts", "origin"}.issubset(raw_columns)

    state_columns = {column["name"] for column in inspector.get_columns("group_processing_states")}
    assert {"watermark", "locked_until", "last_run_at"}.issubset(state_columns)


def test_models_roundtrip_on_migrated_schema(sqlite_url: str) -> None:
    _upgrade_database(sqlite_url)
    engine = create_engine(sqlite_url, future=True)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    now = datetime.now(timezone.utc)

    with SessionLocal() as session:
        company = Company(name="Acme", slug="acme")
        group = CompanyGroup(name="CRM", slug="crm", is_private=False)
        session.add_all([company, group])
        session.flush()
        item = RawItem(company_id=company.id, source_type=SourceType.G2, content="Slow sync")
        job = JobRun(stage=JobStage.PROCESS, status=JobStatus.RUNNING, task_name="process_items")
        session.add_all([item, job])
        session.commit()
        session.refresh(item)

    assert item.status is RawItemStatus.NEW
    assert item.attempts == 0
    assert item.created_at is not None
    assert job.id is not None

    def _summary() -> StrategicSummary:
        return StrategicSummary(
            group_id=group.id,
            company_id=company.id,
            period_type="daily",
            source_key="si:1",
            summary_text="Acme shipped offline mode",
            created_at=now,
        )

    with SessionLocal() as session:
        session.add(_summary())
        session.commit()

    with SessionLocal() as session:
        session.add(_summary())
        with pytest.raises(IntegrityError):
            session.commit()


def test_canonical_names_are_unique_after_upgrade(sqlite_url: str) -> None:
    _upgrade_database(sqlite_url)
    inspector = inspect(create_engine(sqlite_url, future=True))

    for table in ("canonical_tags", "canonical_themes"):
        indexes = {index["name"]: index for index in inspector.get_indexes(table)}
        assert indexes[f"ix_{table}_name"]["unique"]
    assert "sentiment" in {column["name"] for column in inspector.get_columns("summary_tags")}

"""SQLAlchemy models for the signal pipeline."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum, IntEnum

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import Uuid


class Base(DeclarativeBase):
    """Base class for ORM models."""


class TimestampMixin:
    """Adds created_at/updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class RawItemStatus(str, Enum):
    NEW = "new"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


class OriginType(str, Enum):
    COMPANY_GENERATED = "company_generated"
    USER_GENERATED = "user_generated"


class SourceType(IntEnum):
    FACEBOOK = 1
    PINTEREST = 2
    X = 3
    TIKTOK = 4
    INSTAGRAM = 5
    YOUTUBE = 6
    LINKEDIN = 7
    BLOG = 8
    EMAIL_NEWSLETTERS = 9
    G2 = 10
    CAPTERRA = 11
    TRUST_RADIUS = 12
    GET_APP = 13
    SOFTWARE_ADVICE = 14
    GARTNER_PEER_INSIGHTS = 15
    REDDIT = 16
    NEWS = 17
    FACEBOOK_REVIEWS = 18
    COMPANY_CONTENT = 99


class SummaryStatus(IntEnum):
    NEW = 0
    GIST_READY = 1
    MENTIONS_DETECTED = 6
    COMPLETE = 7
    ERROR = 99


class JobStage(str, Enum):
    PROCESS = "process"
    AGGREGATE = "aggregate"
    REFRESH = "refresh"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    RETRY = "retry"


class Company(TimestampMixin, Base):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str | None] = mapped_column(String(200), unique=True)


class CompanyGroup(TimestampMixin, Base):
    __tablename__ = "company_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str | None] = mapped_column(String(200), unique=True)
    is_private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CompanyGroupMember(Base):
    __tablename__ = "company_group_members"
    __table_args__ = (
        UniqueConstraint("group_id", "company_id", name="uq_company_group_members"),
        Index("ix_company_group_members_company", "company_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("company_groups.id", ondelete="CASCADE"), nullable=False)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)


class RawItem(TimestampMixin, Base):
    """One scraped unit of content about a tracked company."""

    __tablename__ = "raw_items"
    __table_args__ = (
        Index("ix_raw_items_status_claimed", "status", "processing_at"),
        Index("ix_raw_items_company_status", "company_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), nullable=False)
    source_type: Mapped[SourceType] = mapped_column(
        SAEnum(SourceType, name="source_type", native_enum=False, length=32),
        nullable=False,
    )
    origin: Mapped[OriginType] = mapped_column(
        SAEnum(OriginType, name="origin_type", native_enum=False, length=24),
        nullable=False,
        default=OriginType.USER_GENERATED,
    )
    status: Mapped[RawItemStatus] = mapped_column(
        SAEnum(RawItemStatus, name="raw_item_status", native_enum=False, length=16),
        nullable=False,
        default=RawItemStatus.NEW,
    )
    content: Mapped[str | None] = mapped_column(Text)
    post_url: Mapped[str | None] = mapped_column(String(2048))
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    processing_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    engagement_score: Mapped[float | None] = mapped_column(Float)


class NormalizedSummary(TimestampMixin, Base):
    """At most one per raw item: the summarizer output plus canonical links."""

    __tablename__ = "normalized_summaries"
    __table_args__ = (
        UniqueConstraint("raw_item_id", name="uq_normalized_summaries_raw_item"),
        Index("ix_normalized_summaries_company_status", "company_id", "processing_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    raw_item_id: Mapped[int] = mapped_column(ForeignKey("raw_items.id", ondelete="CASCADE"), nullable=False)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), nullable=False)
    source_type: Mapped[SourceType] = mapped_column(
        SAEnum(SourceType, name="source_type", native_enum=False, length=32),
        nullable=False,
    )
    gist: Mapped[str] = mapped_column(Text, nullable=False, default="")
    points: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    sentiment: Mapped[str | None] = mapped_column(String(32))
    sentiment_reason: Mapped[str | None] = mapped_column(String(512))
    signal_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    signal_hints: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    processing_status: Mapped[int] = mapped_column(Integer, nullable=False, default=int(SummaryStatus.NEW))
    seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    url: Mapped[str | None] = mapped_column(String(2048))


class _LabelLinkMixin:
    label: Mapped[str] = mapped_column(String(200), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(1024))
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)


class SummaryTag(_LabelLinkMixin, Base):
    __tablename__ = "summary_tags"
    __table_args__ = (Index("ix_summary_tags_summary", "summary_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    summary_id: Mapped[int] = mapped_column(ForeignKey("normalized_summaries.id", ondelete="CASCADE"), nullable=False)
    canonical_tag_id: Mapped[int | None] = mapped_column(ForeignKey("canonical_tags.id"))
    sentiment: Mapped[str | None] = mapped_column(String(1))


class SummaryTheme(_LabelLinkMixin, Base):
    __tablename__ = "summary_themes"
    __table_args__ = (Index("ix_summary_themes_summary", "summary_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    summary_id: Mapped[int] = mapped_column(ForeignKey("normalized_summaries.id", ondelete="CASCADE"), nullable=False)
    canonical_theme_id: Mapped[int | None] = mapped_column(ForeignKey("canonical_themes.id"))


class _CanonicalEntryMixin:
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True, index=True)
    slug: Mapped[str] = mapped_column(String(220), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(String(1024))
    embedding: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class CanonicalTag(_CanonicalEntryMixin, Base):
    __tablename__ = "canonical_tags"


class CanonicalTheme(_CanonicalEntryMixin, Base):
    __tablename__ = "canonical_themes"


class TopicState(Base):
    """Last time a (company, rule type, topic) was surfaced."""

    __tablename__ = "topic_states"
    __table_args__ = (
        UniqueConstraint("company_id", "type", "topic_key", name="uq_topic_states_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    topic_key: Mapped[str] = mapped_column(String(64), nullable=False)
    last_notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class TopicObservation(Base):
    """Daily observation counter for a (company, rule type, topic)."""

    __tablename__ = "topic_observations"
    __table_args__ = (
        UniqueConstraint("company_id", "type", "topic_key", "date_bucket", name="uq_topic_observations_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    topic_key: Mapped[str] = mapped_column(String(64), nullable=False)
    date_bucket: Mapped[date] = mapped_column(Date, nullable=False)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class GroupProcessingState(Base):
    """Per-group watermark plus the lock-expiry column used for single-writer exclusion."""

    __tablename__ = "group_processing_states"

    group_id: Mapped[int] = mapped_column(ForeignKey("company_groups.id", ondelete="CASCADE"), primary_key=True)
    watermark: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    locked_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class StrategicSummary(Base):
    """Narrated signal persisted for a group."""

    __tablename__ = "strategic_summaries"
    __table_args__ = (
        UniqueConstraint("group_id", "period_type", "source_key", name="uq_strategic_summaries_source"),
        Index("ix_strategic_summaries_group_created", "group_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("company_groups.id", ondelete="CASCADE"), nullable=False)
    company_id: Mapped[int | None] = mapped_column(Integer)
    period_type: Mapped[str] = mapped_column(String(16), nullable=False, default="daily")
    source_key: Mapped[str] = mapped_column(String(200), nullable=False)
    summary_text: Mapped[str] = mapped_column(Text, nullable=False)
    tier: Mapped[str | None] = mapped_column(String(8))
    tier_reason: Mapped[str | None] = mapped_column(String(512))
    signal_types: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    raw_item_id: Mapped[int | None] = mapped_column(Integer)
    summary_id: Mapped[int | None] = mapped_column(Integer)
    url: Mapped[str | None] = mapped_column(String(2048))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class GroupSnapshot(Base):
    """Persisted, periodically refreshed aggregate view for a group."""

    __tablename__ = "group_snapshots"
    __table_args__ = (
        Index("ix_group_snapshots_lookup", "group_id", "kind", "window_days", "generated_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("company_groups.id", ondelete="CASCADE"), nullable=False)
    slug: Mapped[str | None] = mapped_column(String(200))
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    window_days: Mapped[int] = mapped_column(Integer, nullable=False)
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)


class JobRun(TimestampMixin, Base):
    """Represents a single job execution."""

    __tablename__ = "job_runs"
    __table_args__ = (
        Index("ix_job_runs_stage_status", "stage", "status"),
        Index("ix_job_runs_trace", "trace_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    stage: Mapped[JobStage] = mapped_column(
        SAEnum(JobStage, name="job_stage", native_enum=False, length=16),
        nullable=False,
    )
    status: Mapped[JobStatus] = mapped_column(
        SAEnum(JobStatus, name="job_status", native_enum=False, length=16),
        nullable=False,
        default=JobStatus.PENDING,
    )
    scope: Mapped[str | None] = mapped_column(String(64))
    task_name: Mapped[str | None] = mapped_column(String(100))
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    items_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(String(512))
    trace_id: Mapped[str | None] = mapped_column(String(64))

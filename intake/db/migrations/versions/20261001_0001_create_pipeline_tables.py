"""Create pipeline tables: companies, groups, raw items, summaries, vocabulary, pulse state"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "20261001_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def _canonical_table(name: str) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("slug", sa.String(length=220), nullable=False),
        sa.Column("description", sa.String(length=1024), nullable=True),
        sa.Column("embedding", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.UniqueConstraint("slug", name=f"uq_{name}_slug"),
    )
    op.create_index(f"ix_{name}_name", name, ["name"], unique=False)


def _label_link_table(name: str, canonical_column: str, canonical_table: str) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "summary_id",
            sa.Integer(),
            sa.ForeignKey("normalized_summaries.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(canonical_column, sa.Integer(), sa.ForeignKey(f"{canonical_table}.id"), nullable=True),
        sa.Column("label", sa.String(length=200), nullable=False),
        sa.Column("reason", sa.String(length=1024), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=False, server_default="0"),
    )
    op.create_index(f"ix_{name}_summary", name, ["summary_id"], unique=False)


def upgrade() -> None:
    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("slug", sa.String(length=200), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("slug", name="uq_companies_slug"),
    )
    op.create_table(
        "company_groups",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("slug", sa.String(length=200), nullable=True),
        sa.Column("is_private", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("slug", name="uq_company_groups_slug"),
    )
    op.create_table(
        "company_group_members",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("company_groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("group_id", "company_id", name="uq_company_group_members"),
    )
    op.create_index("ix_company_group_members_company", "company_group_members", ["company_id"], unique=False)

    op.create_table(
        "raw_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("source_type", sa.String(length=32), nullable=False),
        sa.Column("origin", sa.String(length=24), nullable=False, server_default="USER_GENERATED"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="NEW"),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("post_url", sa.String(length=2048), nullable=True),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("engagement_score", sa.Float(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_raw_items_status_claimed", "raw_items", ["status", "processing_at"], unique=False)
    op.create_index("ix_raw_items_company_status", "raw_items", ["company_id", "status"], unique=False)

    op.create_table(
        "normalized_summaries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("raw_item_id", sa.Integer(), sa.ForeignKey("raw_items.id", ondelete="CASCADE"), nullable=False),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("source_type", sa.String(length=32), nullable=False),
        sa.Column("gist", sa.Text(), nullable=False, server_default=""),
        sa.Column("points", sa.JSON(), nullable=False),
        sa.Column("sentiment", sa.String(length=32), nullable=True),
        sa.Column("sentiment_reason", sa.String(length=512), nullable=True),
        sa.Column("signal_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("signal_hints", sa.JSON(), nullable=False),
        sa.Column("processing_status", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("url", sa.String(length=2048), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("raw_item_id", name="uq_normalized_summaries_raw_item"),
    )
    op.create_index(
        "ix_normalized_summaries_company_status",
        "normalized_summaries",
        ["company_id", "processing_status"],
        unique=False,
    )

    _canonical_table("canonical_tags")
    _canonical_table("canonical_themes")
    _label_link_table("summary_tags", "canonical_tag_id", "canonical_tags")
    _label_link_table("summary_themes", "canonical_theme_id", "canonical_themes")

    op.create_table(
        "topic_states",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("topic_key", sa.String(length=64), nullable=False),
        sa.Column("last_notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("company_id", "type", "topic_key", name="uq_topic_states_key"),
    )
    op.create_table(
        "topic_observations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("topic_key", sa.String(length=64), nullable=False),
        sa.Column("date_bucket", sa.Date(), nullable=False),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("company_id", "type", "topic_key", "date_bucket", name="uq_topic_observations_day"),
    )

    op.create_table(
        "group_processing_states",
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("company_groups.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("watermark", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "strategic_summaries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("company_groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=True),
        sa.Column("period_type", sa.String(length=16), nullable=False, server_default="daily"),
        sa.Column("source_key", sa.String(length=200), nullable=False),
        sa.Column("summary_text", sa.Text(), nullable=False),
        sa.Column("tier", sa.String(length=8), nullable=True),
        sa.Column("tier_reason", sa.String(length=512), nullable=True),
        sa.Column("signal_types", sa.JSON(), nullable=False),
        sa.Column("raw_item_id", sa.Integer(), nullable=True),
        sa.Column("summary_id", sa.Integer(), nullable=True),
        sa.Column("url", sa.String(length=2048), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.UniqueConstraint("group_id", "period_type", "source_key", name="uq_strategic_summaries_source"),
    )
    op.create_index(
        "ix_strategic_summaries_group_created",
        "strategic_summaries",
        ["group_id", "created_at"],
        unique=False,
    )
    op.create_table(
        "group_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("company_groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("slug", sa.String(length=200), nullable=True),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("window_days", sa.Integer(), nullable=False),
        sa.Column("schema_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
    )
    op.create_index(
        "ix_group_snapshots_lookup",
        "group_snapshots",
        ["group_id", "kind", "window_days", "generated_at"],
        unique=False,
    )

    op.create_table(
        "job_runs",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("stage", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("scope", sa.String(length=64), nullable=True),
        sa.Column("task_name", sa.String(length=100), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("items_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.String(length=512), nullable=True),
        sa.Column("trace_id", sa.String(length=64), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_job_runs_stage_status", "job_runs", ["stage", "status"], unique=False)
    op.create_index("ix_job_runs_trace", "job_runs", ["trace_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_job_runs_trace", table_name="job_runs")
    op.drop_index("ix_job_runs_stage_status", table_name="job_runs")
    op.drop_table("job_runs")
    op.drop_index("ix_group_snapshots_lookup", table_name="group_snapshots")
    op.drop_table("group_snapshots")
    op.drop_index("ix_strategic_summaries_group_created", table_name="strategic_summaries")
    op.drop_table("strategic_summaries")
    op.drop_table("group_processing_states")
    op.drop_table("topic_observations")
    op.drop_table("topic_states")
    for name in ("summary_themes", "summary_tags"):
        op.drop_index(f"ix_{name}_summary", table_name=name)
        op.drop_table(name)
    for name in ("canonical_themes", "canonical_tags"):
        op.drop_index(f"ix_{name}_name", table_name=name)
        op.drop_table(name)
    op.drop_index("ix_normalized_summaries_company_status", table_name="normalized_summaries")
    op.drop_table("normalized_summaries")
    op.drop_index("ix_raw_items_company_status", table_name="raw_items")
    op.drop_index("ix_raw_items_status_claimed", table_name="raw_items")
    op.drop_table("raw_items")
    op.drop_index("ix_company_group_members_company", table_name="company_group_members")
    op.drop_table("company_group_members")
    op.drop_table("company_groups")
    op.drop_table("companies")

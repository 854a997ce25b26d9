"""Create lifecycle tables

Revision ID: a3c1e9d04b72
Revises:
Create Date: 2026-10-17

Creates the mutable issues/issue_runs tables and the six append-only tables
(evidence, verdicts, evidence_links, timeline_events, publish_batches,
publish_items) with triggers denying UPDATE and DELETE.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

from control_center.db.append_only import (
    APPEND_ONLY_FUNCTION,
    postgresql_trigger_statement,
    sqlite_trigger_statements,
)

# revision identifiers, used by Alembic.
revision = "a3c1e9d04b72"
down_revision = None
branch_labels = None
depends_on = None

APPEND_ONLY = (
    "evidence",
    "verdicts",
    "evidence_links",
    "timeline_events",
    "publish_batches",
    "publish_items",
)

ISSUE_STATES = (
    "CREATED", "SPEC_READY", "IMPLEMENTING_PREP", "REVIEW_READY", "HOLD", "DONE", "FAILED",
)
LOOP_STEPS = (
    "S1_PICK_ISSUE", "S2_SPEC_READY", "S3_IMPLEMENT_PREP", "S4_REVIEW", "S5_MERGE",
    "S6_DEPLOYMENT_OBSERVE", "S7_VERIFY_GATE", "S8_CLOSE", "S9_REMEDIATE",
)
EVENT_TYPES = (
    "ISSUE_CREATED", "STATE_CHANGED", "RUN_STARTED", "RUN_FINISHED", "EVIDENCE_RECORDED",
    "VERDICT_SET", "EVIDENCE_LINKED", "PR_MERGED", "PUBLISHED", "ERROR_OCCURRED",
)


def upgrade() -> None:
    op.create_table(
        "issues",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("public_id", sa.String(length=8), nullable=False),
        sa.Column("canonical_id", sa.String(length=64), nullable=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("status", sa.Enum(*ISSUE_STATES, name="issue_state"), nullable=False),
        sa.Column("github_url", sa.String(length=500), nullable=True),
        sa.Column("repository", sa.String(length=255), nullable=True),
        sa.Column("pr_number", sa.Integer(), nullable=True),
        sa.Column("pr_url", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_issues_public_id", "issues", ["public_id"], unique=True)
    op.create_index("ix_issues_canonical_id", "issues", ["canonical_id"], unique=True)
    op.create_index("ix_issues_status", "issues", ["status"])
    op.create_index("ix_issues_repository_pr", "issues", ["repository", "pr_number"])

    op.create_table(
        "issue_runs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("issue_id", sa.String(length=36), sa.ForeignKey("issues.id"), nullable=False),
        sa.Column("step", sa.Enum(*LOOP_STEPS, name="loop_step"), nullable=True),
        sa.Column(
            "status",
            sa.Enum("RUNNING", "SUCCEEDED", "FAILED", name="run_status"),
            nullable=False,
        ),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("actor", sa.String(length=128), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_issue_runs_issue_id", "issue_runs", ["issue_id"])

    op.create_table(
        "evidence",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("issue_id", sa.String(length=36), sa.ForeignKey("issues.id"), nullable=False),
        sa.Column("run_id", sa.String(length=36), sa.ForeignKey("issue_runs.id"), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("params", sa.JSON(), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("params_hash", sa.String(length=64), nullable=False),
        sa.Column("result_hash", sa.String(length=64), nullable=False),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("actor", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_evidence_issue_id", "evidence", ["issue_id"])
    op.create_index("ix_evidence_run_id", "evidence", ["run_id"])
    op.create_index("ix_evidence_result_hash", "evidence", ["result_hash"])
    op.create_index(
        "ix_evidence_issue_run_action_hash",
        "evidence",
        ["issue_id", "run_id", "action", "result_hash"],
    )

    op.create_table(
        "verdicts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("issue_id", sa.String(length=36), sa.ForeignKey("issues.id"), nullable=False),
        sa.Column("run_id", sa.String(length=36), sa.ForeignKey("issue_runs.id"), nullable=False),
        sa.Column("verdict", sa.Enum("GREEN", "RED", name="verdict"), nullable=False),
        sa.Column("rationale", sa.Text(), nullable=False),
        sa.Column("failed_checks", sa.JSON(), nullable=False),
        sa.Column("evaluation_rules", sa.JSON(), nullable=False),
        sa.Column("evidence_id", sa.String(length=36), sa.ForeignKey("evidence.id"), nullable=False),
        sa.Column("evidence_hash", sa.String(length=64), nullable=False),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("evaluated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "issue_id", "run_id", "evidence_hash", name="uq_verdicts_issue_run_evidence"
        ),
    )
    op.create_index("ix_verdicts_issue_id", "verdicts", ["issue_id"])
    op.create_index("ix_verdicts_run_id", "verdicts", ["run_id"])

    op.create_table(
        "evidence_links",
        sa.Column("verdict_id", sa.String(length=36), sa.ForeignKey("verdicts.id"), primary_key=True),
        sa.Column("evidence_id", sa.String(length=36), sa.ForeignKey("evidence.id"), primary_key=True),
        sa.Column("evidence_hash", sa.String(length=64), nullable=False),
        sa.Column("linked_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "timeline_events",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column("issue_id", sa.String(length=36), sa.ForeignKey("issues.id"), nullable=False),
        sa.Column("run_id", sa.String(length=36), nullable=True),
        sa.Column("event_type", sa.Enum(*EVENT_TYPES, name="timeline_event_type"), nullable=False),
        sa.Column("event_data", sa.JSON(), nullable=False),
        sa.Column("actor", sa.String(length=128), nullable=False),
        sa.Column(
            "actor_type",
            sa.Enum("human", "agent", "system", "webhook", name="actor_type"),
            nullable=False,
        ),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_timeline_events_event_type", "timeline_events", ["event_type"])
    op.create_index(
        "ix_timeline_events_issue_order", "timeline_events", ["issue_id", "occurred_at", "id"]
    )

    op.create_table(
        "publish_batches",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("session_id", sa.String(length=128), nullable=False),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("batch_hash", sa.String(length=64), nullable=False),
        sa.Column("total_items", sa.Integer(), nullable=False),
        sa.Column("created_count", sa.Integer(), nullable=False),
        sa.Column("updated_count", sa.Integer(), nullable=False),
        sa.Column("skipped_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_publish_batches_session_created", "publish_batches", ["session_id", "created_at"]
    )

    op.create_table(
        "publish_items",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("batch_id", sa.String(length=36), sa.ForeignKey("publish_batches.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("issue_id", sa.String(length=36), sa.ForeignKey("issues.id"), nullable=True),
        sa.Column("canonical_id", sa.String(length=64), nullable=True),
        sa.Column(
            "action",
            sa.Enum("create", "update", "skip", name="publish_action"),
            nullable=False,
        ),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("result_json", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("truncated", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("batch_id", "position", name="uq_publish_items_batch_position"),
    )
    op.create_index("ix_publish_items_issue_id", "publish_items", ["issue_id"])
    op.create_index("ix_publish_items_canonical_id", "publish_items", ["canonical_id"])

    dialect = op.get_bind().dialect.name
    if dialect == "postgresql":
        op.execute(
            f"""
            CREATE OR REPLACE FUNCTION {APPEND_ONLY_FUNCTION}() RETURNS trigger AS $$
            BEGIN
                RAISE EXCEPTION USING MESSAGE = TG_TABLE_NAME || ' is append-only';
            END;
            $$ LANGUAGE plpgsql
            """
        )
        for table in APPEND_ONLY:
            op.execute(postgresql_trigger_statement(table))
    elif dialect == "sqlite":
        for table in APPEND_ONLY:
            for statement in sqlite_trigger_statements(table):
                op.execute(statement)


def downgrade() -> None:
    dialect = op.get_bind().dialect.name
    for table in APPEND_ONLY:
        if dialect == "postgresql":
            op.execute(f"DROP TRIGGER IF EXISTS trg_{table}_append_only ON {table}")
        elif dialect == "sqlite":
            op.execute(f"DROP TRIGGER IF EXISTS trg_{table}_no_update")
            op.execute(f"DROP TRIGGER IF EXISTS trg_{table}_no_delete")
    if dialect == "postgresql":
        op.execute(f"DROP FUNCTION IF EXISTS {APPEND_ONLY_FUNCTION}()")

    op.drop_table("publish_items")
    op.drop_table("publish_batches")
    op.drop_table("timeline_events")
    op.drop_table("evidence_links")
    op.drop_table("verdicts")
    op.drop_table("evidence")
    op.drop_table("issue_runs")
    op.drop_table("issues")

    if dialect == "postgresql":
        for enum_name in (
            "publish_action", "actor_type", "timeline_event_type", "verdict",
            "run_status", "loop_step", "issue_state",
        ):
            op.execute(f"DROP TYPE IF EXISTS {enum_name}")

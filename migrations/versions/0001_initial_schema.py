"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Points ledger (totals + append-only log), the derived ranking snapshot,
and the two externally owned lookup tables (completions, group members).
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- points_totals ---
    op.create_table(
        "points_totals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("course_id", sa.Integer(), nullable=False),
        sa.Column("points", sa.Numeric(18, 5), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("modified_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "course_id", name="uq_points_total_user_course"),
    )
    op.create_index("ix_points_totals_id", "points_totals", ["id"])
    op.create_index("ix_points_totals_user_id", "points_totals", ["user_id"])
    op.create_index("ix_points_totals_course_points", "points_totals", ["course_id", "points"])

    # --- award_logs ---
    op.create_table(
        "award_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("points_total_id", sa.Integer(), nullable=False),
        sa.Column("course_id", sa.Integer(), nullable=False),
        sa.Column("completion_id", sa.Integer(), nullable=True),
        sa.Column("points", sa.Numeric(18, 5), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["points_total_id"], ["points_totals.id"],
            name="fk_award_logs_points_total", ondelete="CASCADE",
        ),
    )
    op.create_index("ix_award_logs_id", "award_logs", ["id"])
    op.create_index("ix_award_logs_points_total_id", "award_logs", ["points_total_id"])
    op.create_index("ix_award_logs_completion_id", "award_logs", ["completion_id"])
    op.create_index("ix_award_logs_course_created", "award_logs", ["course_id", "created_at"])

    # --- ranking_snapshots ---
    op.create_table(
        "ranking_snapshots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("course_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("points", sa.Numeric(18, 5), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("total_users", sa.Integer(), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("course_id", "user_id", name="uq_ranking_snapshot_course_user"),
    )
    op.create_index("ix_ranking_snapshots_id", "ranking_snapshots", ["id"])
    op.create_index("ix_ranking_snapshots_course_position", "ranking_snapshots", ["course_id", "position"])

    # --- activity_completions (owned by the course platform) ---
    op.create_table(
        "activity_completions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("course_id", sa.Integer(), nullable=False),
        sa.Column("activity_type", sa.String(64), nullable=False),
        sa.Column("completion_state", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_activity_completions_id", "activity_completions", ["id"])
    op.create_index("ix_activity_completions_user_id", "activity_completions", ["user_id"])
    op.create_index("ix_activity_completions_course_id", "activity_completions", ["course_id"])

    # --- group_members (owned by the enrolment system) ---
    op.create_table(
        "group_members",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("group_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("group_id", "user_id", name="uq_group_member"),
    )
    op.create_index("ix_group_members_id", "group_members", ["id"])
    op.create_index("ix_group_members_group_id", "group_members", ["group_id"])
    op.create_index("ix_group_members_user_id", "group_members", ["user_id"])


def downgrade() -> None:
    op.drop_table("group_members")
    op.drop_table("activity_completions")
    op.drop_table("ranking_snapshots")
    op.drop_table("award_logs")
    op.drop_table("points_totals")

"""Scheduling core schema

Creates the tables of the FSRS scheduling core:
- learners / cards / deck_assignments: enrollment and content read model
- learner_card_states: derived per-(learner, card) scheduling cache
- review_events: append-only review history (source of truth)
- learner_model_parameters: versioned FSRS weights, one active per learner
- jobs: handles for deferred rebuild / optimize / initialize runs

Revision ID: 001
Revises:
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ===========================================
    # Learners & content
    # ===========================================
    op.create_table(
        "learners",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column(
            "is_archived", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "cards",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("deck_id", sa.String(36), nullable=False, index=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("front", sa.Text(), nullable=False),
        sa.Column("back", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "deck_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "learner_id",
            sa.String(36),
            sa.ForeignKey("learners.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("deck_id", sa.String(36), nullable=False, index=True),
        sa.Column(
            "assigned_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "learner_id", "deck_id", name="uq_deck_assignments_learner_deck"
        ),
    )

    # ===========================================
    # Scheduling state cache
    # ===========================================
    op.create_table(
        "learner_card_states",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "learner_id",
            sa.String(36),
            sa.ForeignKey("learners.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "card_id",
            sa.String(36),
            sa.ForeignKey("cards.id", ondelete="CASCADE"),
            nullable=False,
        ),
        # FSRS state
        sa.Column("stability", sa.Float(), nullable=False),
        sa.Column("difficulty", sa.Float(), nullable=False),
        sa.Column("state", sa.String(20), nullable=False, server_default="new"),
        sa.Column("scheduled_days", sa.Integer(), nullable=False, server_default="0"),
        # Scheduling
        sa.Column("due", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_reviewed", sa.DateTime(timezone=True), nullable=True),
        # Counters
        sa.Column("repetitions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lapses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "learner_id", "card_id", name="uq_learner_card_states_pair"
        ),
        sa.CheckConstraint("stability > 0", name="ck_learner_card_states_stability"),
        sa.CheckConstraint(
            "difficulty >= 1 AND difficulty <= 10",
            name="ck_learner_card_states_difficulty",
        ),
    )

    # Due-card queries filter by learner and order by due
    op.create_index(
        "ix_learner_card_states_learner_due",
        "learner_card_states",
        ["learner_id", "due"],
    )

    # ===========================================
    # Review history
    # ===========================================
    op.create_table(
        "review_events",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("learner_id", sa.String(36), nullable=False, index=True),
        sa.Column("card_id", sa.String(36), nullable=False),
        sa.Column("session_id", sa.String(36), nullable=True, index=True),
        sa.Column(
            "review_type", sa.String(20), nullable=False, server_default="vocabulary"
        ),
        # Review details
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("response_time_ms", sa.Integer(), nullable=True),
        sa.Column(
            "reviewed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        # Pre-update snapshot
        sa.Column("previous_state", sa.String(20), nullable=True),
        sa.Column("previous_stability", sa.Float(), nullable=True),
        sa.Column("previous_difficulty", sa.Float(), nullable=True),
        sa.Column("previous_due", sa.DateTime(timezone=True), nullable=True),
        sa.Column("previous_last_reviewed", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("rating BETWEEN 1 AND 4", name="ck_review_events_rating"),
    )

    # Replay reads a learner's events per card in chronological order
    op.create_index(
        "ix_review_events_learner_card_reviewed_at",
        "review_events",
        ["learner_id", "card_id", "reviewed_at"],
    )

    # ===========================================
    # Memory model parameters
    # ===========================================
    op.create_table(
        "learner_model_parameters",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "learner_id",
            sa.String(36),
            sa.ForeignKey("learners.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("weights", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("training_set_size", sa.Integer(), nullable=True),
        sa.Column("optimization_score", sa.Float(), nullable=True),
        sa.Column(
            "last_optimized",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    # At most one active parameter set per learner
    op.create_index(
        "uq_learner_model_parameters_active",
        "learner_model_parameters",
        ["learner_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    # ===========================================
    # Jobs
    # ===========================================
    op.create_table(
        "jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("job_type", sa.String(50), nullable=False),
        sa.Column(
            "status", sa.String(20), nullable=False, server_default="pending", index=True
        ),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    op.drop_table("jobs")
    op.drop_index(
        "uq_learner_model_parameters_active", table_name="learner_model_parameters"
    )
    op.drop_table("learner_model_parameters")
    op.drop_index("ix_review_events_learner_card_reviewed_at", table_name="review_events")
    op.drop_table("review_events")
    op.drop_index(
        "ix_learner_card_states_learner_due", table_name="learner_card_states"
    )
    op.drop_table("learner_card_states")
    op.drop_table("deck_assignments")
    op.drop_table("cards")
    op.drop_table("learners")

"""Create the labs knowledge pipeline tables."""

from __future__ import annotations

from typing import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: str | Sequence[str] | None = None
branch_labels = None
depends_on = None


def _uuid(name: str, *args, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), *args, **kwargs)


def _now(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=False),
        nullable=nullable,
        server_default=sa.text("timezone('utc', now())"),
    )


def upgrade() -> None:
    op.create_table(
        "labs_sops",
        _uuid("id", nullable=False),
        sa.Column("sop_code", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("trade_family", sa.String(), nullable=True),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("default_observation_mode", sa.String(), nullable=False, server_default="standard"),
        sa.Column("required_supervised_completions", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("review_question_count", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("review_pass_threshold", sa.Integer(), nullable=False, server_default="80"),
        sa.Column("match_tags", sa.JSON(), nullable=True, server_default=sa.text("'[]'::json")),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        _now("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_labs_sops_sop_code", "labs_sops", ["sop_code"])

    op.create_table(
        "labs_sop_checklist_items",
        _uuid("id", nullable=False),
        _uuid("sop_id", sa.ForeignKey("labs_sops.id"), nullable=False),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("generates_observation", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("trigger_timing", sa.String(), nullable=False, server_default="on_check"),
        sa.Column("script_phase", sa.String(), nullable=True),
        sa.Column("knowledge_type", sa.String(), nullable=False, server_default="procedure"),
        sa.Column("requires_photo", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _now("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_labs_sop_checklist_items_sop_id", "labs_sop_checklist_items", ["sop_id"])

    op.create_table(
        "labs_observations",
        _uuid("id", nullable=False),
        _uuid("sop_id", nullable=True),
        sa.Column("step_order", sa.Integer(), nullable=True),
        _uuid("checklist_item_id", sa.ForeignKey("labs_sop_checklist_items.id"), nullable=True),
        _uuid("crew_member_id", nullable=False),
        _uuid("project_id", nullable=True),
        sa.Column("knowledge_type", sa.String(), nullable=False, server_default="procedure"),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("photo_ref", sa.String(), nullable=True),
        sa.Column("condition", sa.String(), nullable=True),
        sa.Column("deviation_reason", sa.Text(), nullable=True),
        sa.Column("source", sa.String(), nullable=False, server_default="checklist"),
        _uuid("supervisor_id", nullable=True),
        _uuid("submission_id", nullable=True),
        _now("captured_at", nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_labs_observations_sop_id", "labs_observations", ["sop_id"])
    op.create_index("ix_labs_observations_crew_member_id", "labs_observations", ["crew_member_id"])
    op.create_index("ix_labs_observations_project_id", "labs_observations", ["project_id"])
    op.create_index("ix_labs_observations_category", "labs_observations", ["category"])

    op.create_table(
        "labs_pending_observations",
        _uuid("id", nullable=False),
        _uuid("sop_id", nullable=False),
        sa.Column("step_order", sa.Integer(), nullable=False),
        _uuid("crew_member_id", nullable=False),
        _uuid("project_id", nullable=True),
        sa.Column("draft", sa.JSON(), nullable=False, server_default=sa.text("'{}'::json")),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        _uuid("observation_id", sa.ForeignKey("labs_observations.id"), nullable=True),
        _now("queued_at"),
        sa.Column("processed_at", sa.DateTime(timezone=False), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_labs_pending_observations_sop_id", "labs_pending_observations", ["sop_id"])
    op.create_index("ix_labs_pending_observations_project_id", "labs_pending_observations", ["project_id"])

    op.create_table(
        "labs_knowledge_items",
        _uuid("id", nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("knowledge_type", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=True, server_default=sa.text("'[]'::json")),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("confidence_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("observation_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("confirmed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("experiment_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("experiment_pass_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(), nullable=False, server_default="draft"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("review_hold_evidence", sa.Integer(), nullable=True),
        sa.Column("draft_key", sa.String(), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=False), nullable=True),
        _now("created_at"),
        _now("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("draft_key"),
    )
    op.create_index("ix_labs_knowledge_items_category", "labs_knowledge_items", ["category"])

    op.create_table(
        "labs_experiments",
        _uuid("id", nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("hypothesis", sa.Text(), nullable=True),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("experiment_type", sa.String(), nullable=False, server_default="technique"),
        sa.Column("knowledge_type", sa.String(), nullable=False, server_default="technique"),
        sa.Column("match_criteria", sa.JSON(), nullable=True, server_default=sa.text("'[]'::json")),
        sa.Column("status", sa.String(), nullable=False, server_default="draft"),
        sa.Column("outcome", sa.String(), nullable=True),
        sa.Column("activated_via", sa.String(), nullable=True),
        _uuid("knowledge_item_id", sa.ForeignKey("labs_knowledge_items.id"), nullable=True),
        _uuid("source_submission_id", nullable=True),
        _uuid("created_by", nullable=True),
        _now("created_at"),
        sa.Column("activated_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=False), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "labs_experiment_results",
        _uuid("id", nullable=False),
        _uuid("experiment_id", sa.ForeignKey("labs_experiments.id"), nullable=False),
        sa.Column("passed", sa.Boolean(), nullable=False),
        sa.Column("observation_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("note", sa.Text(), nullable=True),
        _uuid("recorded_by", nullable=True),
        _now("recorded_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_labs_experiment_results_experiment_id", "labs_experiment_results", ["experiment_id"])

    op.create_table(
        "labs_submissions",
        _uuid("id", nullable=False),
        _uuid("author_id", nullable=False),
        _uuid("project_id", nullable=True),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("knowledge_type", sa.String(), nullable=False, server_default="procedure"),
        sa.Column("description", sa.Text(), nullable=False),
        _uuid("knowledge_item_id", sa.ForeignKey("labs_knowledge_items.id"), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="submitted"),
        sa.Column("decision", sa.String(), nullable=True),
        _uuid("observation_id", sa.ForeignKey("labs_observations.id"), nullable=True),
        _uuid("experiment_id", sa.ForeignKey("labs_experiments.id"), nullable=True),
        _uuid("reviewed_by", nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=False), nullable=True),
        _now("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "labs_knowledge_links",
        _uuid("id", nullable=False),
        _uuid("knowledge_item_id", sa.ForeignKey("labs_knowledge_items.id"), nullable=False),
        _uuid("observation_id", sa.ForeignKey("labs_observations.id"), nullable=True),
        _uuid("experiment_id", sa.ForeignKey("labs_experiments.id"), nullable=True),
        sa.Column("link_type", sa.String(), nullable=False, server_default="auto_detected"),
        sa.Column("link_confidence", sa.Integer(), nullable=True),
        _now("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("knowledge_item_id", "observation_id"),
        sa.UniqueConstraint("knowledge_item_id", "experiment_id"),
    )
    op.create_index("ix_labs_knowledge_links_knowledge_item_id", "labs_knowledge_links", ["knowledge_item_id"])
    op.create_index("ix_labs_knowledge_links_observation_id", "labs_knowledge_links", ["observation_id"])
    op.create_index("ix_labs_knowledge_links_experiment_id", "labs_knowledge_links", ["experiment_id"])

    op.create_table(
        "labs_training_records",
        _uuid("id", nullable=False),
        _uuid("crew_member_id", nullable=False),
        _uuid("sop_id", nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="in_progress"),
        sa.Column("supervised_completion_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("supervised_completions", sa.JSON(), nullable=True, server_default=sa.text("'[]'::json")),
        sa.Column("review_attempts", sa.JSON(), nullable=True, server_default=sa.text("'[]'::json")),
        sa.Column("best_review_score", sa.Integer(), nullable=True),
        sa.Column("certified_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=False), nullable=True),
        _uuid("revoked_by", nullable=True),
        sa.Column("revocation_reason", sa.Text(), nullable=True),
        _now("created_at"),
        _now("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("crew_member_id", "sop_id"),
    )
    op.create_index("ix_labs_training_records_crew_member_id", "labs_training_records", ["crew_member_id"])
    op.create_index("ix_labs_training_records_sop_id", "labs_training_records", ["sop_id"])

    op.create_table(
        "labs_ballots",
        _uuid("id", nullable=False),
        sa.Column("week_start", sa.DateTime(timezone=False), nullable=False),
        sa.Column("week_end", sa.DateTime(timezone=False), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="open"),
        sa.Column("total_votes", sa.Integer(), nullable=False, server_default="0"),
        _uuid("winning_experiment_id", sa.ForeignKey("labs_experiments.id"), nullable=True),
        _uuid("created_by", nullable=True),
        _now("created_at"),
        sa.Column("closed_at", sa.DateTime(timezone=False), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "labs_ballot_options",
        _uuid("id", nullable=False),
        _uuid("ballot_id", sa.ForeignKey("labs_ballots.id"), nullable=False),
        _uuid("experiment_id", sa.ForeignKey("labs_experiments.id"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("vote_count", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_labs_ballot_options_ballot_id", "labs_ballot_options", ["ballot_id"])

    op.create_table(
        "labs_ballot_votes",
        _uuid("ballot_id", sa.ForeignKey("labs_ballots.id"), nullable=False),
        _uuid("voter_id", nullable=False),
        _uuid("option_id", sa.ForeignKey("labs_ballot_options.id"), nullable=False),
        _now("voted_at"),
        sa.PrimaryKeyConstraint("ballot_id", "voter_id"),
    )

    op.create_table(
        "labs_events",
        _uuid("id", nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        _uuid("entity_id", nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True, server_default=sa.text("'{}'::json")),
        _uuid("actor_id", nullable=True),
        _now("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sequence"),
    )
    op.create_index("ix_labs_events_event_type", "labs_events", ["event_type"])
    op.create_index("ix_labs_events_entity_id", "labs_events", ["entity_id"])


def downgrade() -> None:
    op.drop_index("ix_labs_events_entity_id", table_name="labs_events")
    op.drop_index("ix_labs_events_event_type", table_name="labs_events")
    op.drop_table("labs_events")
    op.drop_table("labs_ballot_votes")
    op.drop_index("ix_labs_ballot_options_ballot_id", table_name="labs_ballot_options")
    op.drop_table("labs_ballot_options")
    op.drop_table("labs_ballots")
    op.drop_index("ix_labs_training_records_sop_id", table_name="labs_training_records")
    op.drop_index("ix_labs_training_records_crew_member_id", table_name="labs_training_records")
    op.drop_table("labs_training_records")
    op.drop_index("ix_labs_knowledge_links_experiment_id", table_name="labs_knowledge_links")
    op.drop_index("ix_labs_knowledge_links_observation_id", table_name="labs_knowledge_links")
    op.drop_index("ix_labs_knowledge_links_knowledge_item_id", table_name="labs_knowledge_links")
    op.drop_table("labs_knowledge_links")
    op.drop_table("labs_submissions")
    op.drop_index("ix_labs_experiment_results_experiment_id", table_name="labs_experiment_results")
    op.drop_table("labs_experiment_results")
    op.drop_table("labs_experiments")
    op.drop_index("ix_labs_knowledge_items_category", table_name="labs_knowledge_items")
    op.drop_table("labs_knowledge_items")
    op.drop_index("ix_labs_pending_observations_project_id", table_name="labs_pending_observations")
    op.drop_index("ix_labs_pending_observations_sop_id", table_name="labs_pending_observations")
    op.drop_table("labs_pending_observations")
    op.drop_index("ix_labs_observations_category", table_name="labs_observations")
    op.drop_index("ix_labs_observations_project_id", table_name="labs_observations")
    op.drop_index("ix_labs_observations_crew_member_id", table_name="labs_observations")
    op.drop_index("ix_labs_observations_sop_id", table_name="labs_observations")
    op.drop_table("labs_observations")
    op.drop_index("ix_labs_sop_checklist_items_sop_id", table_name="labs_sop_checklist_items")
    op.drop_table("labs_sop_checklist_items")
    op.drop_index("ix_labs_sops_sop_code", table_name="labs_sops")
    op.drop_table("labs_sops")

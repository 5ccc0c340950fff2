import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .database import Base

# purpose: persisted collections of the labs knowledge pipeline
# status: active


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Sop(Base):
    __tablename__ = "labs_sops"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sop_code = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    trade_family = Column(String)
    category = Column(String, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    default_observation_mode = Column(String, nullable=False, default="standard")
    required_supervised_completions = Column(Integer, nullable=False, default=3)
    review_question_count = Column(Integer, nullable=False, default=5)
    review_pass_threshold = Column(Integer, nullable=False, default=80)
    match_tags = Column(JSON, default=list)
    status = Column(String, nullable=False, default="active")
    created_at = Column(DateTime, default=_utcnow)

    steps = relationship(
        "SopChecklistItem",
        back_populates="sop",
        cascade="all, delete-orphan",
        order_by="SopChecklistItem.step_order",
    )


class SopChecklistItem(Base):
    __tablename__ = "labs_sop_checklist_items"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sop_id = Column(UUID(as_uuid=True), ForeignKey("labs_sops.id"), nullable=False, index=True)
    # active steps form a dense 1..n sequence; soft-invalidated steps keep their last order
    step_order = Column(Integer, nullable=False)
    title = Column(String, nullable=False)
    generates_observation = Column(Boolean, nullable=False, default=False)
    trigger_timing = Column(String, nullable=False, default="on_check")
    script_phase = Column(String)
    knowledge_type = Column(String, nullable=False, default="procedure")
    requires_photo = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=_utcnow)

    sop = relationship("Sop", back_populates="steps")


class Observation(Base):
    __tablename__ = "labs_observations"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sop_id = Column(UUID(as_uuid=True), index=True)
    step_order = Column(Integer)
    checklist_item_id = Column(UUID(as_uuid=True), ForeignKey("labs_sop_checklist_items.id"))
    crew_member_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    project_id = Column(UUID(as_uuid=True), index=True)
    knowledge_type = Column(String, nullable=False, default="procedure")
    category = Column(String, nullable=False, index=True)
    outcome = Column(String, nullable=False)
    note = Column(Text)
    photo_ref = Column(String)
    condition = Column(String)
    deviation_reason = Column(Text)
    source = Column(String, nullable=False, default="checklist")
    supervisor_id = Column(UUID(as_uuid=True))
    submission_id = Column(UUID(as_uuid=True))
    captured_at = Column(DateTime, default=_utcnow, nullable=False)


class PendingObservation(Base):
    __tablename__ = "labs_pending_observations"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sop_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    step_order = Column(Integer, nullable=False)
    crew_member_id = Column(UUID(as_uuid=True), nullable=False)
    project_id = Column(UUID(as_uuid=True), index=True)
    draft = Column(JSON, nullable=False, default=dict)
    status = Column(String, nullable=False, default="pending")
    observation_id = Column(UUID(as_uuid=True), ForeignKey("labs_observations.id"))
    queued_at = Column(DateTime, default=_utcnow)
    processed_at = Column(DateTime)


class Submission(Base):
    __tablename__ = "labs_submissions"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    author_id = Column(UUID(as_uuid=True), nullable=False)
    project_id = Column(UUID(as_uuid=True))
    category = Column(String, nullable=False)
    knowledge_type = Column(String, nullable=False, default="procedure")
    description = Column(Text, nullable=False)
    knowledge_item_id = Column(UUID(as_uuid=True), ForeignKey("labs_knowledge_items.id"))
    status = Column(String, nullable=False, default="submitted")
    decision = Column(String)
    observation_id = Column(UUID(as_uuid=True), ForeignKey("labs_observations.id"))
    experiment_id = Column(UUID(as_uuid=True), ForeignKey("labs_experiments.id"))
    reviewed_by = Column(UUID(as_uuid=True))
    reviewed_at = Column(DateTime)
    created_at = Column(DateTime, default=_utcnow)


class Experiment(Base):
    __tablename__ = "labs_experiments"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    hypothesis = Column(Text)
    category = Column(String, nullable=False)
    experiment_type = Column(String, nullable=False, default="technique")
    knowledge_type = Column(String, nullable=False, default="technique")
    match_criteria = Column(JSON, default=list)
    status = Column(String, nullable=False, default="draft")
    outcome = Column(String)
    activated_via = Column(String)
    knowledge_item_id = Column(UUID(as_uuid=True), ForeignKey("labs_knowledge_items.id"))
    source_submission_id = Column(UUID(as_uuid=True))
    created_by = Column(UUID(as_uuid=True))
    created_at = Column(DateTime, default=_utcnow)
    activated_at = Column(DateTime)
    completed_at = Column(DateTime)

    results = relationship(
        "ExperimentResult",
        back_populates="experiment",
        cascade="all, delete-orphan",
        order_by="ExperimentResult.recorded_at",
    )


class ExperimentResult(Base):
    __tablename__ = "labs_experiment_results"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    experiment_id = Column(UUID(as_uuid=True), ForeignKey("labs_experiments.id"), nullable=False, index=True)
    passed = Column(Boolean, nullable=False)
    observation_count = Column(Integer, nullable=False, default=1)
    note = Column(Text)
    recorded_by = Column(UUID(as_uuid=True))
    recorded_at = Column(DateTime, default=_utcnow)

    experiment = relationship("Experiment", back_populates="results")


class KnowledgeItem(Base):
    __tablename__ = "labs_knowledge_items"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    knowledge_type = Column(String, nullable=False)
    category = Column(String, nullable=False, index=True)
    tags = Column(JSON, default=list)
    summary = Column(Text)
    confidence_score = Column(Integer, nullable=False, default=0)
    observation_count = Column(Integer, nullable=False, default=0)
    confirmed_count = Column(Integer, nullable=False, default=0)
    experiment_count = Column(Integer, nullable=False, default=0)
    experiment_pass_count = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="draft")
    # compare-and-swap guard for recompute writes
    version = Column(Integer, nullable=False, default=1)
    # evidence total at the time a manual review was requested; status stays put until exceeded
    review_hold_evidence = Column(Integer)
    # "<knowledge_type>:<category>" on items created automatically by attribution; cleared on archive
    draft_key = Column(String, unique=True)
    published_at = Column(DateTime)
    archived_at = Column(DateTime)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow)

    links = relationship("KnowledgeLink", back_populates="knowledge_item", cascade="all, delete-orphan")


class KnowledgeLink(Base):
    __tablename__ = "labs_knowledge_links"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    knowledge_item_id = Column(
        UUID(as_uuid=True), ForeignKey("labs_knowledge_items.id"), nullable=False, index=True
    )
    observation_id = Column(UUID(as_uuid=True), ForeignKey("labs_observations.id"), index=True)
    experiment_id = Column(UUID(as_uuid=True), ForeignKey("labs_experiments.id"), index=True)
    link_type = Column(String, nullable=False, default="auto_detected")
    link_confidence = Column(Integer)
    created_at = Column(DateTime, default=_utcnow)

    knowledge_item = relationship("KnowledgeItem", back_populates="links")
    observation = relationship("Observation")
    experiment = relationship("Experiment")

    __table_args__ = (
        sa.UniqueConstraint("knowledge_item_id", "observation_id"),
        sa.UniqueConstraint("knowledge_item_id", "experiment_id"),
    )


class TrainingRecord(Base):
    __tablename__ = "labs_training_records"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    crew_member_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    sop_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    status = Column(String, nullable=False, default="in_progress")
    supervised_completion_count = Column(Integer, nullable=False, default=0)
    supervised_completions = Column(JSON, default=list)
    review_attempts = Column(JSON, default=list)
    best_review_score = Column(Integer)
    certified_at = Column(DateTime)
    revoked_at = Column(DateTime)
    revoked_by = Column(UUID(as_uuid=True))
    revocation_reason = Column(Text)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (sa.UniqueConstraint("crew_member_id", "sop_id"),)


class Ballot(Base):
    __tablename__ = "labs_ballots"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    week_start = Column(DateTime, nullable=False)
    week_end = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default="open")
    total_votes = Column(Integer, nullable=False, default=0)
    winning_experiment_id = Column(UUID(as_uuid=True), ForeignKey("labs_experiments.id"))
    created_by = Column(UUID(as_uuid=True))
    created_at = Column(DateTime, default=_utcnow)
    closed_at = Column(DateTime)

    options = relationship(
        "BallotOption",
        back_populates="ballot",
        cascade="all, delete-orphan",
        order_by="BallotOption.position",
    )


class BallotOption(Base):
    __tablename__ = "labs_ballot_options"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ballot_id = Column(UUID(as_uuid=True), ForeignKey("labs_ballots.id"), nullable=False, index=True)
    experiment_id = Column(UUID(as_uuid=True), ForeignKey("labs_experiments.id"), nullable=False)
    title = Column(String, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    vote_count = Column(Integer, nullable=False, default=0)

    ballot = relationship("Ballot", back_populates="options")


class BallotVote(Base):
    __tablename__ = "labs_ballot_votes"
    ballot_id = Column(UUID(as_uuid=True), ForeignKey("labs_ballots.id"), primary_key=True)
    voter_id = Column(UUID(as_uuid=True), primary_key=True)
    option_id = Column(UUID(as_uuid=True), ForeignKey("labs_ballot_options.id"), nullable=False)
    voted_at = Column(DateTime, default=_utcnow)


class LabsEvent(Base):
    __tablename__ = "labs_events"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sequence = Column(Integer, nullable=False, unique=True)
    event_type = Column(String, nullable=False, index=True)
    entity_type = Column(String, nullable=False)
    entity_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    payload = Column(JSON, default=dict)
    actor_id = Column(UUID(as_uuid=True))
    created_at = Column(DateTime, default=_utcnow)

from datetime import datetime
from typing import Optional, Any, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from uuid import UUID


ObservationMode = Literal["minimal", "standard", "detailed"]
ObservationOutcome = Literal["confirmed", "deviated", "flagged"]
TriggerTiming = Literal["on_check", "batch"]
ScriptPhase = Literal["shield", "clear", "ready", "install", "punch", "turnover"]
KnowledgeType = Literal[
    "product",
    "technique",
    "tool_method",
    "combination",
    "procedure",
    "specification",
    "material",
]
KnowledgeStatus = Literal["draft", "under_review", "published", "challenged", "archived"]
SubmissionDecision = Literal[
    "log_as_observation", "promote_to_experiment", "trigger_review", "archive"
]
ExperimentType = Literal["product", "technique", "tool", "system", "durability"]
TrainingStatus = Literal["in_progress", "review_ready", "certified"]


# --- SOP configuration ---------------------------------------------------


class ChecklistStepCreate(BaseModel):
    title: str
    generates_observation: bool = False
    trigger_timing: TriggerTiming = "on_check"
    script_phase: Optional[ScriptPhase] = None
    knowledge_type: KnowledgeType = "procedure"
    requires_photo: bool = False


class ChecklistStepInsert(ChecklistStepCreate):
    after_step: int = Field(ge=0)


class ChecklistStepOut(BaseModel):
    id: UUID
    sop_id: UUID
    step_order: int
    title: str
    generates_observation: bool
    trigger_timing: str
    script_phase: Optional[str] = None
    knowledge_type: str
    requires_photo: bool
    is_active: bool
    model_config = ConfigDict(from_attributes=True)


class StepRemovalOut(BaseModel):
    action: Literal["deleted", "invalidated"]
    sop_id: UUID
    step_order: int
    checklist_item_id: UUID


class SopCreate(BaseModel):
    sop_code: str
    title: str
    category: str
    trade_family: Optional[str] = None
    default_observation_mode: ObservationMode = "standard"
    required_supervised_completions: int = Field(default=3, ge=0)
    review_question_count: int = Field(default=5, ge=0)
    review_pass_threshold: int = Field(default=80, ge=0, le=100)
    match_tags: list[str] = []
    steps: list[ChecklistStepCreate] = []


class SopOut(BaseModel):
    id: UUID
    sop_code: str
    title: str
    category: str
    trade_family: Optional[str] = None
    version: int
    default_observation_mode: str
    required_supervised_completions: int
    review_question_count: int
    review_pass_threshold: int
    match_tags: list[str] = []
    status: str
    created_at: datetime
    steps: list[ChecklistStepOut] = []
    model_config = ConfigDict(from_attributes=True)


# --- trigger evaluation and observations --------------------------------


class CheckEvent(BaseModel):
    sop_id: UUID
    step_order: int = Field(ge=1)
    project_id: Optional[UUID] = None
    timestamp: Optional[datetime] = None


class ObservationDraft(BaseModel):
    sop_id: UUID
    step_order: int
    checklist_item_id: Optional[UUID] = None
    crew_member_id: UUID
    project_id: Optional[UUID] = None
    knowledge_type: KnowledgeType = "procedure"
    category: str
    tags: list[str] = []
    mode: ObservationMode = "standard"
    script_phase: Optional[str] = None
    prefilled_outcome: Optional[ObservationOutcome] = None
    requires_note: bool = False
    requires_photo: bool = False
    requires_condition: bool = False
    requires_supervisor_cosign: bool = True


class TriggerDecisionOut(BaseModel):
    action: Literal["no_action", "immediate_confirm", "deferred_submission"]
    reason: Optional[str] = None
    draft: Optional[ObservationDraft] = None
    pending_id: Optional[UUID] = None


class ObservationConfirm(BaseModel):
    draft: ObservationDraft
    outcome: ObservationOutcome = "confirmed"
    note: Optional[str] = None
    photo_ref: Optional[str] = None
    condition: Optional[str] = None
    deviation_reason: Optional[str] = None
    supervisor_id: Optional[UUID] = None


class ObservationOut(BaseModel):
    id: UUID
    sop_id: Optional[UUID] = None
    step_order: Optional[int] = None
    checklist_item_id: Optional[UUID] = None
    crew_member_id: UUID
    project_id: Optional[UUID] = None
    knowledge_type: str
    category: str
    outcome: str
    note: Optional[str] = None
    photo_ref: Optional[str] = None
    condition: Optional[str] = None
    deviation_reason: Optional[str] = None
    source: str
    supervisor_id: Optional[UUID] = None
    submission_id: Optional[UUID] = None
    captured_at: datetime
    model_config = ConfigDict(from_attributes=True)


class PendingObservationOut(BaseModel):
    id: UUID
    sop_id: UUID
    step_order: int
    crew_member_id: UUID
    project_id: Optional[UUID] = None
    draft: dict[str, Any]
    status: str
    observation_id: Optional[UUID] = None
    queued_at: datetime
    processed_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class PendingConfirm(BaseModel):
    outcome: ObservationOutcome = "confirmed"
    note: Optional[str] = None
    photo_ref: Optional[str] = None
    condition: Optional[str] = None
    deviation_reason: Optional[str] = None
    supervisor_id: Optional[UUID] = None


class PendingBatchConfirm(BaseModel):
    crew_member_id: Optional[UUID] = None
    project_id: Optional[UUID] = None
    supervisor_id: Optional[UUID] = None


class BatchResultOut(BaseModel):
    total_items: int
    confirmed: int
    skipped: int
    observations_created: list[UUID] = []


# --- submissions ---------------------------------------------------------


class SubmissionCreate(BaseModel):
    project_id: Optional[UUID] = None
    category: str
    knowledge_type: KnowledgeType = "procedure"
    description: str = Field(min_length=1)
    knowledge_item_id: Optional[UUID] = None

    @field_validator("category", "description")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class SubmissionReview(BaseModel):
    decision: SubmissionDecision
    experiment_title: Optional[str] = None
    experiment_type: ExperimentType = "technique"
    hypothesis: Optional[str] = None
    match_criteria: list[str] = []


class SubmissionOut(BaseModel):
    id: UUID
    author_id: UUID
    project_id: Optional[UUID] = None
    category: str
    knowledge_type: str
    description: str
    knowledge_item_id: Optional[UUID] = None
    status: str
    decision: Optional[str] = None
    observation_id: Optional[UUID] = None
    experiment_id: Optional[UUID] = None
    reviewed_by: Optional[UUID] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# --- experiments and ballots ---------------------------------------------


class ExperimentCreate(BaseModel):
    title: str
    hypothesis: Optional[str] = None
    category: str
    experiment_type: ExperimentType = "technique"
    knowledge_type: KnowledgeType = "technique"
    match_criteria: list[str] = []


class ExperimentTerminate(BaseModel):
    reason: Optional[str] = None


class ExperimentResultCreate(BaseModel):
    passed: bool
    observation_count: int = Field(default=1, ge=1)
    note: Optional[str] = None


class ExperimentResultOut(BaseModel):
    id: UUID
    experiment_id: UUID
    passed: bool
    observation_count: int
    note: Optional[str] = None
    recorded_by: Optional[UUID] = None
    recorded_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ExperimentOut(BaseModel):
    id: UUID
    title: str
    hypothesis: Optional[str] = None
    category: str
    experiment_type: str
    knowledge_type: str
    match_criteria: list[str] = []
    status: str
    outcome: Optional[str] = None
    activated_via: Optional[str] = None
    knowledge_item_id: Optional[UUID] = None
    source_submission_id: Optional[UUID] = None
    created_at: datetime
    activated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    results: list[ExperimentResultOut] = []
    model_config = ConfigDict(from_attributes=True)


class BallotCreate(BaseModel):
    week_start: datetime
    week_end: datetime
    experiment_ids: list[UUID] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_window(self):
        if self.week_end <= self.week_start:
            raise ValueError("week_end must be after week_start")
        return self


class BallotOptionOut(BaseModel):
    id: UUID
    experiment_id: UUID
    title: str
    position: int
    vote_count: int
    model_config = ConfigDict(from_attributes=True)


class BallotOut(BaseModel):
    id: UUID
    week_start: datetime
    week_end: datetime
    status: str
    total_votes: int
    winning_experiment_id: Optional[UUID] = None
    created_at: datetime
    closed_at: Optional[datetime] = None
    options: list[BallotOptionOut] = []
    model_config = ConfigDict(from_attributes=True)


class VoteCreate(BaseModel):
    experiment_id: UUID


class BallotVoteOut(BaseModel):
    ballot_id: UUID
    voter_id: UUID
    option_id: UUID
    voted_at: datetime
    model_config = ConfigDict(from_attributes=True)


# --- knowledge -----------------------------------------------------------


class KnowledgeItemCreate(BaseModel):
    title: str
    knowledge_type: KnowledgeType
    category: str
    tags: list[str] = []
    summary: Optional[str] = None


class KnowledgeItemUpdate(BaseModel):
    title: Optional[str] = None
    tags: Optional[list[str]] = None
    summary: Optional[str] = None


class KnowledgeItemOut(BaseModel):
    id: UUID
    title: str
    knowledge_type: str
    category: str
    tags: list[str] = []
    summary: Optional[str] = None
    confidence_score: int
    observation_count: int
    confirmed_count: int
    experiment_count: int
    experiment_pass_count: int
    status: str
    version: int
    published_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class KnowledgeLinkOut(BaseModel):
    id: UUID
    knowledge_item_id: UUID
    observation_id: Optional[UUID] = None
    experiment_id: Optional[UUID] = None
    link_type: str
    link_confidence: Optional[int] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class KnowledgeLinkCreate(BaseModel):
    observation_id: UUID


class RecomputeSweepOut(BaseModel):
    queued: bool
    recomputed: Optional[int] = None


class EvidenceBadge(BaseModel):
    knowledge_item_id: UUID
    title: str
    confidence_score: int
    status: str


class StepEvidence(BaseModel):
    step_order: int
    checklist_item_id: Optional[UUID] = None
    title: str
    script_phase: Optional[str] = None
    badges: list[EvidenceBadge] = []


# --- training ------------------------------------------------------------


class SupervisedCompletionCreate(BaseModel):
    crew_member_id: UUID
    sop_id: UUID
    project_id: Optional[UUID] = None


class ReviewScoreCreate(BaseModel):
    crew_member_id: UUID
    sop_id: UUID
    score: int = Field(ge=0, le=100)


class TrainingRevoke(BaseModel):
    crew_member_id: UUID
    sop_id: UUID
    reason: Optional[str] = None


class TrainingRecordOut(BaseModel):
    id: UUID
    crew_member_id: UUID
    sop_id: UUID
    status: str
    supervised_completion_count: int
    supervised_completions: list[dict[str, Any]] = []
    review_attempts: list[dict[str, Any]] = []
    best_review_score: Optional[int] = None
    certified_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class CrewGateOut(BaseModel):
    crew_member_id: UUID
    sop_id: UUID
    status: TrainingStatus
    requires_supervisor_cosign: bool


class CrewTrainingSummary(BaseModel):
    crew_member_id: UUID
    total: int
    in_progress: int
    review_ready: int
    certified: int
    records: list[TrainingRecordOut] = []


# --- offline event log ---------------------------------------------------


class LabsEventOut(BaseModel):
    id: UUID
    sequence: int
    event_type: str
    entity_type: str
    entity_id: UUID
    payload: dict[str, Any] = {}
    actor_id: Optional[UUID] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class LabsEventReplay(BaseModel):
    event_type: str
    entity_type: str
    entity_id: UUID
    payload: dict[str, Any] = {}
    actor_id: Optional[UUID] = None
    sequence: Optional[int] = None


class ReplayedObservation(BaseModel):
    """Payload of an ``observation_created`` event."""

    sop_id: UUID
    step_order: int = Field(ge=1)
    checklist_item_id: Optional[UUID] = None
    crew_member_id: UUID
    project_id: Optional[UUID] = None
    knowledge_type: KnowledgeType = "procedure"
    category: str = Field(min_length=1)
    outcome: ObservationOutcome = "confirmed"
    note: Optional[str] = None
    photo_ref: Optional[str] = None
    condition: Optional[str] = None
    deviation_reason: Optional[str] = None
    source: str = "checklist"
    supervisor_id: Optional[UUID] = None
    captured_at: Optional[datetime] = None


class ReplayBatch(BaseModel):
    events: list[LabsEventReplay]


class ReplayReport(BaseModel):
    applied: int
    skipped: int
    conflicts: list[str] = []
    recomputed_knowledge_items: list[UUID] = []

import uuid

from app import schemas, tasks
from app.services import observations

from .conftest import DRYWALL_SOP_ID


def test_recompute_job_runs_eagerly_against_committed_state(db):
    result = observations.confirm_observation(
        db,
        schemas.ObservationDraft(
            sop_id=DRYWALL_SOP_ID,
            step_order=3,
            crew_member_id=uuid.uuid4(),
            category="drywall",
            knowledge_type="technique",
        ),
        supervisor_id=uuid.uuid4(),
    )
    db.commit()
    item_id = result.knowledge_items[0].id

    assert tasks.celery_app.conf.task_always_eager
    summary = tasks.enqueue_recompute_knowledge_item(item_id)
    assert summary == {"id": str(item_id), "status": "draft", "confidence_score": 20}

    assert tasks.enqueue_recompute_sweep() == 1


def test_recompute_job_tolerates_missing_item():
    assert tasks.enqueue_recompute_knowledge_item(uuid.uuid4()) is None


def test_sweep_is_scheduled():
    entry = tasks.celery_app.conf.beat_schedule["labs-knowledge-sweep"]
    assert entry["task"] == "app.tasks.recompute_knowledge_sweep"
    assert entry["schedule"] == tasks.SWEEP_MINUTES * 60.0

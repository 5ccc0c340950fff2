import os
from uuid import UUID

from celery import Celery
from celery.utils.log import get_task_logger

from .database import session_scope
from .services import confidence
from .services.labs_errors import ConcurrencyConflict, EntityNotFound

# purpose: background confidence recompute and periodic sweep of knowledge aggregates
# inputs: knowledge item ids, LABS_RECOMPUTE_SWEEP_MINUTES
# status: active

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "memory://")
celery_app = Celery("tasks", broker=CELERY_BROKER_URL)
celery_app.conf.task_always_eager = (
    CELERY_BROKER_URL == "memory://" or os.getenv("TESTING") == "1"
)

SWEEP_MINUTES = int(os.getenv("LABS_RECOMPUTE_SWEEP_MINUTES", "30"))
RETRY_SECONDS = int(os.getenv("LABS_RECOMPUTE_RETRY_SECONDS", "5"))

_logger = get_task_logger(__name__)

celery_app.conf.beat_schedule = {
    "labs-knowledge-sweep": {
        "task": "app.tasks.recompute_knowledge_sweep",
        "schedule": SWEEP_MINUTES * 60.0,
    },
}


@celery_app.task(bind=True, max_retries=3)
def recompute_knowledge_item_job(self, knowledge_item_id: str):
    try:
        with session_scope() as db:
            item = confidence.recompute(db, UUID(knowledge_item_id))
            return {"id": str(item.id), "status": item.status, "confidence_score": item.confidence_score}
    except EntityNotFound:
        _logger.warning("knowledge item %s vanished before recompute", knowledge_item_id)
        return None
    except ConcurrencyConflict as exc:
        _logger.warning("knowledge item %s still contended; retrying", knowledge_item_id)
        raise self.retry(exc=exc, countdown=RETRY_SECONDS)


def enqueue_recompute_knowledge_item(knowledge_item_id: UUID | str):
    identifier = str(knowledge_item_id)
    if celery_app.conf.task_always_eager:
        return recompute_knowledge_item_job(identifier)
    return recompute_knowledge_item_job.delay(identifier)


@celery_app.task
def recompute_knowledge_sweep() -> int:
    """Rebuild every active knowledge item from authoritative evidence counts."""

    with session_scope() as db:
        items = confidence.recompute_all(db)
    _logger.info("labs sweep recomputed %d knowledge item(s)", len(items))
    return len(items)


def enqueue_recompute_sweep():
    if celery_app.conf.task_always_eager:
        return recompute_knowledge_sweep()
    return recompute_knowledge_sweep.delay()

import uuid

import pytest

from app import models, schemas
from app.services import confidence, knowledge, observations
from app.services.confidence import EvidenceTally, confidence_score, next_status

from .conftest import DRYWALL_SOP_ID, admin_headers


def tally(observed, confirmed, experiments=0, passed=0):
    return EvidenceTally(
        observation_count=observed,
        confirmed_count=confirmed,
        experiment_count=experiments,
        experiment_pass_count=passed,
    )


@pytest.mark.parametrize(
    "evidence, expected",
    [
        (tally(0, 0), 0),
        (tally(1, 1), 20),
        (tally(1, 0), 0),
        (tally(5, 5), 56),
        (tally(9, 9), 70),
        (tally(10, 9), 59),
        (tally(0, 0, experiments=1, passed=1), 43),
    ],
)
def test_score_values(evidence, expected):
    assert confidence_score(evidence) == expected


def test_score_rewards_sample_size():
    assert confidence_score(tally(10, 9)) > confidence_score(tally(1, 1))
    assert confidence_score(tally(20, 20)) > confidence_score(tally(10, 10))


def test_score_is_monotonic_in_new_evidence():
    for observed in range(0, 16):
        for confirmed in range(0, observed + 1):
            base = confidence_score(tally(observed, confirmed))
            assert confidence_score(tally(observed + 1, confirmed + 1)) >= base
            assert confidence_score(tally(observed + 1, confirmed)) <= base
            assert confidence_score(tally(observed, confirmed, experiments=1, passed=1)) >= base
            assert confidence_score(tally(observed, confirmed, experiments=1, passed=0)) <= base


def test_draft_waits_for_minimum_evidence():
    assert next_status("draft", tally(2, 2), confidence_score(tally(2, 2))) == "draft"
    assert next_status("draft", tally(3, 3), confidence_score(tally(3, 3))) == "under_review"


def test_publication_needs_threshold_and_sample():
    strong = tally(9, 9)
    assert next_status("draft", strong, confidence_score(strong)) == "published"
    # experiments can push the score up but never replace field observations
    thin = tally(4, 4, experiments=3, passed=3)
    assert confidence_score(thin) >= confidence.PUBLICATION_THRESHOLD
    assert next_status("under_review", thin, confidence_score(thin)) == "under_review"


def test_published_item_uses_hysteresis_before_challenge():
    assert next_status("published", tally(10, 7), 60) == "published"
    assert next_status("published", tally(10, 5), confidence.CHALLENGE_THRESHOLD - 1) == "challenged"
    assert next_status("challenged", tally(10, 8), 65) == "challenged"
    assert next_status("challenged", tally(10, 10), 72) == "published"


def test_archived_and_held_items_do_not_move():
    assert next_status("archived", tally(20, 20), 85) == "archived"
    assert next_status("under_review", tally(9, 9), 70, review_hold=9) == "under_review"
    assert next_status("under_review", tally(10, 10), 72, review_hold=9) == "published"


def _confirm(db, count=1, outcome="confirmed"):
    for _ in range(count):
        draft = schemas.ObservationDraft(
            sop_id=DRYWALL_SOP_ID,
            step_order=2,
            crew_member_id=uuid.uuid4(),
            category="drywall",
            knowledge_type="technique",
        )
        observations.confirm_observation(
            db,
            draft,
            outcome,
            deviation_reason="gap" if outcome == "deviated" else None,
            supervisor_id=uuid.uuid4(),
        )
    return db.query(models.KnowledgeItem).one()


def test_recompute_without_new_evidence_writes_nothing(db):
    item = _confirm(db, 3)
    first = confidence.recompute(db, item.id)
    version = first.version
    snapshot = (first.confidence_score, first.status, first.observation_count)

    second = confidence.recompute(db, item.id)
    assert second.version == version
    assert (second.confidence_score, second.status, second.observation_count) == snapshot


def test_item_is_published_then_challenged_by_evidence(db):
    item = _confirm(db, 9)
    assert item.status == "published"
    assert item.confidence_score == 70
    assert item.published_at is not None

    item = _confirm(db, 4, outcome="deviated")
    assert item.observation_count == 13
    assert item.confidence_score < confidence.CHALLENGE_THRESHOLD
    assert item.status == "challenged"


def test_recompute_all_skips_archived(db):
    item = _confirm(db, 1)
    archived = knowledge.create_item(
        db,
        schemas.KnowledgeItemCreate(title="Old trick", knowledge_type="product", category="paint"),
    )
    knowledge.archive_item(db, archived.id)

    recomputed = confidence.recompute_all(db)
    assert [entry.id for entry in recomputed] == [item.id]


def test_recompute_all_endpoint_runs_eagerly(client):
    resp = client.post("/api/labs/knowledge/recompute-all", headers=admin_headers())
    assert resp.status_code == 200
    assert resp.json() == {"queued": False, "recomputed": 0}

import uuid

from app.database import Base, engine

from .conftest import DRYWALL_SOP_ID, admin_headers, crew_headers


def observation_event(crew, supervisor, sequence, **payload_overrides):
    payload = {
        "sop_id": str(DRYWALL_SOP_ID),
        "step_order": 2,
        "crew_member_id": str(crew),
        "knowledge_type": "technique",
        "category": "drywall",
        "outcome": "confirmed",
        "source": "checklist",
        "supervisor_id": str(supervisor),
        "tags": ["drywall", "fastening"],
        "credit_training": True,
        "captured_at": "2026-10-18T14:00:00+00:00",
        "confidence_score": 99,
    }
    payload.update(payload_overrides)
    return {
        "event_type": "labs.observation_confirmed",
        "entity_type": "observation",
        "entity_id": str(uuid.uuid4()),
        "actor_id": str(crew),
        "sequence": sequence,
        "payload": payload,
    }


def replay(client, events, headers=None):
    resp = client.post("/api/labs/sync/events", json={"events": events}, headers=headers or crew_headers())
    assert resp.status_code == 200
    return resp.json()


def test_export_is_ordered_and_resumable(client):
    crew = uuid.uuid4()
    headers = crew_headers(crew)
    supervisor = uuid.uuid4()
    decision = client.post(
        "/api/labs/checklist-events",
        json={"sop_id": str(DRYWALL_SOP_ID), "step_order": 2},
        headers=headers,
    ).json()
    client.post(
        "/api/labs/observations",
        json={"draft": decision["draft"], "supervisor_id": str(supervisor)},
        headers=crew_headers(supervisor, role="supervisor"),
    )

    events = client.get("/api/labs/sync/events", headers=headers).json()
    sequences = [event["sequence"] for event in events]
    assert sequences == sorted(sequences)
    assert len(set(sequences)) == len(sequences)
    assert "labs.observation_confirmed" in [event["event_type"] for event in events]

    assert client.get("/api/labs/sync/events", params={"after": sequences[-1]}, headers=headers).json() == []
    tail = client.get("/api/labs/sync/events", params={"after": sequences[0]}, headers=headers).json()
    assert len(tail) == len(events) - 1


def test_replayed_observation_ignores_cached_score(client):
    crew = uuid.uuid4()
    supervisor = uuid.uuid4()
    supervisor_headers = crew_headers(supervisor, role="supervisor")
    event = observation_event(crew, supervisor, sequence=1)
    report = replay(client, [event], supervisor_headers)
    assert report["applied"] == 1
    assert report["skipped"] == 0
    assert report["conflicts"] == []
    assert len(report["recomputed_knowledge_items"]) == 1

    item = client.get(f"/api/labs/knowledge/{report['recomputed_knowledge_items'][0]}", headers=admin_headers()).json()
    assert item["confidence_score"] == 20
    assert item["observation_count"] == 1

    observation = client.get(f"/api/labs/observations/{event['entity_id']}", headers=admin_headers()).json()
    assert observation["captured_at"].startswith("2026-10-18T14:00:00")

    summary = client.get(f"/api/labs/training/crew/{crew}", headers=crew_headers(crew)).json()
    assert summary["records"][0]["supervised_completion_count"] == 1

    again = replay(client, [event], supervisor_headers)
    assert again["applied"] == 0
    assert again["skipped"] == 1
    item = client.get(f"/api/labs/knowledge/{item['id']}", headers=admin_headers()).json()
    assert item["observation_count"] == 1


def test_exported_log_rebuilds_an_empty_store(client):
    crew = uuid.uuid4()
    headers = crew_headers(crew)
    supervisor = uuid.uuid4()
    for step in (2, 3):
        decision = client.post(
            "/api/labs/checklist-events",
            json={"sop_id": str(DRYWALL_SOP_ID), "step_order": step},
            headers=headers,
        ).json()
        client.post(
            "/api/labs/observations",
            json={"draft": decision["draft"], "supervisor_id": str(supervisor)},
            headers=crew_headers(supervisor, role="supervisor"),
        )
    before = client.get("/api/labs/knowledge", headers=headers).json()
    exported = client.get("/api/labs/sync/events", headers=headers).json()

    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())

    report = replay(client, exported, admin_headers())
    assert report["applied"] == 2
    assert report["skipped"] == len(exported) - 2
    assert report["conflicts"] == []

    after = client.get("/api/labs/knowledge", headers=headers).json()
    assert [(entry["observation_count"], entry["confidence_score"]) for entry in after] == [
        (entry["observation_count"], entry["confidence_score"]) for entry in before
    ]
    summary = client.get(f"/api/labs/training/crew/{crew}", headers=headers).json()
    assert summary["records"][0]["supervised_completion_count"] == 2


def test_submission_events_replay_in_sequence_order(client):
    submission_id = str(uuid.uuid4())
    author = str(uuid.uuid4())
    reviewer = str(uuid.uuid4())
    created = {
        "event_type": "labs.submission_created",
        "entity_type": "submission",
        "entity_id": submission_id,
        "actor_id": author,
        "sequence": 10,
        "payload": {"category": "drywall", "knowledge_type": "technique", "description": "Popped screws on ceiling"},
    }
    reviewed = {
        "event_type": "labs.submission_reviewed",
        "entity_type": "submission",
        "entity_id": submission_id,
        "actor_id": reviewer,
        "sequence": 11,
        "payload": {"decision": "log_as_observation"},
    }

    report = replay(client, [reviewed, created], admin_headers())
    assert report["applied"] == 2
    assert report["conflicts"] == []

    submission = client.get(f"/api/labs/submissions/{submission_id}", headers=admin_headers()).json()
    assert submission["status"] == "logged_as_observation"
    assert submission["author_id"] == author
    assert submission["reviewed_by"] == reviewer
    assert len(report["recomputed_knowledge_items"]) == 1

    again = replay(client, [created, reviewed], admin_headers())
    assert again["applied"] == 0
    assert again["skipped"] == 2

    conflicting = dict(reviewed, sequence=12, payload={"decision": "archive"})
    report = replay(client, [conflicting], admin_headers())
    assert report["applied"] == 0
    assert len(report["conflicts"]) == 1
    assert "logged_as_observation" in report["conflicts"][0]


def test_unresolvable_events_are_reported_as_conflicts(client):
    orphan_review = {
        "event_type": "labs.submission_reviewed",
        "entity_type": "submission",
        "entity_id": str(uuid.uuid4()),
        "actor_id": str(uuid.uuid4()),
        "payload": {"decision": "archive"},
    }
    unknown_step = observation_event(uuid.uuid4(), uuid.uuid4(), sequence=3, checklist_item_id=str(uuid.uuid4()))
    triage_copy = observation_event(uuid.uuid4(), uuid.uuid4(), sequence=4, source="submission")
    unrelated = {
        "event_type": "labs.ballot_closed",
        "entity_type": "ballot",
        "entity_id": str(uuid.uuid4()),
        "payload": {},
    }

    report = replay(client, [orphan_review, unknown_step, triage_copy, unrelated], admin_headers())
    assert report["applied"] == 0
    assert report["skipped"] == 2
    assert len(report["conflicts"]) == 2
    assert client.get("/api/labs/observations", headers=admin_headers()).json() == []


def submission_created_event(submission_id, author, sequence=1, **payload):
    return {
        "event_type": "labs.submission_created",
        "entity_type": "submission",
        "entity_id": submission_id,
        "actor_id": author,
        "sequence": sequence,
        "payload": {"category": "drywall", "knowledge_type": "technique", "description": "Tape cracking at seams", **payload},
    }


def test_crew_replay_cannot_review_or_borrow_an_author(client):
    crew = uuid.uuid4()
    someone_else = str(uuid.uuid4())
    submission_id = str(uuid.uuid4())
    created = submission_created_event(submission_id, someone_else)
    reviewed = {
        "event_type": "labs.submission_reviewed",
        "entity_type": "submission",
        "entity_id": submission_id,
        "actor_id": str(uuid.uuid4()),
        "sequence": 2,
        "payload": {"decision": "archive"},
    }

    report = replay(client, [created, reviewed], crew_headers(crew))
    assert report["applied"] == 1
    assert len(report["conflicts"]) == 1
    assert "only labs reviewers" in report["conflicts"][0]

    submission = client.get(f"/api/labs/submissions/{submission_id}", headers=admin_headers()).json()
    assert submission["status"] == "submitted"
    assert submission["author_id"] == str(crew)
    assert submission["reviewed_by"] is None


def test_replayed_observation_needs_a_verified_cosign(client):
    crew = uuid.uuid4()
    supervisor = uuid.uuid4()
    forged = observation_event(crew, supervisor, sequence=1)
    report = replay(client, [forged], crew_headers(crew))
    assert report["applied"] == 0
    assert report["conflicts"] == [f"observation {forged['entity_id']}: co-sign could not be verified"]

    # another supervisor cannot vouch for a co-sign they did not give
    report = replay(client, [forged], crew_headers(role="supervisor"))
    assert len(report["conflicts"]) == 1

    # a crew member's own device cannot replay an unsigned observation while they are in training
    unsigned = observation_event(crew, supervisor, sequence=2, supervisor_id=None)
    report = replay(client, [unsigned], crew_headers(crew))
    assert report["applied"] == 0
    assert "co-sign is required" in report["conflicts"][0]

    assert client.get("/api/labs/observations", headers=admin_headers()).json() == []
    summary = client.get(f"/api/labs/training/crew/{crew}", headers=crew_headers(crew)).json()
    assert summary["records"] == []


def test_replayed_observation_is_validated_like_a_live_confirmation(client):
    supervisor = uuid.uuid4()
    supervisor_headers = crew_headers(supervisor, role="supervisor")
    deviated = observation_event(uuid.uuid4(), supervisor, sequence=1, outcome="deviated")
    report = replay(client, [deviated], supervisor_headers)
    assert report["applied"] == 0
    assert "deviation reason" in report["conflicts"][0]
    assert client.get("/api/labs/observations", headers=admin_headers()).json() == []


def test_malformed_payloads_become_conflicts(client):
    supervisor = uuid.uuid4()
    bad_time = observation_event(uuid.uuid4(), supervisor, sequence=1, captured_at="yesterday")
    no_sop = observation_event(uuid.uuid4(), supervisor, sequence=2)
    del no_sop["payload"]["sop_id"]
    bare = {
        "event_type": "labs.observation_confirmed",
        "entity_type": "observation",
        "entity_id": str(uuid.uuid4()),
        "sequence": 3,
        "payload": {"source": "checklist", "captured_at": "yesterday"},
    }
    blank_submission = submission_created_event(str(uuid.uuid4()), None, sequence=4, description="   ")
    bad_decision = {
        "event_type": "labs.submission_reviewed",
        "entity_type": "submission",
        "entity_id": str(uuid.uuid4()),
        "sequence": 5,
        "payload": {"decision": "shred"},
    }

    report = replay(client, [bad_time, no_sop, bare, blank_submission, bad_decision], admin_headers())
    assert report["applied"] == 0
    assert len(report["conflicts"]) == 5
    assert "captured_at" in report["conflicts"][0]
    assert "sop_id" in report["conflicts"][1]
    assert all("invalid payload" in conflict for conflict in report["conflicts"])
    assert client.get("/api/labs/observations", headers=admin_headers()).json() == []
    assert client.get("/api/labs/submissions", headers=admin_headers()).json() == []

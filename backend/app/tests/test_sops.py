import uuid

from .conftest import DRYWALL_SOP_ID, admin_headers, crew_headers


def create_sop(client, admin, **overrides):
    body = {
        "sop_code": "HI-SOP-TR-001",
        "title": "Baseboard Trim",
        "category": "trim",
        "default_observation_mode": "minimal",
        "match_tags": ["trim"],
        "steps": [
            {"title": "Cope inside corners", "generates_observation": True, "knowledge_type": "technique"},
            {"title": "Nail into studs", "generates_observation": True, "knowledge_type": "technique"},
            {"title": "Caulk top edge", "generates_observation": False},
        ],
    }
    body.update(overrides)
    resp = client.post("/api/labs/sops", json=body, headers=admin)
    assert resp.status_code == 201
    return resp.json()


def step_titles(client, sop_id, headers, include_inactive=False):
    steps = client.get(
        f"/api/labs/sops/{sop_id}/steps",
        params={"include_inactive": include_inactive},
        headers=headers,
    ).json()
    return [(step["step_order"], step["title"], step["is_active"]) for step in steps]


def test_create_and_edit_steps_keep_dense_order(client):
    admin = admin_headers()
    sop = create_sop(client, admin)
    assert sop["version"] == 1
    assert [step["step_order"] for step in sop["steps"]] == [1, 2, 3]

    added = client.post(
        f"/api/labs/sops/{sop['id']}/steps", json={"title": "Touch up paint"}, headers=admin
    )
    assert added.status_code == 201
    assert added.json()["step_order"] == 4

    inserted = client.post(
        f"/api/labs/sops/{sop['id']}/steps/insert",
        json={"title": "Dry fit each piece", "after_step": 1},
        headers=admin,
    )
    assert inserted.json()["step_order"] == 2
    assert [order for order, _, _ in step_titles(client, sop["id"], admin)] == [1, 2, 3, 4, 5]

    removed = client.delete(f"/api/labs/sops/{sop['id']}/steps/2", headers=admin)
    assert removed.status_code == 200
    assert removed.json()["action"] == "deleted"
    assert step_titles(client, sop["id"], admin) == [
        (1, "Cope inside corners", True),
        (2, "Nail into studs", True),
        (3, "Caulk top edge", True),
        (4, "Touch up paint", True),
    ]


def test_referenced_step_is_invalidated_not_deleted(client):
    admin = admin_headers()
    sop = create_sop(client, admin)
    crew = uuid.uuid4()
    headers = crew_headers(crew)
    supervisor = uuid.uuid4()
    cosign = crew_headers(supervisor, role="supervisor")

    decision = client.post(
        "/api/labs/checklist-events", json={"sop_id": sop["id"], "step_order": 1}, headers=headers
    ).json()
    assert decision["draft"]["checklist_item_id"] == sop["steps"][0]["id"]
    confirmed = client.post(
        "/api/labs/observations",
        json={"draft": decision["draft"], "supervisor_id": str(supervisor)},
        headers=cosign,
    )
    assert confirmed.status_code == 201

    # a draft for step 2 taken before the removal must follow the renumbering
    pending_draft = client.post(
        "/api/labs/checklist-events", json={"sop_id": sop["id"], "step_order": 2}, headers=headers
    ).json()["draft"]

    removed = client.delete(f"/api/labs/sops/{sop['id']}/steps/1", headers=admin).json()
    assert removed["action"] == "invalidated"
    assert removed["checklist_item_id"] == sop["steps"][0]["id"]

    assert step_titles(client, sop["id"], admin) == [
        (1, "Nail into studs", True),
        (2, "Caulk top edge", True),
    ]
    assert (1, "Cope inside corners", False) in step_titles(client, sop["id"], admin, include_inactive=True)

    observation = client.get(f"/api/labs/observations/{confirmed.json()['id']}", headers=admin).json()
    assert observation["checklist_item_id"] == sop["steps"][0]["id"]

    late = client.post(
        "/api/labs/observations",
        json={"draft": pending_draft, "supervisor_id": str(supervisor)},
        headers=cosign,
    )
    assert late.status_code == 201
    assert late.json()["step_order"] == 1
    assert late.json()["checklist_item_id"] == sop["steps"][1]["id"]

    stale = client.post(
        "/api/labs/observations",
        json={"draft": decision["draft"], "supervisor_id": str(supervisor)},
        headers=cosign,
    )
    assert stale.status_code == 404
    assert "step was removed" in stale.json()["detail"]


def test_archived_sop_stops_triggering(client):
    admin = admin_headers()
    sop = create_sop(client, admin)
    archived = client.post(f"/api/labs/sops/{sop['id']}/archive", headers=admin).json()
    assert archived["status"] == "archived"

    decision = client.post(
        "/api/labs/checklist-events", json={"sop_id": sop["id"], "step_order": 1}, headers=crew_headers()
    ).json()
    assert decision["action"] == "no_action"
    assert "archived" in decision["reason"]

    edit = client.post(f"/api/labs/sops/{sop['id']}/steps", json={"title": "Late"}, headers=admin)
    assert edit.status_code == 409
    assert client.get("/api/labs/sops", headers=admin).json() == []
    assert len(client.get("/api/labs/sops", params={"include_archived": True}, headers=admin).json()) == 1


def test_sop_management_requires_admin(client):
    resp = client.post(
        "/api/labs/sops",
        json={"sop_code": "X", "title": "X", "category": "x"},
        headers=crew_headers(role="supervisor"),
    )
    assert resp.status_code == 403
    assert client.get(f"/api/labs/sops/{uuid.uuid4()}", headers=crew_headers()).status_code == 404


def test_step_evidence_for_catalog_and_stored_sops(client):
    admin = admin_headers()
    crew = uuid.uuid4()
    headers = crew_headers(crew)
    supervisor = uuid.uuid4()
    cosign = crew_headers(supervisor, role="supervisor")
    decision = client.post(
        "/api/labs/checklist-events", json={"sop_id": str(DRYWALL_SOP_ID), "step_order": 2}, headers=headers
    ).json()
    client.post(
        "/api/labs/observations",
        json={"draft": decision["draft"], "supervisor_id": str(supervisor)},
        headers=cosign,
    )

    evidence = client.get(f"/api/labs/sops/{DRYWALL_SOP_ID}/evidence", headers=headers).json()
    assert [step["step_order"] for step in evidence] == [1, 2, 3, 4]
    badges = {step["step_order"]: step["badges"] for step in evidence}
    assert badges[1] == []
    assert [badge["title"] for badge in badges[2]] == ["Drywall technique"]
    assert badges[2][0]["confidence_score"] == 20

    sop = create_sop(client, admin)
    stored = client.get(f"/api/labs/sops/{sop['id']}/evidence", headers=headers).json()
    assert [step["checklist_item_id"] for step in stored] == [step["id"] for step in sop["steps"]]
    assert all(step["badges"] == [] for step in stored)

    assert client.get(f"/api/labs/sops/{uuid.uuid4()}/evidence", headers=headers).json() == []

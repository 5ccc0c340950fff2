import uuid

from .conftest import DRYWALL_SOP_ID, admin_headers, crew_headers


def confirm_drywall_step(client, crew=None):
    crew = crew or uuid.uuid4()
    headers = crew_headers(crew)
    supervisor = uuid.uuid4()
    cosign = crew_headers(supervisor, role="supervisor")
    decision = client.post(
        "/api/labs/checklist-events",
        json={"sop_id": str(DRYWALL_SOP_ID), "step_order": 2},
        headers=headers,
    ).json()
    resp = client.post(
        "/api/labs/observations",
        json={"draft": decision["draft"], "supervisor_id": str(supervisor)},
        headers=cosign,
    )
    assert resp.status_code == 201
    return resp.json()


def test_curation_edits_descriptive_fields_only(client):
    admin = admin_headers()
    created = client.post(
        "/api/labs/knowledge",
        json={"title": "Ceiling first", "knowledge_type": "technique", "category": "Drywall", "tags": ["Drywall"]},
        headers=admin,
    )
    assert created.status_code == 201
    item = created.json()
    assert item["status"] == "draft"
    assert item["category"] == "drywall"
    assert item["tags"] == ["drywall"]
    assert item["version"] == 1

    patched = client.patch(
        f"/api/labs/knowledge/{item['id']}",
        json={"title": "Hang ceilings before walls", "summary": "Walls hold the ceiling edge", "confidence_score": 99},
        headers=admin,
    ).json()
    assert patched["title"] == "Hang ceilings before walls"
    assert patched["summary"] == "Walls hold the ceiling edge"
    assert patched["confidence_score"] == 0
    assert patched["version"] == 2

    assert client.patch(
        f"/api/labs/knowledge/{item['id']}", json={"title": "x"}, headers=crew_headers()
    ).status_code == 403


def test_observations_attribute_to_curated_item_by_tag(client):
    admin = admin_headers()
    item = client.post(
        "/api/labs/knowledge",
        json={"title": "Screw depth", "knowledge_type": "technique", "category": "walls", "tags": ["fastening"]},
        headers=admin,
    ).json()
    confirm_drywall_step(client)

    items = client.get("/api/labs/knowledge", headers=admin).json()
    assert [entry["id"] for entry in items] == [item["id"]]
    assert items[0]["observation_count"] == 1

    links = client.get(f"/api/labs/knowledge/{item['id']}/links", headers=admin).json()
    assert links[0]["link_confidence"] == 90


def test_archived_items_receive_no_new_evidence(client):
    admin = admin_headers()
    observation = confirm_drywall_step(client)
    original = client.get("/api/labs/knowledge", headers=admin).json()[0]

    archived = client.post(f"/api/labs/knowledge/{original['id']}/archive", headers=admin).json()
    assert archived["status"] == "archived"
    assert archived["archived_at"] is not None

    again = client.post(f"/api/labs/knowledge/{original['id']}/archive", headers=admin)
    assert again.status_code == 409
    assert again.json()["detail"]["current_status"] == "archived"

    confirm_drywall_step(client)
    visible = client.get("/api/labs/knowledge", headers=admin).json()
    assert len(visible) == 1
    assert visible[0]["id"] != original["id"]
    assert visible[0]["observation_count"] == 1

    everything = client.get("/api/labs/knowledge", params={"include_archived": True}, headers=admin).json()
    assert len(everything) == 2
    only_archived = client.get("/api/labs/knowledge", params={"status": "archived"}, headers=admin).json()
    assert [entry["id"] for entry in only_archived] == [original["id"]]

    link = client.post(
        f"/api/labs/knowledge/{original['id']}/links",
        json={"observation_id": observation["id"]},
        headers=admin,
    )
    assert link.status_code == 409


def test_manual_link_recomputes(client):
    admin = admin_headers()
    observation = confirm_drywall_step(client)
    target = client.post(
        "/api/labs/knowledge",
        json={"title": "Sheet orientation", "knowledge_type": "procedure", "category": "drywall"},
        headers=admin,
    ).json()

    link = client.post(
        f"/api/labs/knowledge/{target['id']}/links",
        json={"observation_id": observation["id"]},
        headers=admin,
    )
    assert link.status_code == 201
    assert link.json()["link_type"] == "labs_assigned"

    updated = client.get(f"/api/labs/knowledge/{target['id']}", headers=admin).json()
    assert updated["observation_count"] == 1
    assert updated["confidence_score"] == 20

    repeat = client.post(
        f"/api/labs/knowledge/{target['id']}/links",
        json={"observation_id": observation["id"]},
        headers=admin,
    )
    assert repeat.json()["id"] == link.json()["id"]

    missing = client.post(
        f"/api/labs/knowledge/{target['id']}/links",
        json={"observation_id": str(uuid.uuid4())},
        headers=admin,
    )
    assert missing.status_code == 404


def test_review_and_recompute_endpoints(client):
    admin = admin_headers()
    confirm_drywall_step(client)
    item = client.get("/api/labs/knowledge", headers=admin).json()[0]

    reviewed = client.post(f"/api/labs/knowledge/{item['id']}/review", headers=admin).json()
    assert reviewed["status"] == "under_review"
    assert reviewed["confidence_score"] == item["confidence_score"]

    recomputed = client.post(f"/api/labs/knowledge/{item['id']}/recompute", headers=admin).json()
    assert recomputed["status"] == "under_review"
    assert recomputed["version"] == reviewed["version"]

    assert client.post(f"/api/labs/knowledge/{uuid.uuid4()}/recompute", headers=admin).status_code == 404
    assert client.get(f"/api/labs/knowledge/{uuid.uuid4()}", headers=admin).status_code == 404

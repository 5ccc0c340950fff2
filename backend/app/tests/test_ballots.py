import uuid
from datetime import datetime, timedelta, timezone

from .conftest import admin_headers, crew_headers

WEEK_START = datetime(2026, 10, 19, tzinfo=timezone.utc)


def draft_experiment(client, admin, title):
    resp = client.post(
        "/api/labs/experiments",
        json={"title": title, "category": "flooring", "knowledge_type": "material"},
        headers=admin,
    )
    assert resp.status_code == 201
    return resp.json()


def open_ballot(client, admin, experiment_ids):
    resp = client.post(
        "/api/labs/ballots",
        json={
            "week_start": WEEK_START.isoformat(),
            "week_end": (WEEK_START + timedelta(days=7)).isoformat(),
            "experiment_ids": experiment_ids,
        },
        headers=admin,
    )
    assert resp.status_code == 201
    return resp.json()


def vote(client, ballot_id, experiment_id, voter=None):
    return client.post(
        f"/api/labs/ballots/{ballot_id}/votes",
        json={"experiment_id": experiment_id},
        headers=crew_headers(voter),
    )


def test_close_activates_the_winner(client):
    admin = admin_headers()
    glue = draft_experiment(client, admin, "Glue-down LVP over radiant heat")
    click = draft_experiment(client, admin, "Click-lock LVP with 6mil underlay")
    ballot = open_ballot(client, admin, [glue["id"], click["id"]])
    assert [option["position"] for option in ballot["options"]] == [0, 1]

    assert vote(client, ballot["id"], click["id"]).status_code == 201
    assert vote(client, ballot["id"], click["id"]).status_code == 201
    assert vote(client, ballot["id"], glue["id"]).status_code == 201

    results = client.get(f"/api/labs/ballots/{ballot['id']}/results", headers=admin).json()
    assert [(option["experiment_id"], option["vote_count"]) for option in results] == [
        (click["id"], 2),
        (glue["id"], 1),
    ]

    closed = client.post(f"/api/labs/ballots/{ballot['id']}/close", headers=admin).json()
    assert closed["status"] == "closed"
    assert closed["total_votes"] == 3
    assert closed["winning_experiment_id"] == click["id"]

    winner = client.get(f"/api/labs/experiments/{click['id']}", headers=admin).json()
    assert winner["status"] == "active"
    assert winner["activated_via"] == "ballot"
    loser = client.get(f"/api/labs/experiments/{glue['id']}", headers=admin).json()
    assert loser["status"] == "draft"


def test_one_vote_per_voter(client):
    admin = admin_headers()
    experiment = draft_experiment(client, admin, "Floating floor expansion gap")
    ballot = open_ballot(client, admin, [experiment["id"]])
    voter = uuid.uuid4()

    assert vote(client, ballot["id"], experiment["id"], voter).status_code == 201
    second = vote(client, ballot["id"], experiment["id"], voter)
    assert second.status_code == 409
    assert second.json()["detail"]["entity"] == "ballot"

    tally = client.get(f"/api/labs/ballots/{ballot['id']}", headers=admin).json()
    assert tally["total_votes"] == 1


def test_tie_goes_to_the_earlier_option(client):
    admin = admin_headers()
    first = draft_experiment(client, admin, "First listed")
    second = draft_experiment(client, admin, "Second listed")
    ballot = open_ballot(client, admin, [first["id"], second["id"]])
    vote(client, ballot["id"], second["id"])
    vote(client, ballot["id"], first["id"])

    closed = client.post(f"/api/labs/ballots/{ballot['id']}/close", headers=admin).json()
    assert closed["winning_experiment_id"] == first["id"]


def test_winner_skips_options_no_longer_in_draft(client):
    admin = admin_headers()
    popular = draft_experiment(client, admin, "Popular")
    runner_up = draft_experiment(client, admin, "Runner up")
    ballot = open_ballot(client, admin, [popular["id"], runner_up["id"]])
    vote(client, ballot["id"], popular["id"])
    vote(client, ballot["id"], popular["id"])
    vote(client, ballot["id"], runner_up["id"])
    client.post(f"/api/labs/experiments/{popular['id']}/activate", headers=admin)

    closed = client.post(f"/api/labs/ballots/{ballot['id']}/close", headers=admin).json()
    assert closed["winning_experiment_id"] == runner_up["id"]


def test_closed_ballot_rejects_votes_and_reclose(client):
    admin = admin_headers()
    experiment = draft_experiment(client, admin, "Unvoted")
    ballot = open_ballot(client, admin, [experiment["id"]])

    closed = client.post(f"/api/labs/ballots/{ballot['id']}/close", headers=admin).json()
    assert closed["winning_experiment_id"] is None
    assert client.get(f"/api/labs/experiments/{experiment['id']}", headers=admin).json()["status"] == "draft"

    late = vote(client, ballot["id"], experiment["id"])
    assert late.status_code == 409
    assert late.json()["detail"]["current_status"] == "closed"
    assert client.post(f"/api/labs/ballots/{ballot['id']}/close", headers=admin).status_code == 409


def test_ballot_validation(client):
    admin = admin_headers()
    experiment = draft_experiment(client, admin, "Candidate")

    backwards = client.post(
        "/api/labs/ballots",
        json={
            "week_start": WEEK_START.isoformat(),
            "week_end": (WEEK_START - timedelta(days=1)).isoformat(),
            "experiment_ids": [experiment["id"]],
        },
        headers=admin,
    )
    assert backwards.status_code == 422

    duplicate = client.post(
        "/api/labs/ballots",
        json={
            "week_start": WEEK_START.isoformat(),
            "week_end": (WEEK_START + timedelta(days=7)).isoformat(),
            "experiment_ids": [experiment["id"], experiment["id"]],
        },
        headers=admin,
    )
    assert duplicate.status_code == 422

    client.post(f"/api/labs/experiments/{experiment['id']}/activate", headers=admin)
    active = client.post(
        "/api/labs/ballots",
        json={
            "week_start": WEEK_START.isoformat(),
            "week_end": (WEEK_START + timedelta(days=7)).isoformat(),
            "experiment_ids": [experiment["id"]],
        },
        headers=admin,
    )
    assert active.status_code == 409
    assert client.get("/api/labs/ballots", headers=admin).json() == []

    stranger = vote(client, uuid.uuid4(), experiment["id"])
    assert stranger.status_code == 404

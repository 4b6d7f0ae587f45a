from api.deps import get_gateway
from core.errors import TransientError
from services.gateway import SqlGateway


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_login_returns_a_bearer_token(client, users):
    resp = client.post("/api/auth/login", json={"email": "Reviewer@example.com", "password": "secret"})
    assert resp.status_code == 200
    assert resp.json()["role"] == "reviewer"
    assert resp.json()["user_id"] == users["reviewer"]

    author = client.post("/api/auth/login", json={"email": "author@example.com", "password": "secret"})
    assert author.json()["organization_id"] == "org-1"

    bad = client.post("/api/auth/login", json={"email": "reviewer@example.com", "password": "nope"})
    assert bad.status_code == 401


def test_requests_without_a_token_are_rejected(client, make_exercise):
    ex = make_exercise()
    assert client.get(f"/api/exercises/{ex}").status_code == 401
    assert client.get(f"/api/exercises/{ex}", headers={"Authorization": "Bearer junk"}).status_code == 401


def test_author_creates_and_edits_a_draft(client, auth_headers, users):
    headers = auth_headers("author")
    resp = client.post("/api/exercises", json={"name": "Clamshell", "main_tags": ["hip"]}, headers=headers)
    assert resp.status_code == 201
    created = resp.json()
    assert created["status"] == "draft"
    assert created["owner_id"] == users["author"]
    assert created["organization_id"] == "org-1"

    patch = client.patch(
        f"/api/exercises/{created['id']}/fields/default_reps",
        json={"value": 15, "expected_version": created["version"]},
        headers=headers,
    )
    assert patch.status_code == 200
    assert patch.json()["default_reps"] == 15
    assert patch.json()["version"] == created["version"] + 1


def test_field_update_error_mapping(client, auth_headers, make_exercise):
    ex = make_exercise(status="pending_review")
    author, reviewer = auth_headers("author"), auth_headers("reviewer")

    locked = client.patch(f"/api/exercises/{ex}/fields/name", json={"value": "Renamed"}, headers=author)
    assert locked.status_code == 400
    assert locked.json()["detail"]["code"] == "guard_violation"

    invalid = client.patch(f"/api/exercises/{ex}/fields/default_sets", json={"value": "lots"}, headers=reviewer)
    assert invalid.status_code == 422
    assert invalid.json()["detail"]["code"] == "validation_error"

    too_many = client.patch(
        f"/api/exercises/{ex}/fields/main_tags", json={"value": ["a", "b", "c", "d"]}, headers=reviewer
    )
    assert too_many.status_code == 422

    status_field = client.patch(f"/api/exercises/{ex}/fields/status", json={"value": "published"}, headers=reviewer)
    assert status_field.status_code == 400

    stale = client.patch(
        f"/api/exercises/{ex}/fields/name", json={"value": "Renamed", "expected_version": 99}, headers=reviewer
    )
    assert stale.status_code == 409
    assert stale.json()["detail"]["code"] == "conflict"

    missing = client.get("/api/exercises/does-not-exist", headers=reviewer)
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "not_found"


def test_relations_round_trip(client, auth_headers, make_exercise):
    reviewer = auth_headers("reviewer")
    a = make_exercise(name="Wall sit", difficulty_level="medium")
    b = make_exercise(name="Quad set", difficulty_level="beginner")

    put = client.put(f"/api/exercises/{a}/relations/progression", json={"target_id": b}, headers=reviewer)
    assert put.status_code == 200
    assert put.json()["slots"][b]["regression"] == a

    relations = client.get(f"/api/exercises/{a}/relations", headers=reviewer).json()
    assert relations["progression"]["name"] == "Quad set"
    assert relations["progression_warning"] == "Progression should be harder than the exercise"

    inverse = client.get(f"/api/exercises/{b}/relations", headers=reviewer).json()
    assert inverse["regression"]["id"] == a

    removed = client.delete(f"/api/exercises/{a}/relations/progression", headers=reviewer)
    assert removed.status_code == 200
    assert removed.json()["slots"][b]["regression"] is None


def test_suggested_relation_is_confirmed_over_http(client, auth_headers, make_exercise):
    reviewer = auth_headers("reviewer")
    a, b = make_exercise(), make_exercise()

    client.put(
        f"/api/exercises/{a}/relations/regression",
        json={"target_id": b, "provenance": "suggested"},
        headers=reviewer,
    )
    before = client.get(f"/api/exercises/{a}/relations", headers=reviewer).json()
    assert before["regression_edge"]["provenance"] == "suggested"
    assert before["regression_edge"]["confirmed"] is False
    assert before["progression_edge"] is None

    confirm = client.post(f"/api/exercises/{a}/relations/regression/confirm", headers=reviewer)
    assert confirm.status_code == 200
    assert all(e["confirmed"] for e in confirm.json()["edges"])

    after = client.get(f"/api/exercises/{b}/relations", headers=reviewer).json()
    assert after["progression_edge"]["confirmed"] is True

    missing = client.post(f"/api/exercises/{a}/relations/progression/confirm", headers=reviewer)
    assert missing.status_code == 404


def test_relation_guards(client, auth_headers, make_exercise):
    a, b = make_exercise(), make_exercise()

    forbidden = client.put(f"/api/exercises/{a}/relations/progression", json={"target_id": b}, headers=auth_headers("author"))
    assert forbidden.status_code == 403

    reviewer = auth_headers("reviewer")
    self_link = client.put(f"/api/exercises/{a}/relations/progression", json={"target_id": a}, headers=reviewer)
    assert self_link.status_code == 400

    client.put(f"/api/exercises/{a}/relations/progression", json={"target_id": b}, headers=reviewer)
    both_ways = client.put(f"/api/exercises/{a}/relations/regression", json={"target_id": b}, headers=reviewer)
    assert both_ways.status_code == 400


def test_readiness_and_allowed_events(client, auth_headers, make_exercise):
    ex = make_exercise(ready=False, status="pending_review")
    reviewer = auth_headers("reviewer")

    readiness = client.get(f"/api/verification/{ex}/readiness", headers=reviewer).json()
    assert readiness["can_publish"] is False
    assert readiness["errors"] == 5
    assert len(readiness["results"]) == 14

    events = client.get(f"/api/verification/{ex}/events", headers=auth_headers("author")).json()
    assert events["can_edit"] is False
    assert events["events"] == ["withdraw"]


def test_approve_flow_over_http(client, auth_headers, make_exercise):
    reviewer = auth_headers("reviewer")
    incomplete = make_exercise(ready=False, status="pending_review")

    blocked = client.post(f"/api/verification/{incomplete}/dispatch", json={"event": "approve"}, headers=reviewer)
    assert blocked.status_code == 422
    assert "has-media" in blocked.json()["detail"]["failed_rules"]

    ex = make_exercise(status="pending_review")
    approved = client.post(
        f"/api/verification/{ex}/dispatch", json={"event": "approve", "expected_version": 1}, headers=reviewer
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "published"

    again = client.post(f"/api/verification/{ex}/dispatch", json={"event": "approve"}, headers=reviewer)
    assert again.status_code == 400

    snapshot = client.get(f"/api/exercises/{ex}", headers=reviewer).json()
    assert snapshot["scope"] == "global"


def test_dispatch_refuses_unsaved_field_values(client, auth_headers, make_exercise, load_exercise):
    reviewer = auth_headers("reviewer")
    ex = make_exercise(status="pending_review", name="")

    smuggled = client.post(
        f"/api/verification/{ex}/dispatch",
        json={"event": "approve", "pending": {"name": "Wall sit"}},
        headers=reviewer,
    )
    assert smuggled.status_code == 422
    assert load_exercise(ex).status == "pending_review"

    blocked = client.post(f"/api/verification/{ex}/dispatch", json={"event": "approve"}, headers=reviewer)
    assert blocked.json()["detail"]["failed_rules"] == ["name-required"]


def test_request_changes_history(client, auth_headers, make_exercise):
    reviewer = auth_headers("reviewer")
    ex = make_exercise(status="pending_review")

    short = client.post(
        f"/api/verification/{ex}/dispatch", json={"event": "request_changes", "notes": "fix"}, headers=reviewer
    )
    assert short.status_code == 422

    notes = "Cue the neutral spine before lifting."
    ok = client.post(
        f"/api/verification/{ex}/dispatch", json={"event": "request_changes", "notes": notes}, headers=reviewer
    )
    assert ok.status_code == 200

    history = client.get(f"/api/verification/{ex}/decisions", headers=auth_headers("author")).json()
    assert [(d["event"], d["notes"]) for d in history] == [("request_changes", notes)]


def test_bulk_and_stats(client, auth_headers, make_exercise):
    reviewer = auth_headers("reviewer")
    ids = [make_exercise(status="pending_review") for _ in range(3)]
    make_exercise(status="draft")

    bulk = client.post(
        "/api/verification/bulk",
        json={"event": "reject", "exercise_ids": ids[:2], "notes": "Duplicate content", "reason_code": "potential_duplicate"},
        headers=reviewer,
    )
    assert bulk.status_code == 200
    assert bulk.json()["success_count"] == 2

    stats = client.get("/api/verification/stats", headers=reviewer).json()
    assert stats["pending_review"] == 1
    assert stats["rejected"] == 2
    assert stats["total"] == 4

    assert client.get("/api/verification/stats", headers=auth_headers("author")).status_code == 403


def test_storage_outage_maps_to_503(client, auth_headers, make_exercise, session_factory):
    class DownGateway(SqlGateway):
        async def apply_transition(self, exercise_id, **kwargs):
            raise TransientError("database unavailable")

    client.app.dependency_overrides[get_gateway] = lambda: DownGateway(session_factory)
    ex = make_exercise(status="pending_review")

    resp = client.post(f"/api/verification/{ex}/dispatch", json={"event": "approve"}, headers=auth_headers("reviewer"))

    assert resp.status_code == 503
    assert resp.json()["detail"]["code"] == "transient"

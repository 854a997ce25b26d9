"""
Tests for the HTTP API.
"""

from control_center.lifecycle.enums import IssueState
from control_center.lifecycle.issues import RunService
from control_center.lifecycle.schemas import RunStart

MERGE_BODY = {
    "merge_sha": "0123456789abcdef",
    "merged_at": "2026-01-05T10:00:00Z",
    "pr_url": "https://github.com/acme/app/pull/7",
    "pr_number": 7,
}


class TestSystemEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_version(self, client):
        response = client.get("/version")
        assert response.status_code == 200
        assert isinstance(response.json()["version"], str)


class TestIssueEndpoints:
    def test_create_and_get(self, client):
        response = client.post(
            "/issues",
            json={
                "title": "Add login",
                "canonical_id": "I811",
                "github_url": "https://github.com/acme/app/issues/811",
            },
        )
        assert response.status_code == 201
        issue = response.json()["issue"]
        assert issue["status"] == "CREATED"

        for identifier in (issue["id"], issue["public_id"], "I811"):
            body = client.get(f"/issues/{identifier}").json()
            assert body["id"] == issue["id"]
            assert body["next_step"]["step"] == "S1_PICK_ISSUE"

    def test_next_step_blocked_without_github_link(self, client, make_issue):
        issue = make_issue(github_url=None)

        body = client.get(f"/issues/{issue.public_id}").json()

        assert body["next_step"]["blocked"] is True
        assert body["next_step"]["blocker_code"] == "NO_GITHUB_LINK"

    def test_unknown_issue_is_404(self, client):
        response = client.get("/issues/0badc0de")
        assert response.status_code == 404
        assert response.json()["code"] == "ISSUE_NOT_FOUND"

    def test_invalid_identifier_is_400(self, client):
        response = client.get("/issues/not%20valid")
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_IDENTIFIER"

    def test_create_rejects_unknown_fields(self, client):
        response = client.post("/issues", json={"title": "x", "status": "DONE"})
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_duplicate_canonical_id_is_409(self, client, make_issue):
        make_issue(canonical_id="E81.5")
        response = client.post("/issues", json={"title": "again", "canonical_id": "E81.5"})
        assert response.status_code == 409

    def test_transition(self, client, make_issue):
        issue = make_issue()

        response = client.post(
            f"/issues/{issue.id}/transitions", json={"to_state": "SPEC_READY"}
        )

        assert response.status_code == 200
        assert response.json() == {
            "ok": True,
            "from": "CREATED",
            "to": "SPEC_READY",
            "changed": True,
        }

    def test_illegal_transition_is_409(self, client, make_issue):
        issue = make_issue()

        response = client.post(f"/issues/{issue.id}/transitions", json={"to_state": "DONE"})

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "INVALID_TRANSITION"
        assert body["details"] == {"from": "CREATED", "to": "DONE"}

    def test_list_filters_by_status(self, client, make_issue):
        make_issue()
        held = make_issue(IssueState.HOLD)

        body = client.get("/issues", params={"status": "HOLD"}).json()

        assert [i["id"] for i in body["issues"]] == [held.id]


class TestRunAndVerifyEndpoints:
    def test_run_lifecycle(self, client, make_issue):
        issue = make_issue(IssueState.SPEC_READY)

        started = client.post(f"/issues/{issue.id}/runs", json={"step": "S3_IMPLEMENT_PREP"})
        assert started.status_code == 201
        run = started.json()["run"]
        assert run["status"] == "RUNNING"

        finished = client.post(f"/runs/{run['id']}/finish", json={"status": "SUCCEEDED"})
        assert finished.status_code == 200
        assert finished.json()["run"]["status"] == "SUCCEEDED"

        again = client.post(f"/runs/{run['id']}/finish", json={"status": "FAILED"})
        assert again.status_code == 409
        assert again.json()["code"] == "RUN_ALREADY_FINISHED"

    def test_verify_is_idempotent(self, client, db_session, make_issue):
        issue = make_issue(IssueState.DONE)
        run = RunService(db_session).start(issue.id, RunStart(step="S7_VERIFY_GATE"))
        url = f"/issues/{issue.public_id}/runs/{run.id}/verify"
        body = {"evidence": {"deployment": "pass", "smoke": "fail"}}

        first = client.post(url, json=body)
        second = client.post(url, json=body)

        assert first.status_code == 200
        assert first.json()["verdict"] == "RED"
        assert first.json()["failed_checks"] == ["smoke"]
        assert first.json()["created"] is True
        assert second.json()["created"] is False
        assert second.json()["verdict_id"] == first.json()["verdict_id"]

    def test_verify_malformed_evidence_is_400(self, client, db_session, make_issue):
        issue = make_issue(IssueState.DONE)
        run = RunService(db_session).start(issue.id, RunStart())

        response = client.post(
            f"/issues/{issue.id}/runs/{run.id}/verify",
            json={"evidence": {"deployment": "maybe"}},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_EVIDENCE"

    def test_verify_unknown_run_is_404(self, client, make_issue):
        issue = make_issue(IssueState.DONE)

        response = client.post(
            f"/issues/{issue.id}/runs/missing-run/verify",
            json={"evidence": {"deployment": "pass"}},
        )

        assert response.status_code == 404
        assert response.json()["code"] == "RUN_NOT_FOUND"


class TestTimelineEndpoint:
    def test_paging(self, client, make_issue):
        issue = make_issue(IssueState.IMPLEMENTING_PREP)

        body = client.get(
            "/timeline", params={"issue_id": issue.id, "limit": 2, "offset": 0}
        ).json()

        assert body["total"] == 3
        assert body["limit"] == 2
        assert [e["event_type"] for e in body["events"]] == ["ISSUE_CREATED", "STATE_CHANGED"]

    def test_filter_by_event_type(self, client, make_issue):
        issue = make_issue(IssueState.SPEC_READY)

        body = client.get(
            "/timeline", params={"issue_id": issue.id, "event_type": "STATE_CHANGED"}
        ).json()

        assert body["total"] == 1

    def test_invalid_event_type_is_400(self, client, make_issue):
        issue = make_issue()

        response = client.get("/timeline", params={"issue_id": issue.id, "event_type": "BOGUS"})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_EVENT_TYPE"


class TestMergeEndpoint:
    def test_apply_then_repeat(self, client, make_issue):
        issue = make_issue(IssueState.REVIEW_READY)
        body = {**MERGE_BODY, "issue_id": issue.public_id}

        first = client.post("/merge/apply", json=body)
        second = client.post("/merge/apply", json=body)

        assert first.status_code == 200
        assert first.json() == {"ok": True, "issue_id": issue.id, "idempotent": False}
        assert second.json() == {"ok": True, "issue_id": issue.id, "idempotent": True}
        assert client.get(f"/issues/{issue.id}").json()["status"] == "DONE"

    def test_unknown_issue_is_409(self, client):
        response = client.post("/merge/apply", json={**MERGE_BODY, "issue_id": "0badc0de"})

        assert response.status_code == 409
        assert response.json() == {
            "ok": False,
            "code": "MESH_UPDATE_FAILED",
            "details": {"reason": "ISSUE_NOT_FOUND"},
        }

    def test_missing_issue_reference_is_400(self, client):
        response = client.post(
            "/merge/apply",
            json={"merge_sha": "0123456789", "merged_at": "2026-01-05T10:00:00Z"},
        )
        assert response.status_code == 400


class TestPublishEndpoints:
    def test_append_and_query(self, client, make_issue):
        issue = make_issue()

        created = client.post(
            "/publish/batches",
            json={
                "session_id": "sess-1",
                "items": [
                    {"action": "create", "issue_id": issue.id, "result_json": {"number": 5}},
                    {"action": "skip", "reason": "unchanged"},
                ],
            },
        )
        assert created.status_code == 201
        batch_id = created.json()["batch"]["id"]

        page = client.get(
            "/publish/batches", params={"session_id": "sess-1", "include_items": True}
        ).json()
        assert [b["id"] for b in page["batches"]] == [batch_id]
        assert [i["action"] for i in page["batches"][0]["items"]] == ["create", "skip"]

        items = client.get(f"/publish/batches/{batch_id}/items").json()["items"]
        assert items[0]["result_json"] == {"number": 5}

    def test_empty_batch_is_400(self, client):
        response = client.post("/publish/batches", json={"session_id": "s", "items": []})
        assert response.status_code == 400

    def test_unknown_batch_is_404(self, client):
        response = client.get("/publish/batches/missing/items")
        assert response.status_code == 404
        assert response.json()["code"] == "BATCH_NOT_FOUND"

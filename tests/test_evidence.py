"""
Tests for evidence redaction, hashing and the evidence recorder.
"""

import pytest

from control_center.db.models import EvidenceModel
from control_center.lifecycle.enums import EvidenceAction
from control_center.lifecycle.errors import ValidationError
from control_center.lifecycle.evidence import EvidenceRecorder
from control_center.lifecycle.redaction import (
    REDACTED,
    compute_hash,
    is_secret_key,
    redact_secrets,
    stable_stringify,
)


class TestStableStringify:
    def test_sorted_keys(self):
        assert stable_stringify({"b": 1, "a": {"d": 2, "c": 3}}) == '{"a":{"c":3,"d":2},"b":1}'

    def test_key_order_does_not_change_hash(self):
        assert compute_hash({"a": 1, "b": [1, 2]}) == compute_hash({"b": [1, 2], "a": 1})

    def test_array_order_changes_hash(self):
        assert compute_hash([1, 2]) != compute_hash([2, 1])

    def test_hash_is_sha256_hex(self):
        digest = compute_hash({"a": 1})
        assert len(digest) == 64
        int(digest, 16)

    def test_non_ascii_kept(self):
        assert stable_stringify({"name": "Grüße"}) == '{"name":"Grüße"}'


class TestRedaction:
    @pytest.mark.parametrize(
        "key",
        [
            "token",
            "apiToken",
            "github_token",
            "GITHUB-TOKEN",
            "password",
            "db_password",
            "client_secret",
            "x-api-key",
            "x_api_key",
            "Authorization",
            "session",
            "refresh_token_value",
        ],
    )
    def test_secret_keys(self, key):
        assert is_secret_key(key)

    @pytest.mark.parametrize(
        "key", ["session_id", "title", "tokens_used_count", "environment", "author"]
    )
    def test_non_secret_keys(self, key):
        assert not is_secret_key(key)

    def test_primitive_secret_values_redacted(self):
        redacted = redact_secrets({"user": "alice", "password": "hunter2", "apiKey": "k"})
        assert redacted["user"] == "alice"
        assert redacted["password"] == REDACTED
        assert redacted["apiKey"] == REDACTED

    def test_env_always_redacted(self):
        redacted = redact_secrets({"env": {"PATH": "/bin"}, "process.env": {"HOME": "/root"}})
        assert redacted == {"env": REDACTED, "process.env": REDACTED}

    def test_secret_key_with_object_is_recursed(self):
        redacted = redact_secrets({"credentials": {"username": "bob", "password": "x"}})
        assert redacted == {"credentials": {"username": "bob", "password": REDACTED}}

    def test_nested_lists(self):
        redacted = redact_secrets({"calls": [{"token": "t1"}, {"token": "t2", "n": 1}]})
        assert redacted == {"calls": [{"token": REDACTED}, {"token": REDACTED, "n": 1}]}

    def test_input_not_mutated(self):
        original = {"password": "x"}
        redact_secrets(original)
        assert original == {"password": "x"}


class TestEvidenceRecorder:
    def test_record_redacts_and_hashes(self, db_session, make_issue):
        issue = make_issue()
        recorder = EvidenceRecorder(db_session)

        evidence = recorder.record(
            issue_id=issue.id,
            action=EvidenceAction.RUN_OUTPUT,
            params={"github_token": "ghp_secret", "step": "S3"},
            result={"ok": True},
        )
        db_session.commit()

        stored = db_session.get(EvidenceModel, evidence.id)
        assert stored.params == {"github_token": REDACTED, "step": "S3"}
        assert stored.params_hash == compute_hash({"github_token": REDACTED, "step": "S3"})
        assert stored.result_hash == compute_hash({"ok": True})
        assert "ghp_secret" not in stable_stringify(stored.to_dict())

    def test_payload_bound(self, db_session, make_issue):
        issue = make_issue()
        recorder = EvidenceRecorder(db_session, max_payload_bytes=100)

        with pytest.raises(ValidationError) as exc_info:
            recorder.record(
                issue_id=issue.id,
                action=EvidenceAction.RUN_OUTPUT,
                params={"a": "x" * 60},
                result={"b": "y" * 60},
            )
        assert exc_info.value.code == "EVIDENCE_PAYLOAD_TOO_LARGE"

    def test_redaction_happens_before_size_check(self, db_session, make_issue):
        issue = make_issue()
        recorder = EvidenceRecorder(db_session, max_payload_bytes=100)

        evidence = recorder.record(
            issue_id=issue.id,
            action=EvidenceAction.RUN_OUTPUT,
            params={"env": {"BIG": "z" * 500}},
        )
        assert evidence.params == {"env": REDACTED}

    def test_find_by_natural_key(self, db_session, make_issue):
        issue = make_issue()
        recorder = EvidenceRecorder(db_session)
        evidence = recorder.record(issue.id, EvidenceAction.VERIFICATION, result={"build": "pass"})

        found = recorder.find(
            issue.id, None, EvidenceAction.VERIFICATION, compute_hash({"build": "pass"})
        )
        assert found.id == evidence.id

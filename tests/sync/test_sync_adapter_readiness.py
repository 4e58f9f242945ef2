from __future__ import annotations

import pytest

from exchange_sync.sync.adapters.practicepanther import (
    PracticePantherAdapterAuthError,
    PracticePantherAdapterConfigError,
    check_practicepanther_adapter_readiness,
    ensure_practicepanther_adapter_ready,
)

pytestmark = pytest.mark.unit


class FakeConnectionClient:
    def __init__(self, result):
        self.result = result
        self.calls = 0

    def test_connection(self):
        self.calls += 1
        return self.result


def test_readiness_reports_missing_credentials():
    readiness = check_practicepanther_adapter_readiness(env={})
    assert readiness.status == "missing-env"
    assert readiness.credential_source == "none"
    assert readiness.missing_env_vars == ("PP_CLIENT_ID", "PP_CLIENT_SECRET")
    assert "PRACTICE_PANTHER_ACCESS_TOKEN" in readiness.messages()[0]

    with pytest.raises(PracticePantherAdapterConfigError):
        ensure_practicepanther_adapter_ready(env={})


def test_readiness_prefers_oauth_and_notes_missing_refresh_token():
    readiness = check_practicepanther_adapter_readiness(
        env={"PP_CLIENT_ID": "id", "PP_CLIENT_SECRET": "secret", "PRACTICE_PANTHER_ACCESS_TOKEN": "tok"}
    )
    assert readiness.status == "ready"
    assert readiness.credential_source == "oauth"
    assert any("PRACTICE_PANTHER_REFRESH_TOKEN" in note for note in readiness.notes)
    payload = readiness.as_dict()
    assert payload["status"] == "ready"
    assert payload["auth_status"] == "skipped"


def test_readiness_with_static_token_is_ready_without_ping():
    client = FakeConnectionClient({"success": True})
    readiness = check_practicepanther_adapter_readiness(env={"PRACTICE_PANTHER_ACCESS_TOKEN": "tok"}, client=client)
    assert readiness.status == "ready"
    assert readiness.credential_source == "static"
    assert client.calls == 0


def test_auth_ping_failure_is_reported_and_raised():
    client = FakeConnectionClient({"success": False, "message": "Remote API error (401)"})
    env = {"PRACTICE_PANTHER_ACCESS_TOKEN": "bad"}

    readiness = check_practicepanther_adapter_readiness(env=env, require_auth_ping=True, client=client)
    assert readiness.status == "auth-error"
    assert "401" in readiness.auth_error

    with pytest.raises(PracticePantherAdapterAuthError):
        ensure_practicepanther_adapter_ready(env=env, require_auth_ping=True, client=client)


def test_auth_ping_success_marks_ok():
    client = FakeConnectionClient({"success": True, "latency_ms": 10})
    readiness = ensure_practicepanther_adapter_ready(
        env={"PRACTICE_PANTHER_ACCESS_TOKEN": "tok"}, require_auth_ping=True, client=client
    )
    assert readiness.auth_status == "ok"
    assert client.calls == 1

"""PracticePanther adapter readiness and configuration validation utilities."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, Mapping, Tuple

OAUTH_ENV_VARS: Tuple[str, ...] = ("PP_CLIENT_ID", "PP_CLIENT_SECRET")
OPTIONAL_ENV_VARS: Tuple[str, ...] = ("PRACTICE_PANTHER_REFRESH_TOKEN", "PRACTICE_PANTHER_BASE_URL")


class PracticePantherAdapterError(RuntimeError):
    """Base error for PracticePanther adapter readiness issues."""


class PracticePantherAdapterConfigError(PracticePantherAdapterError):
    """Raised when no credential source is configured."""


class PracticePantherAdapterAuthError(PracticePantherAdapterError):
    """Raised when the connection test is rejected."""


@dataclass(frozen=True)
class PracticePantherAdapterReadiness:
    credential_source: Literal["static", "oauth", "none"]
    missing_env_vars: Tuple[str, ...]
    auth_status: Literal["skipped", "ok", "failed"]
    auth_error: str | None = None
    notes: Tuple[str, ...] = ()

    @property
    def status(self) -> str:
        if self.credential_source == "none":
            return "missing-env"
        if self.auth_status == "failed":
            return "auth-error"
        return "ready"

    def messages(self) -> Tuple[str, ...]:
        messages: list[str] = []
        if self.credential_source == "none":
            messages.append(
                "Missing PracticePanther credentials: set PRACTICE_PANTHER_ACCESS_TOKEN or "
                + " and ".join(self.missing_env_vars)
            )
        if self.auth_status == "failed" and self.auth_error:
            messages.append(self.auth_error)
        messages.extend(self.notes)
        return tuple(messages)

    def as_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "status": self.status,
            "credential_source": self.credential_source,
            "missing_env_vars": list(self.missing_env_vars),
            "auth_status": self.auth_status,
            "messages": list(self.messages()),
        }
        if self.auth_error:
            payload["auth_error"] = self.auth_error
        if self.notes:
            payload["notes"] = list(self.notes)
        return payload


def check_practicepanther_adapter_readiness(
    env: Mapping[str, str] | None = None,
    *,
    require_auth_ping: bool = False,
    client=None,
) -> PracticePantherAdapterReadiness:
    """
    Perform a non-raising readiness check for the PracticePanther adapter.

    Args:
        env: Mapping of settings to inspect (app config or environment). Defaults to os.environ.
        require_auth_ping: Whether to call the API once to validate credentials.
        client: RemoteClient used for the ping; required when ``require_auth_ping`` is set.
    """

    env = env if env is not None else os.environ
    missing_oauth = tuple(sorted(var for var in OAUTH_ENV_VARS if not env.get(var)))

    credential_source: Literal["static", "oauth", "none"]
    if not missing_oauth:
        credential_source = "oauth"
    elif env.get("PRACTICE_PANTHER_ACCESS_TOKEN"):
        credential_source = "static"
    else:
        credential_source = "none"

    auth_status: Literal["skipped", "ok", "failed"] = "skipped"
    auth_error: str | None = None
    if require_auth_ping and credential_source != "none" and client is not None:
        result = client.test_connection()
        if result.get("success"):
            auth_status = "ok"
        else:
            auth_status = "failed"
            auth_error = f"PracticePanther connection test failed: {result.get('message')}"

    notes: Tuple[str, ...] = ()
    if credential_source == "oauth" and not env.get("PRACTICE_PANTHER_REFRESH_TOKEN"):
        notes = ("PRACTICE_PANTHER_REFRESH_TOKEN not set; refresh relies on a stored oauth_tokens row.",)

    return PracticePantherAdapterReadiness(
        credential_source=credential_source,
        missing_env_vars=missing_oauth if credential_source == "none" else (),
        auth_status=auth_status,
        auth_error=auth_error,
        notes=notes,
    )


def ensure_practicepanther_adapter_ready(
    env: Mapping[str, str] | None = None,
    *,
    require_auth_ping: bool = False,
    client=None,
) -> PracticePantherAdapterReadiness:
    """Validate adapter readiness, raising actionable errors when not ready."""

    readiness = check_practicepanther_adapter_readiness(env, require_auth_ping=require_auth_ping, client=client)
    if readiness.credential_source == "none":
        raise PracticePantherAdapterConfigError(readiness.messages()[0])
    if readiness.auth_status == "failed":
        raise PracticePantherAdapterAuthError(readiness.auth_error or "PracticePanther authentication failed.")
    return readiness


__all__ = [
    "OAUTH_ENV_VARS",
    "OPTIONAL_ENV_VARS",
    "PracticePantherAdapterError",
    "PracticePantherAdapterConfigError",
    "PracticePantherAdapterAuthError",
    "PracticePantherAdapterReadiness",
    "check_practicepanther_adapter_readiness",
    "ensure_practicepanther_adapter_ready",
]

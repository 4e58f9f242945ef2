"""
Bearer credential providers for the PracticePanther client.

The remote client never holds token state of its own; it asks an injected
provider for a token on every request and calls ``invalidate`` after a 401.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

import requests
from sqlalchemy import select, update

from exchange_sync.models import OAuthToken, db
from exchange_sync.sync.errors import RemoteAPIError, SyncError

PROVIDER_NAME = "practicepanther"
DEFAULT_TOKEN_URL = "https://app.practicepanther.com/OAuth/Token"
DEFAULT_EXPIRES_IN = 86_400
EXPIRY_BUFFER = timedelta(minutes=5)


class CredentialError(SyncError):
    """Raised when no usable bearer token can be produced."""


class CredentialProvider(Protocol):
    def get_token(self) -> str:
        ...

    def invalidate(self) -> None:
        ...


class StaticTokenProvider:
    """Serve a fixed token supplied through configuration."""

    def __init__(self, token: str) -> None:
        if not token:
            raise CredentialError("PracticePanther access token is empty.")
        self._token = token
        self._invalidated = False

    def get_token(self) -> str:
        return self._token

    def invalidate(self) -> None:
        # A static token cannot be refreshed; the retry will reuse it and fail loudly.
        self._invalidated = True

    @property
    def invalidated(self) -> bool:
        return self._invalidated


class OAuthTokenProvider:
    """
    Serve the newest active ``OAuthToken`` row, refreshing it when it is close to expiry.

    Refresh follows the PracticePanther OAuth contract: a form POST with
    ``grant_type=refresh_token`` to the token endpoint. The refreshed token is
    stored as the new active row and older rows are deactivated.
    """

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        token_url: str = DEFAULT_TOKEN_URL,
        refresh_token: str | None = None,
        http: requests.Session | None = None,
        timeout: float = 30.0,
        now_fn: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.seed_refresh_token = refresh_token
        self.http = http or requests.Session()
        self.timeout = timeout
        self.now = now_fn or (lambda: datetime.now(timezone.utc))
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._cached_token: str | None = None
        self._cached_expiry: datetime | None = None

    def get_token(self) -> str:
        with self._lock:
            if self._cached_token and self._is_fresh(self._cached_expiry):
                return self._cached_token

            stored = self._load_active_token()
            if stored is not None and self._is_fresh(stored.expires_at):
                self._remember(stored.access_token, stored.expires_at)
                return stored.access_token

            refresh_token = (stored.refresh_token if stored is not None else None) or self.seed_refresh_token
            if not refresh_token:
                raise CredentialError("No PracticePanther token found. OAuth authorization required.")
            return self._refresh(refresh_token)

    def invalidate(self) -> None:
        with self._lock:
            self._cached_token = None
            self._cached_expiry = None
            stored = self._load_active_token()
            if stored is not None:
                # Force the next get_token() to refresh instead of reusing the rejected row.
                stored.expires_at = self.now()
                db.session.commit()

    # Internal helpers -----------------------------------------------------------

    def _is_fresh(self, expires_at: datetime | None) -> bool:
        if expires_at is None:
            return True
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at > self.now() + EXPIRY_BUFFER

    def _remember(self, token: str, expires_at: datetime | None) -> None:
        self._cached_token = token
        self._cached_expiry = expires_at

    def _load_active_token(self) -> OAuthToken | None:
        stmt = (
            select(OAuthToken)
            .where(OAuthToken.provider == PROVIDER_NAME, OAuthToken.is_active.is_(True))
            .order_by(OAuthToken.created_at.desc(), OAuthToken.id.desc())
            .limit(1)
        )
        return db.session.execute(stmt).scalar_one_or_none()

    def _refresh(self, refresh_token: str) -> str:
        self.logger.info("Refreshing PracticePanther access token", extra={"oauth_provider": PROVIDER_NAME})
        try:
            response = self.http.post(
                self.token_url,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise RemoteAPIError(None, str(exc), path=self.token_url) from exc
        if response.status_code >= 400:
            raise RemoteAPIError(response.status_code, response.text, path=self.token_url)

        payload = response.json()
        access_token = payload.get("access_token")
        if not access_token:
            raise CredentialError("No access token in refresh response.")

        expires_in = int(payload.get("expires_in") or DEFAULT_EXPIRES_IN)
        expires_at = self.now() + timedelta(seconds=expires_in)
        db.session.execute(
            update(OAuthToken).where(OAuthToken.provider == PROVIDER_NAME).values(is_active=False)
        )
        db.session.add(
            OAuthToken(
                provider=PROVIDER_NAME,
                access_token=access_token,
                refresh_token=payload.get("refresh_token") or refresh_token,
                token_type=payload.get("token_type") or "Bearer",
                scope=payload.get("scope"),
                expires_at=expires_at,
                is_active=True,
            )
        )
        db.session.commit()
        self._remember(access_token, expires_at)
        self.logger.info(
            "PracticePanther token refreshed",
            extra={"oauth_provider": PROVIDER_NAME, "oauth_expires_at": expires_at.isoformat()},
        )
        return access_token


def build_credential_provider(config) -> CredentialProvider:
    """Pick a provider from app config: OAuth refresh when client credentials exist, else a static token."""

    client_id = config.get("PP_CLIENT_ID")
    client_secret = config.get("PP_CLIENT_SECRET")
    if client_id and client_secret:
        return OAuthTokenProvider(
            client_id=client_id,
            client_secret=client_secret,
            token_url=config.get("PRACTICE_PANTHER_TOKEN_URL") or DEFAULT_TOKEN_URL,
            refresh_token=config.get("PRACTICE_PANTHER_REFRESH_TOKEN"),
            timeout=float(config.get("SYNC_REQUEST_TIMEOUT", 30)),
        )
    token = config.get("PRACTICE_PANTHER_ACCESS_TOKEN")
    if not token:
        raise CredentialError(
            "PracticePanther credentials missing: set PRACTICE_PANTHER_ACCESS_TOKEN or PP_CLIENT_ID/PP_CLIENT_SECRET."
        )
    return StaticTokenProvider(token)

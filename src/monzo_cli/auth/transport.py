"""
Request signing for the Monzo API.

``build_auth`` picks the signing mechanism for a stored token:

- no refresh token: ``StaticTokenAuth``, the access token is sent as-is
  until the API starts rejecting it
- refresh token: ``RefreshingTokenAuth``, an expired access token is
  exchanged for a new one before the request goes out
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import requests
from requests.auth import AuthBase

from .oauth2 import refresh_access_token
from .token_store import Token

logger = logging.getLogger(__name__)

# Guaranteed to be in the past; forces a refresh on the next request.
EXPIRED_SENTINEL = datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc)


class BearerTokenAuth(AuthBase):
    """Attach ``Authorization: Bearer <token>`` to every request."""

    def __init__(self, token: Token):
        self._token = token

    @property
    def current(self) -> Token:
        """Token as held right now, without triggering a refresh."""
        return self._token

    def token(self) -> Token:
        """Current token, refreshed first if needed."""
        return self._token

    def expire(self) -> None:
        """Mark the cached token as expired."""
        self._token = self._token.with_expiry(EXPIRED_SENTINEL)

    def __call__(self, r: requests.PreparedRequest) -> requests.PreparedRequest:
        token = self.token()
        r.headers["Authorization"] = f"{token.token_type or 'Bearer'} {token.access_token}"
        return r


class StaticTokenAuth(BearerTokenAuth):
    """Long-lived token with no way to refresh it."""

    def expire(self) -> None:
        logger.debug("Static access token cannot be refreshed, ignoring expire")


class RefreshingTokenAuth(BearerTokenAuth):
    """Token that refreshes itself through the OAuth2 token endpoint."""

    def __init__(
        self,
        token: Token,
        token_url: str,
        session: requests.Session | None = None,
        timeout: int = 30,
    ):
        super().__init__(token)
        self.token_url = token_url
        # Separate session so token calls never carry the bearer header
        self.session = session or requests.Session()
        self.timeout = timeout

    def token(self) -> Token:
        if self._token.expired():
            logger.debug("Access token expired at %s, refreshing", self._token.expiry)
            self._token = refresh_access_token(
                self._token, self.token_url, session=self.session, timeout=self.timeout
            )
        return self._token


def build_auth(
    token: Token,
    token_url: str,
    session: requests.Session | None = None,
    timeout: int = 30,
) -> BearerTokenAuth:
    """Choose the signing mechanism for ``token``."""
    if not token.refresh_token:
        return StaticTokenAuth(token)
    return RefreshingTokenAuth(token, token_url, session=session, timeout=timeout)

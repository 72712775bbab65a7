"""
OAuth2 endpoint configuration and token endpoint calls.

Monzo expects the client credentials in the form body ("auth style in
params"), not in a Basic auth header.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import requests

from ..config import OAuthConfig
from ..monzo_client.client import MonzoError
from .token_store import Token

logger = logging.getLogger(__name__)

ACCESS_TYPE_OFFLINE = "offline"


class MonzoAuthError(MonzoError):
    """Authentication with the Monzo OAuth2 endpoints failed."""

    pass


class MonzoAuthTimeoutError(MonzoAuthError):
    """Gave up waiting for the authorization callback."""

    pass


@dataclass
class OAuth2Endpoint:
    auth_url: str = "https://auth.monzo.com/"
    token_url: str = "https://api.monzo.com/oauth2/token"

    @classmethod
    def from_config(cls, config: OAuthConfig) -> OAuth2Endpoint:
        return cls(auth_url=config.auth_url, token_url=config.token_url)


@dataclass
class OAuth2Credentials:
    """Client credentials plus the redirect URL registered for them."""

    client_id: str
    client_secret: str
    redirect_url: str = ""
    endpoint: OAuth2Endpoint | None = None

    def __post_init__(self):
        if self.endpoint is None:
            self.endpoint = OAuth2Endpoint()

    def auth_code_url(self, state: str) -> str:
        """Authorization URL the user visits to grant access."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_url,
            "response_type": "code",
            "state": state,
            "access_type": ACCESS_TYPE_OFFLINE,
        }
        return f"{self.endpoint.auth_url}?{urlencode(params)}"

    def exchange(
        self,
        code: str,
        session: requests.Session | None = None,
        timeout: int = 30,
    ) -> Token:
        """Exchange an authorization code for an access + refresh token pair."""
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_url,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "access_type": ACCESS_TYPE_OFFLINE,
        }
        token = _token_request(self.endpoint.token_url, payload, session, timeout)
        token.client_id = self.client_id
        token.client_secret = self.client_secret
        return token


def refresh_access_token(
    token: Token,
    token_url: str,
    session: requests.Session | None = None,
    timeout: int = 30,
) -> Token:
    """Exchange the refresh token for a new access token.

    Raises:
        MonzoAuthError: If the token cannot be refreshed or the endpoint
            rejects the request.
    """
    if not token.can_refresh:
        raise MonzoAuthError(
            "cannot refresh - missing client id, client secret, or refresh token"
        )

    payload = {
        "grant_type": "refresh_token",
        "refresh_token": token.refresh_token,
        "client_id": token.client_id,
        "client_secret": token.client_secret,
    }
    new_token = _token_request(token_url, payload, session, timeout)

    # The endpoint may omit the refresh token when it is unchanged
    new_token.refresh_token = new_token.refresh_token or token.refresh_token
    new_token.client_id = token.client_id
    new_token.client_secret = token.client_secret

    logger.info("Refreshed access token, new expiry %s", new_token.expiry)
    return new_token


def _token_request(
    token_url: str,
    payload: dict,
    session: requests.Session | None,
    timeout: int,
) -> Token:
    http = session or requests
    logger.debug("Token request: POST %s grant_type=%s", token_url, payload.get("grant_type"))

    try:
        response = http.post(
            token_url,
            data=payload,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
    except requests.exceptions.RequestException as e:
        raise MonzoAuthError(f"Token request failed: {e}") from e

    if not response.ok:
        message = response.reason
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("error_description") or body.get("message") or body.get(
                "error", message
            )
        logger.error("Token endpoint error %s: %s", response.status_code, message)
        raise MonzoAuthError(f"Token request failed ({response.status_code}): {message}")

    try:
        data = response.json()
    except ValueError as e:
        raise MonzoAuthError(f"Token endpoint returned invalid JSON: {e}") from e

    if not isinstance(data, dict) or not data.get("access_token"):
        raise MonzoAuthError("Token endpoint response has no access_token")

    expiry = None
    expires_in = data.get("expires_in")
    if expires_in:
        try:
            expiry = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
        except (TypeError, ValueError) as e:
            raise MonzoAuthError(f"Token endpoint returned invalid expires_in: {expires_in!r}") from e

    return Token(
        access_token=data["access_token"],
        token_type=data.get("token_type") or "Bearer",
        refresh_token=data.get("refresh_token") or None,
        expiry=expiry,
    )

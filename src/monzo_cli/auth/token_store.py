"""
OAuth2 token persistence.

The token file is a small JSON document in the CLI home directory. It is
written after every command that used the token (the access token may have
been refreshed) and removed on logout.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

from ..monzo_client.client import MonzoError
from ..monzo_client.models import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

# Tokens are treated as expired slightly early so a request never races expiry.
EXPIRY_DELTA = timedelta(seconds=10)


class TokenStoreError(MonzoError):
    """Token file is missing, unreadable or invalid."""

    pass


@dataclass
class Token:
    """An OAuth2 credential set.

    A token with a refresh token must also carry the client id and secret,
    otherwise it cannot be exchanged for a new access token.
    """

    access_token: str
    token_type: str = "Bearer"
    refresh_token: str | None = None
    expiry: datetime | None = None  # None = never expires
    client_id: str | None = None
    client_secret: str | None = None

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token and self.client_id and self.client_secret)

    def expired(self, now: datetime | None = None) -> bool:
        if self.expiry is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.expiry <= now + EXPIRY_DELTA

    def validate(self) -> list[str]:
        errors: list[str] = []
        if not self.access_token:
            errors.append("access_token is required")
        if self.refresh_token and not (self.client_id and self.client_secret):
            errors.append("client_id and client_secret are required with a refresh_token")
        return errors

    def with_expiry(self, expiry: datetime | None) -> Token:
        return replace(self, expiry=expiry)

    def to_dict(self) -> dict:
        data = {
            "access_token": self.access_token,
            "token_type": self.token_type,
        }
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        if self.expiry is not None:
            data["expiry"] = format_timestamp(self.expiry)
        if self.client_id:
            data["client_id"] = self.client_id
        if self.client_secret:
            data["client_secret"] = self.client_secret
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Token:
        return cls(
            access_token=data.get("access_token", ""),
            token_type=data.get("token_type") or "Bearer",
            refresh_token=data.get("refresh_token") or None,
            expiry=parse_timestamp(data.get("expiry")),
            client_id=data.get("client_id") or None,
            client_secret=data.get("client_secret") or None,
        )

    def __repr__(self) -> str:
        # Never leak secrets into logs or tracebacks
        return (
            f"Token(token_type={self.token_type!r}, expiry={self.expiry!r}, "
            f"can_refresh={self.can_refresh})"
        )


def static_token(access_token: str) -> Token:
    """Wrap a long-lived access token; it has no refresh capability."""
    return Token(access_token=access_token)


class TokenStore:
    """Loads and saves a Token to a JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Token:
        """Load the stored token.

        Raises:
            TokenStoreError: If there is no token file or it is invalid.
        """
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise TokenStoreError("not authenticated, try running monzo login") from e
        except (OSError, json.JSONDecodeError) as e:
            raise TokenStoreError(f"Failed to read token file {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise TokenStoreError(f"Token file {self.path} does not contain an object")

        token = Token.from_dict(data)
        errors = token.validate()
        if errors:
            raise TokenStoreError(f"Invalid token file {self.path}: {'; '.join(errors)}")

        logger.debug("Loaded token from %s (%r)", self.path, token)
        return token

    def save(self, token: Token) -> None:
        """Persist the token (owner read/write only)."""
        errors = token.validate()
        if errors:
            raise TokenStoreError(f"Refusing to save invalid token: {'; '.join(errors)}")

        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        try:
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                json.dump(token.to_dict(), f)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise TokenStoreError(f"Failed to write token file {self.path}: {e}") from e

        logger.debug("Saved token to %s", self.path)

    def delete(self) -> bool:
        """Remove the token file. Returns True if a file was removed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        logger.info("Removed token file %s", self.path)
        return True

"""
OAuth2 authentication.

Provides:
- Token and TokenStore: credential set persisted as JSON
- login_oauth2: interactive authorization-code flow with a loopback listener
- build_auth: request signing with transparent token refresh
"""

from .login import OAuthCallbackServer, login_oauth2
from .oauth2 import (
    MonzoAuthError,
    MonzoAuthTimeoutError,
    OAuth2Credentials,
    OAuth2Endpoint,
    refresh_access_token,
)
from .token_store import Token, TokenStore, TokenStoreError, static_token
from .transport import (
    BearerTokenAuth,
    RefreshingTokenAuth,
    StaticTokenAuth,
    build_auth,
)

__all__ = [
    "Token",
    "TokenStore",
    "TokenStoreError",
    "static_token",
    "login_oauth2",
    "OAuthCallbackServer",
    "OAuth2Credentials",
    "OAuth2Endpoint",
    "MonzoAuthError",
    "MonzoAuthTimeoutError",
    "refresh_access_token",
    "BearerTokenAuth",
    "StaticTokenAuth",
    "RefreshingTokenAuth",
    "build_auth",
]

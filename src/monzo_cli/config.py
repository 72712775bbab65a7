"""
Configuration management (SSOT).

This module defines ALL configuration for the Monzo CLI.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- The home directory holds every piece of persisted state (token, cache)
- The OAuth2 redirect URL always points at the local callback listener
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from . import __version__

TOKEN_FILE_NAME = "token.json"
CACHE_FILE_NAME = "transactions.json"
CONFIG_FILE_NAME = "config.yaml"


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


def default_home_dir() -> Path:
    """Default home directory for persisted state (~/.monzo)."""
    return Path.home() / ".monzo"


@dataclass
class ApiConfig:
    """Monzo API configuration."""

    base_url: str = "https://api.monzo.com"
    # Request timeout (seconds). A single attempt is made per request.
    timeout_seconds: int = 30
    user_agent: str = f"monzo-cli/{__version__}"


@dataclass
class OAuthConfig:
    """OAuth2 login configuration.

    The redirect URL registered with the Monzo developer portal must match
    ``redirect_url`` exactly, which is why host/port/path are configurable
    but default to the values the CLI has always used.
    """

    auth_url: str = "https://auth.monzo.com/"
    token_url: str = "https://api.monzo.com/oauth2/token"
    redirect_host: str = "127.0.0.1"
    redirect_port: int = 54092
    callback_path: str = "/callback"
    # How long to wait for the browser callback (seconds)
    login_timeout_seconds: int = 300

    @property
    def redirect_url(self) -> str:
        """URL the provider redirects back to after authorization."""
        return f"http://{self.redirect_host}:{self.redirect_port}{self.callback_path}"


@dataclass
class Config:
    """Application configuration (SSOT)."""

    api: ApiConfig = field(default_factory=ApiConfig)
    oauth: OAuthConfig = field(default_factory=OAuthConfig)
    home_dir: Path = field(default_factory=default_home_dir)

    @property
    def token_path(self) -> Path:
        return self.home_dir / TOKEN_FILE_NAME

    @property
    def cache_path(self) -> Path:
        return self.home_dir / CACHE_FILE_NAME

    def ensure_home_dir(self) -> Path:
        """Create the home directory (owner-only) if it does not exist."""
        self.home_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        return self.home_dir

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.api.base_url:
            errors.append("api.base_url is required")
        if self.api.timeout_seconds <= 0:
            errors.append("api.timeout_seconds must be positive")
        if not self.oauth.auth_url:
            errors.append("oauth.auth_url is required")
        if not self.oauth.token_url:
            errors.append("oauth.token_url is required")
        if not 0 < self.oauth.redirect_port < 65536:
            errors.append("oauth.redirect_port must be a valid TCP port")
        if not self.oauth.callback_path.startswith("/"):
            errors.append("oauth.callback_path must start with '/'")
        if self.oauth.login_timeout_seconds <= 0:
            errors.append("oauth.login_timeout_seconds must be positive")

        return errors


def load_config(config_path: Path | None = None, home_dir: Path | None = None) -> Config:
    """
    Load configuration from YAML file.

    If no config path is given, ``<home_dir>/config.yaml`` is used when it
    exists. Environment variables override config values:
    - MONZO_HOME_DIR
    - MONZO_BASE_URL
    - MONZO_TIMEOUT (request timeout in seconds)
    - MONZO_AUTH_URL
    - MONZO_TOKEN_URL
    - MONZO_REDIRECT_PORT

    An explicit ``home_dir`` argument (the --home-dir flag) wins over both.
    """
    env_home = os.environ.get("MONZO_HOME_DIR")
    resolved_home = home_dir or (Path(env_home).expanduser() if env_home else None)

    if config_path is None:
        config_path = (resolved_home or default_home_dir()) / CONFIG_FILE_NAME

    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    if not isinstance(data, dict):
        raise ConfigValidationError(f"{config_path}: expected a mapping at the top level")

    # API config
    api_data = data.get("api", {}) or {}
    try:
        timeout = int(os.environ.get("MONZO_TIMEOUT", api_data.get("timeout_seconds", 30)))
    except (TypeError, ValueError) as e:
        raise ConfigValidationError(f"Invalid timeout: {e}") from e

    api = ApiConfig(
        base_url=os.environ.get(
            "MONZO_BASE_URL", api_data.get("base_url", "https://api.monzo.com")
        ).rstrip("/"),
        timeout_seconds=timeout,
        user_agent=api_data.get("user_agent", f"monzo-cli/{__version__}"),
    )

    # OAuth config
    oauth_data = data.get("oauth", {}) or {}
    try:
        redirect_port = int(
            os.environ.get("MONZO_REDIRECT_PORT", oauth_data.get("redirect_port", 54092))
        )
    except (TypeError, ValueError) as e:
        raise ConfigValidationError(f"Invalid redirect port: {e}") from e

    try:
        login_timeout = int(oauth_data.get("login_timeout_seconds", 300))
    except (TypeError, ValueError) as e:
        raise ConfigValidationError(f"Invalid login timeout: {e}") from e

    oauth = OAuthConfig(
        auth_url=os.environ.get(
            "MONZO_AUTH_URL", oauth_data.get("auth_url", "https://auth.monzo.com/")
        ),
        token_url=os.environ.get(
            "MONZO_TOKEN_URL",
            oauth_data.get("token_url", "https://api.monzo.com/oauth2/token"),
        ),
        redirect_host=oauth_data.get("redirect_host", "127.0.0.1"),
        redirect_port=redirect_port,
        callback_path=oauth_data.get("callback_path", "/callback"),
        login_timeout_seconds=login_timeout,
    )

    if resolved_home is None:
        resolved_home = Path(data["home_dir"]).expanduser() if data.get("home_dir") else None

    config = Config(
        api=api,
        oauth=oauth,
        home_dir=resolved_home or default_home_dir(),
    )

    errors = config.validate()
    if errors:
        raise ConfigValidationError("; ".join(errors))

    return config


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Monzo CLI configuration
#
# Every value can be overridden with an environment variable
# (MONZO_BASE_URL, MONZO_TIMEOUT, MONZO_AUTH_URL, MONZO_TOKEN_URL,
# MONZO_REDIRECT_PORT, MONZO_HOME_DIR).

api:
  base_url: "https://api.monzo.com"
  timeout_seconds: 30                      # Single attempt, no retries

oauth:
  auth_url: "https://auth.monzo.com/"
  token_url: "https://api.monzo.com/oauth2/token"
  redirect_host: "127.0.0.1"               # Must match the redirect URL registered
  redirect_port: 54092                     # with your Monzo OAuth client
  callback_path: "/callback"
  login_timeout_seconds: 300               # Give up waiting for the browser after 5 minutes

# Where token.json and transactions.json live
# home_dir: "~/.monzo"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)

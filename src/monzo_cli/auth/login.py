"""
Interactive OAuth2 login.

Flow:
1. Generate an unguessable state value
2. Start a loopback HTTP listener for the redirect
3. Open the authorization URL in the browser (or print it)
4. Wait for a callback carrying ``code`` and the matching ``state``,
   exchange the code for tokens, and shut the listener down

Callbacks with a wrong state are rejected with 400 and the flow keeps
waiting; only a successful exchange, a failed exchange, or the timeout ends
it.
"""

from __future__ import annotations

import logging
import queue
import threading
import uuid
import webbrowser
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, TextIO
from urllib.parse import parse_qs, urlparse

import requests

from ..config import Config
from .oauth2 import (
    MonzoAuthError,
    MonzoAuthTimeoutError,
    OAuth2Credentials,
    OAuth2Endpoint,
)
from .token_store import Token

logger = logging.getLogger(__name__)


class _CallbackHTTPServer(HTTPServer):
    """HTTPServer carrying the state the callback handler needs."""

    def __init__(
        self,
        address: tuple[str, int],
        credentials: OAuth2Credentials,
        expected_state: str,
        callback_path: str,
        results: queue.Queue,
        session: requests.Session | None,
        timeout: int,
    ):
        self.credentials = credentials
        self.expected_state = expected_state
        self.callback_path = callback_path
        self.results = results
        self.session = session
        self.token_timeout = timeout
        super().__init__(address, _CallbackHandler)


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackHTTPServer  # type: ignore[assignment]

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        if parsed.path != self.server.callback_path:
            self._reply(404, "not found")
            return

        params = parse_qs(parsed.query)
        code = params.get("code", [""])[0]
        state = params.get("state", [""])[0]

        if not code or not state:
            self._reply(400, "bad request - query parameters should contain code and state")
            return

        if state != self.server.expected_state:
            logger.warning("Rejected OAuth2 callback with mismatched state")
            self._reply(400, "bad request - state mismatch")
            return

        try:
            token = self.server.credentials.exchange(
                code, session=self.server.session, timeout=self.server.token_timeout
            )
        except MonzoAuthError as e:
            logger.error("Authorization code exchange failed: %s", e)
            self._reply(500, "authentication failure")
            self.server.results.put(None)
            return
        except Exception:
            # the waiting caller must still be released
            logger.exception("Unexpected error exchanging authorization code")
            self._reply(500, "authentication failure")
            self.server.results.put(None)
            return

        self._reply(200, "authentication successful")
        self.server.results.put(token)

    def _reply(self, status: int, message: str) -> None:
        body = message.encode()
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, fmt: str, *args: Any) -> None:
        logger.debug("callback listener: " + fmt, *args)


class OAuthCallbackServer:
    """Loopback listener that receives exactly one successful callback.

    Use as a context manager: the listener thread is started on enter and
    always shut down on exit.
    """

    def __init__(
        self,
        credentials: OAuth2Credentials,
        state: str,
        host: str = "127.0.0.1",
        port: int = 54092,
        callback_path: str = "/callback",
        session: requests.Session | None = None,
        timeout: int = 30,
    ):
        self.credentials = credentials
        self.state = state
        self.host = host
        self.port = port
        self.callback_path = callback_path
        self.session = session
        self.timeout = timeout
        self._results: queue.Queue[Token | None] = queue.Queue()
        self._server: _CallbackHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def address(self) -> tuple[str, int]:
        """Bound (host, port); the port is real even when 0 was requested."""
        if self._server is None:
            return self.host, self.port
        host, port = self._server.server_address[:2]
        return str(host), int(port)

    def start(self) -> None:
        try:
            self._server = _CallbackHTTPServer(
                (self.host, self.port),
                credentials=self.credentials,
                expected_state=self.state,
                callback_path=self.callback_path,
                results=self._results,
                session=self.session,
                timeout=self.timeout,
            )
        except OSError as e:
            raise MonzoAuthError(
                f"Failed to start callback listener on {self.host}:{self.port}: {e}"
            ) from e

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="oauth2-callback",
            daemon=True,
        )
        self._thread.start()
        logger.debug("Callback listener started on %s:%s", *self.address)

    def wait(self, timeout: float) -> Token:
        """Block until a callback resolves the flow or ``timeout`` elapses.

        Raises:
            MonzoAuthTimeoutError: No successful callback in time.
            MonzoAuthError: The code exchange failed.
        """
        try:
            token = self._results.get(timeout=timeout)
        except queue.Empty as e:
            raise MonzoAuthTimeoutError(
                f"timed out after {timeout:g}s waiting for authorization"
            ) from e

        if token is None:
            raise MonzoAuthError("authentication failure")
        return token

    def shutdown(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None
        logger.debug("Callback listener stopped")

    def __enter__(self) -> OAuthCallbackServer:
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()


def login_oauth2(
    client_id: str,
    client_secret: str,
    config: Config,
    open_browser: Callable[[str], bool] = webbrowser.open,
    out: TextIO | None = None,
) -> Token:
    """Run the interactive authorization-code flow and return the token.

    The returned token carries the client id and secret so it can be
    refreshed later.
    """
    oauth = config.oauth
    state = str(uuid.uuid4())
    credentials = OAuth2Credentials(
        client_id=client_id,
        client_secret=client_secret,
        redirect_url=oauth.redirect_url,
        endpoint=OAuth2Endpoint.from_config(oauth),
    )

    with OAuthCallbackServer(
        credentials,
        state,
        host=oauth.redirect_host,
        port=oauth.redirect_port,
        callback_path=oauth.callback_path,
        timeout=config.api.timeout_seconds,
    ) as server:
        auth_url = credentials.auth_code_url(state)

        try:
            opened = open_browser(auth_url)
        except webbrowser.Error as e:
            logger.debug("Browser launch failed: %s", e)
            opened = False

        if not opened:
            print(
                "Failed to launch browser. Please copy and paste auth URL into browser:\n\n"
                f"\t{auth_url}\n",
                file=out,
            )

        return server.wait(timeout=oauth.login_timeout_seconds)

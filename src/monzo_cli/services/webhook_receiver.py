"""Local receiver for Monzo webhook deliveries.

Handy for checking what a registered webhook sends: every POST is decoded
into a WebhookPayload and handed to a callback. Monzo retries a delivery
that does not get a 2xx, so the receiver answers 200 even when the body
cannot be read or decoded.
"""

from __future__ import annotations

import json
import logging
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable

from monzo_cli.monzo_client.models import WebhookPayload

logger = logging.getLogger(__name__)

PayloadHandler = Callable[[WebhookPayload], None]


def parse_webhook_payload(body: bytes | str) -> WebhookPayload:
    """Decode a webhook body.

    Raises:
        ValueError: If the body is not a JSON object.
    """
    data = json.loads(body)
    if not isinstance(data, dict):
        raise ValueError("webhook payload must be a JSON object")
    return WebhookPayload.from_api_response(data)


class _WebhookHTTPServer(HTTPServer):
    def __init__(self, address: tuple[str, int], handler: PayloadHandler):
        self.payload_handler = handler
        super().__init__(address, _WebhookRequestHandler)


class _WebhookRequestHandler(BaseHTTPRequestHandler):
    server: _WebhookHTTPServer  # type: ignore[assignment]

    def do_POST(self) -> None:  # noqa: N802
        logger.info("Received request: %s %s", self.command, self.path)
        try:
            length = int(self.headers.get("Content-Length") or 0)
            if length < 0:
                raise ValueError(f"negative Content-Length {length}")
            payload = parse_webhook_payload(self.rfile.read(length))
        except ValueError as e:
            logger.error("Could not decode webhook payload: %s", e)
        else:
            self.server.payload_handler(payload)
        finally:
            self.send_response(200)
            self.end_headers()

    def log_message(self, fmt: str, *args: Any) -> None:
        logger.debug("webhook receiver: " + fmt, *args)


def create_webhook_server(host: str, port: int, handler: PayloadHandler) -> HTTPServer:
    """Bind a receiver; call ``serve_forever()`` on the result to run it."""
    return _WebhookHTTPServer((host, port), handler)

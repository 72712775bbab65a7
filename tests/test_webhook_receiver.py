"""Tests for the local webhook receiver."""

import http.client
import json
import threading
from urllib.parse import urlparse

import pytest
import requests
from conftest import make_transaction

from monzo_cli.services.webhook_receiver import create_webhook_server, parse_webhook_payload


def test_parse_payload():
    body = json.dumps(
        {"type": "transaction.created", "data": make_transaction("tx_1", "2024-01-01T00:00:00Z", merchant="merch_1")}
    )

    payload = parse_webhook_payload(body)

    assert payload.type == "transaction.created"
    assert payload.data.id == "tx_1"
    assert payload.data.merchant.id == "merch_1"


@pytest.mark.parametrize("body", ["[]", "not json", b"\xff"])
def test_parse_payload_rejects_non_objects(body):
    with pytest.raises(ValueError):
        parse_webhook_payload(body)


class TestWebhookServer:
    """Test deliveries over HTTP."""

    @pytest.fixture
    def server(self):
        received = []
        server = create_webhook_server("127.0.0.1", 0, received.append)
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        host, port = server.server_address[:2]

        yield f"http://{host}:{port}", received

        server.shutdown()
        server.server_close()
        thread.join(timeout=5)

    def test_delivery_is_handed_to_callback(self, server):
        url, received = server

        response = requests.post(
            f"{url}/webhook",
            json={"type": "transaction.created", "data": make_transaction("tx_1", "2024-01-01T00:00:00Z")},
            timeout=5,
        )

        assert response.status_code == 200
        assert [p.data.id for p in received] == ["tx_1"]

    def test_bad_body_still_acknowledged(self, server):
        url, received = server

        response = requests.post(f"{url}/webhook", data="garbage", timeout=5)

        assert response.status_code == 200
        assert received == []

    @pytest.mark.parametrize("content_length", ["abc", "-5"])
    def test_malformed_content_length_still_acknowledged(self, server, content_length):
        url, received = server
        parsed = urlparse(url)

        conn = http.client.HTTPConnection(parsed.hostname, parsed.port, timeout=5)
        try:
            conn.putrequest("POST", "/webhook")
            conn.putheader("Content-Length", content_length)
            conn.endheaders()
            status = conn.getresponse().status
        finally:
            conn.close()

        assert status == 200
        assert received == []

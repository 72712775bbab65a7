"""Test fixtures and utilities."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from monzo_cli.auth import StaticTokenAuth, Token
from monzo_cli.monzo_client import MonzoClient

BASE_URL = "https://api.monzo.test"
TOKEN_URL = "https://api.monzo.test/oauth2/token"
ACCOUNT_ID = "acc_00009237aqC8c5umZmrRdh"


def make_transaction(
    tx_id: str,
    created: str,
    account_id: str = ACCOUNT_ID,
    amount: int = -510,
    merchant=None,
    **extra,
) -> dict:
    """Build a raw API transaction object."""
    data = {
        "id": tx_id,
        "account_id": account_id,
        "amount": amount,
        "currency": "GBP",
        "created": created,
        "description": "THE DE BEAUVOIR DELI C LONDON        GBR",
        "merchant": merchant,
        "metadata": {},
        "category": "eating_out",
        "notes": "",
        "settled": "",
        "updated": created,
        "is_load": False,
    }
    data.update(extra)
    return data


# Sample merchant as returned with expand[]=merchant
SAMPLE_MERCHANT = {
    "id": "merch_00008zIcpbAKe8shBxXUtl",
    "group_id": "grp_00008zIcpbBOaAr7TTP3sv",
    "name": "The De Beauvoir Deli Co.",
    "logo": "https://pbs.twimg.com/profile_images/527043602623389696/68_SgUWJ.jpeg",
    "emoji": "🍞",
    "category": "eating_out",
    "created": "2015-08-22T12:20:18Z",
    "address": {
        "address": "98 Southgate Road",
        "city": "London",
        "country": "GB",
        "latitude": 51.54151,
        "longitude": -0.08482400000002599,
        "postcode": "N1 3JD",
        "region": "Greater London",
    },
}


@pytest.fixture
def account_id() -> str:
    return ACCOUNT_ID


@pytest.fixture
def sample_transactions() -> list[dict]:
    """Three collapsed transactions in creation order."""
    return [
        make_transaction("tx_0001", "2024-01-01T10:00:00Z", merchant="merch_0001"),
        make_transaction("tx_0002", "2024-01-02T10:00:00.123Z", merchant=None, amount=10000),
        make_transaction("tx_0003", "2024-01-03T10:00:00Z", merchant="merch_0003"),
    ]


@pytest.fixture
def expanded_transaction() -> dict:
    """A transaction fetched with merchant expansion."""
    return make_transaction("tx_00008zIcpb1TB4yeIFXMzx", "2015-08-22T12:20:18Z", merchant=SAMPLE_MERCHANT)


@pytest.fixture
def static_token() -> Token:
    return Token(access_token="static-access-token")


@pytest.fixture
def oauth_token() -> Token:
    """A refreshable token that is still valid for an hour."""
    return Token(
        access_token="old-access-token",
        refresh_token="refresh-token-1",
        expiry=datetime.now(timezone.utc) + timedelta(hours=1),
        client_id="oauth2client_123",
        client_secret="mnzconf.secret",
    )


@pytest.fixture
def client(static_token) -> MonzoClient:
    """Client signing requests with a static token."""
    return MonzoClient(StaticTokenAuth(static_token), base_url=BASE_URL)


@pytest.fixture
def home_dir(tmp_path) -> Path:
    """Temporary CLI home directory."""
    path = tmp_path / "monzo-home"
    path.mkdir()
    return path

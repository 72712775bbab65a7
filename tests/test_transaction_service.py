"""
Tests for the cached transaction retrieval service.

The upstream API is mocked with responses; call counts show whether a
query was answered from the cache or from Monzo.
"""

import pytest
import responses
from conftest import ACCOUNT_ID, BASE_URL, make_transaction

from monzo_cli.monzo_client import MonzoAPIError, Pagination
from monzo_cli.services import TransactionService
from monzo_cli.state_store import TransactionCache


@pytest.fixture
def cache(tmp_path) -> TransactionCache:
    return TransactionCache(tmp_path / "transactions.json")


@pytest.fixture
def service(client, cache) -> TransactionService:
    return TransactionService(client, cache)


def _list_calls() -> int:
    return sum(1 for c in responses.calls if c.request.url.startswith(f"{BASE_URL}/transactions?"))


class TestListTransactions:
    """Test list mode."""

    @responses.activate
    def test_first_fetch_then_cached(self, service, cache, sample_transactions):
        """Test a second list is answered from the cache."""
        responses.add(
            responses.GET,
            f"{BASE_URL}/transactions",
            json={"transactions": sample_transactions},
        )

        first = service.list_transactions(ACCOUNT_ID)
        second = service.list_transactions(ACCOUNT_ID)

        assert [t.id for t in first] == ["tx_0001", "tx_0002", "tx_0003"]
        assert second == first
        assert _list_calls() == 1
        assert cache.path.exists()

    @responses.activate
    def test_cache_survives_new_service(self, client, cache, sample_transactions):
        responses.add(
            responses.GET,
            f"{BASE_URL}/transactions",
            json={"transactions": sample_transactions},
        )

        TransactionService(client, cache).list_transactions(ACCOUNT_ID)
        reloaded = TransactionService(client, TransactionCache(cache.path))

        assert len(reloaded.list_transactions(ACCOUNT_ID)) == 3
        assert _list_calls() == 1

    @responses.activate
    def test_no_cache_always_fetches_and_merges(self, service, sample_transactions):
        """Test bypassing the cache still records what was fetched."""
        responses.add(
            responses.GET,
            f"{BASE_URL}/transactions",
            json={"transactions": sample_transactions[:2]},
        )
        responses.add(
            responses.GET,
            f"{BASE_URL}/transactions",
            json={"transactions": sample_transactions[1:]},
        )

        service.list_transactions(ACCOUNT_ID, no_cache=True)
        result = service.list_transactions(ACCOUNT_ID, no_cache=True)

        assert _list_calls() == 2
        assert [t.id for t in result] == ["tx_0001", "tx_0002", "tx_0003"]

    @responses.activate
    def test_pagination_forwarded_and_applied(self, service):
        responses.add(
            responses.GET,
            f"{BASE_URL}/transactions",
            json={
                "transactions": [
                    make_transaction("tx_0001", "2024-01-01T10:00:00Z"),
                    make_transaction("tx_0002", "2024-01-02T10:00:00Z"),
                ]
            },
        )

        result = service.list_transactions(
            ACCOUNT_ID, pagination=Pagination.build(limit=1, before="2024-02-01T00:00:00Z")
        )

        assert [t.id for t in result] == ["tx_0001"]
        assert "limit=1" in responses.calls[0].request.url

    @responses.activate
    def test_other_account_not_served_from_cache(self, service, sample_transactions):
        responses.add(
            responses.GET,
            f"{BASE_URL}/transactions",
            json={"transactions": sample_transactions},
        )
        responses.add(responses.GET, f"{BASE_URL}/transactions", json={"transactions": []})

        service.list_transactions(ACCOUNT_ID)
        assert service.list_transactions("acc_other") == []
        assert _list_calls() == 2

    def test_account_required(self, service):
        with pytest.raises(ValueError, match="account-id"):
            service.list_transactions("")

    @responses.activate
    def test_api_error_leaves_cache_untouched(self, service, cache):
        responses.add(
            responses.GET,
            f"{BASE_URL}/transactions",
            json={"code": "bad_request", "message": "nope"},
            status=400,
        )

        with pytest.raises(MonzoAPIError):
            service.list_transactions(ACCOUNT_ID)

        assert cache.is_empty()
        assert not cache.path.exists()


class TestGetTransaction:
    """Test get-by-id mode."""

    @responses.activate
    def test_empty_cache_fetches_and_stores_under_own_account(self, service, cache, expanded_transaction):
        responses.add(
            responses.GET,
            f"{BASE_URL}/transactions/tx_00008zIcpb1TB4yeIFXMzx",
            json={"transaction": expanded_transaction},
        )

        tx = service.get_transaction("tx_00008zIcpb1TB4yeIFXMzx", account_id="acc_somewhere_else")

        assert tx.id == "tx_00008zIcpb1TB4yeIFXMzx"
        assert cache.find(ACCOUNT_ID, tx.id) == tx
        assert cache.is_empty("acc_somewhere_else")

    @responses.activate
    def test_get_twice_from_empty_cache(self, service, expanded_transaction):
        """Test the second get is answered from what the first one stored."""
        responses.add(
            responses.GET,
            f"{BASE_URL}/transactions/tx_00008zIcpb1TB4yeIFXMzx",
            json={"transaction": expanded_transaction},
        )

        first = service.get_transaction("tx_00008zIcpb1TB4yeIFXMzx")
        second = service.get_transaction("tx_00008zIcpb1TB4yeIFXMzx")

        assert first is not None
        assert second == first
        assert len(responses.calls) == 1

    @responses.activate
    def test_cached_hit_makes_no_call(self, service, sample_transactions):
        responses.add(
            responses.GET,
            f"{BASE_URL}/transactions",
            json={"transactions": sample_transactions},
        )
        service.list_transactions(ACCOUNT_ID)

        tx = service.get_transaction("tx_0002")

        assert tx.id == "tx_0002"
        assert len(responses.calls) == 1

    @responses.activate
    def test_cache_miss_with_non_empty_cache_is_none(self, service, sample_transactions):
        responses.add(
            responses.GET,
            f"{BASE_URL}/transactions",
            json={"transactions": sample_transactions},
        )
        service.list_transactions(ACCOUNT_ID)

        assert service.get_transaction("tx_unknown") is None
        assert len(responses.calls) == 1

    @responses.activate
    def test_no_cache_refetches(self, service, sample_transactions):
        updated = dict(sample_transactions[0], notes="updated")
        responses.add(
            responses.GET,
            f"{BASE_URL}/transactions",
            json={"transactions": sample_transactions},
        )
        responses.add(
            responses.GET,
            f"{BASE_URL}/transactions/tx_0001",
            json={"transaction": updated},
        )
        service.list_transactions(ACCOUNT_ID)

        tx = service.get_transaction("tx_0001", no_cache=True)

        assert tx.notes == "updated"
        assert service.get_transaction("tx_0001").notes == "updated"
        assert len(service.list_transactions(ACCOUNT_ID)) == 3


class TestAnnotate:
    """Test annotation and cache update."""

    @responses.activate
    def test_requested_metadata_is_cached(self, service, cache):
        # API echoes the transaction without the new metadata
        responses.add(
            responses.PATCH,
            f"{BASE_URL}/transactions/tx_0001",
            json={"transaction": make_transaction("tx_0001", "2024-01-01T10:00:00Z", metadata={"old": "x"})},
        )

        tx = service.annotate("tx_0001", {"note": "coffee", "old": ""})

        assert tx.metadata == {"note": "coffee"}
        assert cache.find(ACCOUNT_ID, "tx_0001").metadata == {"note": "coffee"}

    def test_empty_metadata_rejected(self, service):
        with pytest.raises(ValueError):
            service.annotate("tx_0001", {})

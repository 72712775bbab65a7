"""
Tests for the on-disk transaction cache.
"""

import json
import os
import stat
from datetime import datetime, timezone

import pytest
from conftest import ACCOUNT_ID, make_transaction

from monzo_cli.monzo_client import Pagination
from monzo_cli.monzo_client.models import transaction_from_api
from monzo_cli.state_store import CacheError, CacheNotLoadedError, TransactionCache

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def tx(tx_id: str, created: str, **kwargs):
    return transaction_from_api(make_transaction(tx_id, created, **kwargs))


@pytest.fixture
def cache(tmp_path) -> TransactionCache:
    cache = TransactionCache(tmp_path / "transactions.json")
    cache.load()
    return cache


@pytest.fixture
def filled_cache(cache) -> TransactionCache:
    cache.upsert_multi(
        ACCOUNT_ID,
        [
            tx("tx_0001", "2024-01-01T10:00:00Z"),
            tx("tx_0002", "2024-01-02T10:00:00Z"),
            tx("tx_0003", "2024-01-03T10:00:00Z"),
            tx("tx_0004", "2024-01-04T10:00:00Z"),
        ],
    )
    return cache


class TestLoadSave:
    """Test reading and writing the cache file."""

    def test_missing_file_is_empty(self, tmp_path):
        cache = TransactionCache(tmp_path / "nope.json")

        assert cache.load() == {}
        assert cache.is_empty()

    def test_missing_file_required_raises(self, tmp_path):
        with pytest.raises(CacheError):
            TransactionCache(tmp_path / "nope.json").load(required=True)

    def test_corrupt_file_is_empty(self, tmp_path):
        path = tmp_path / "transactions.json"
        path.write_text("{not json")

        assert TransactionCache(path).load() == {}

    @pytest.mark.parametrize(
        "content",
        [
            {"acc": {"transactions": [{"id": "tx_1", "amount": [1]}]}},
            {"acc": {"transactions": ["tx_1"]}},
            {"acc": ["tx_1"]},
        ],
    )
    def test_wrong_typed_entries_are_empty(self, tmp_path, content):
        path = tmp_path / "transactions.json"
        path.write_text(json.dumps(content))

        assert TransactionCache(path).load() == {}
        with pytest.raises(CacheError):
            TransactionCache(path).load(required=True)

    def test_upsert_before_load_raises(self, tmp_path):
        with pytest.raises(CacheNotLoadedError):
            TransactionCache(tmp_path / "t.json").upsert(ACCOUNT_ID, tx("tx_1", "2024-01-01T00:00:00Z"))

    def test_file_format(self, cache):
        cache.upsert(ACCOUNT_ID, tx("tx_0001", "2024-01-01T10:00:00Z", merchant="merch_1"))

        data = json.loads(cache.path.read_text())
        assert list(data) == [ACCOUNT_ID]
        stored = data[ACCOUNT_ID]["transactions"][0]
        assert stored["id"] == "tx_0001"
        assert stored["merchant"]["id"] == "merch_1"

    def test_file_is_owner_only(self, cache):
        cache.upsert(ACCOUNT_ID, tx("tx_0001", "2024-01-01T10:00:00Z"))
        mode = stat.S_IMODE(os.stat(cache.path).st_mode)
        assert mode == 0o600

    def test_persisted_across_instances(self, filled_cache):
        reloaded = TransactionCache(filled_cache.path)
        reloaded.load()

        assert [t.id for t in reloaded.find_multi(ACCOUNT_ID, None)] == [
            "tx_0001",
            "tx_0002",
            "tx_0003",
            "tx_0004",
        ]

    def test_clear_removes_file(self, filled_cache):
        assert filled_cache.clear() is True
        assert not filled_cache.path.exists()
        assert filled_cache.is_empty()


class TestUpsert:
    """Test insert-or-replace by transaction id."""

    def test_same_id_replaced_in_place(self, filled_cache):
        filled_cache.upsert(ACCOUNT_ID, tx("tx_0002", "2024-01-02T10:00:00Z", amount=-999))

        ids = [t.id for t in filled_cache.find_multi(ACCOUNT_ID, None)]
        assert ids == ["tx_0001", "tx_0002", "tx_0003", "tx_0004"]
        assert filled_cache.find(ACCOUNT_ID, "tx_0002").amount == -999

    def test_upsert_is_idempotent(self, cache):
        transaction = tx("tx_0001", "2024-01-01T10:00:00Z")
        cache.upsert(ACCOUNT_ID, transaction)
        cache.upsert(ACCOUNT_ID, transaction)

        assert len(cache.find_multi(ACCOUNT_ID, None)) == 1

    def test_merge_never_removes(self, filled_cache):
        filled_cache.upsert_multi(ACCOUNT_ID, [tx("tx_0005", "2024-01-05T10:00:00Z")])

        assert len(filled_cache.find_multi(ACCOUNT_ID, None)) == 5

    def test_merging_same_list_twice_matches_once(self, filled_cache):
        batch = [
            tx("tx_0003", "2024-01-03T10:00:00Z", amount=-42),
            tx("tx_0005", "2024-01-05T10:00:00Z"),
            tx("tx_0006", "2024-01-06T10:00:00Z"),
        ]
        filled_cache.upsert_multi(ACCOUNT_ID, batch)
        once = filled_cache.find_multi(ACCOUNT_ID, None)

        filled_cache.upsert_multi(ACCOUNT_ID, batch)
        twice = filled_cache.find_multi(ACCOUNT_ID, None)

        assert twice == once
        assert [t.id for t in twice] == ["tx_0001", "tx_0002", "tx_0003", "tx_0004", "tx_0005", "tx_0006"]
        assert filled_cache.find(ACCOUNT_ID, "tx_0003").amount == -42

    def test_accounts_are_separate(self, filled_cache):
        filled_cache.upsert("acc_other", tx("tx_0001", "2024-01-01T10:00:00Z", account_id="acc_other"))

        assert len(filled_cache.find_multi("acc_other", None)) == 1
        assert filled_cache.is_empty("acc_missing")
        assert not filled_cache.is_empty("acc_other")


class TestFind:
    """Test lookups and range-filtered reads."""

    def test_find_in_any_account(self, filled_cache):
        assert filled_cache.find(None, "tx_0003").id == "tx_0003"
        assert filled_cache.find("acc_other", "tx_0003") is None
        assert filled_cache.find(None, "tx_missing") is None

    def test_window_bounds_are_strict(self, filled_cache):
        pagination = Pagination.build(since="2024-01-01T10:00:00Z", before="2024-01-04T10:00:00Z")

        result = filled_cache.find_multi(ACCOUNT_ID, pagination, now=NOW)
        assert [t.id for t in result] == ["tx_0002", "tx_0003"]

    def test_limit_truncates_in_storage_order(self, filled_cache):
        result = filled_cache.find_multi(ACCOUNT_ID, Pagination.build(limit=2), now=NOW)
        assert [t.id for t in result] == ["tx_0001", "tx_0002"]

    def test_before_defaults_to_now(self, filled_cache):
        result = filled_cache.find_multi(
            ACCOUNT_ID, Pagination.build(limit=10), now=datetime(2024, 1, 3, tzinfo=timezone.utc)
        )
        assert [t.id for t in result] == ["tx_0001", "tx_0002"]

    def test_since_transaction_id(self, filled_cache):
        result = filled_cache.find_multi(ACCOUNT_ID, Pagination.build(since="tx_0002"), now=NOW)
        assert [t.id for t in result] == ["tx_0003", "tx_0004"]

    def test_unparseable_created_is_skipped(self, filled_cache):
        filled_cache.upsert(ACCOUNT_ID, tx("tx_bad", "garbage"))

        assert filled_cache.find(ACCOUNT_ID, "tx_bad") is not None
        result = filled_cache.find_multi(ACCOUNT_ID, Pagination.build(limit=10), now=NOW)
        assert "tx_bad" not in [t.id for t in result]

    def test_unknown_account_is_empty(self, filled_cache):
        assert filled_cache.find_multi("acc_missing", Pagination.build(limit=1), now=NOW) == []

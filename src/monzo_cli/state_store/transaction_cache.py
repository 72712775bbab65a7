"""
On-disk transaction cache.

Maps account id → list of transactions, kept in arrival order. The whole
file is loaded at the start of a command and rewritten after every
mutation. There is no file locking: two CLI invocations writing at the
same time race, and the last writer wins.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from ..monzo_client.client import MonzoError
from ..monzo_client.models import MIN_TIME, Pagination, Transaction, transaction_from_api

logger = logging.getLogger(__name__)


class CacheError(MonzoError):
    """Cache file could not be read or written."""

    pass


class CacheNotLoadedError(CacheError):
    """A mutation was attempted before ``load()``."""

    pass


class TransactionCache:
    """Transactions cached per account, persisted as JSON.

    File format mirrors the API's list wrapper::

        {"acc_123": {"transactions": [{...}, {...}]}}
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._accounts: dict[str, list[Transaction]] | None = None

    @property
    def loaded(self) -> bool:
        return self._accounts is not None

    def load(self, required: bool = False) -> dict[str, list[Transaction]]:
        """Read the cache file.

        A missing, unreadable or malformed file gives an empty cache,
        unless ``required`` is set, in which case CacheError is raised.
        """
        try:
            with open(self.path) as f:
                raw = json.load(f)
            if not isinstance(raw, dict):
                raise ValueError("top level is not an object")
            accounts = {
                account_id: [
                    transaction_from_api(tx) for tx in (entry or {}).get("transactions") or []
                ]
                for account_id, entry in raw.items()
            }
        except FileNotFoundError as e:
            if required:
                raise CacheError(f"No transaction cache at {self.path}") from e
            logger.debug("No transaction cache at %s, starting empty", self.path)
            accounts = {}
        except (OSError, ValueError, TypeError, KeyError, AttributeError) as e:
            if required:
                raise CacheError(f"Failed to read transaction cache {self.path}: {e}") from e
            logger.warning("Ignoring unreadable transaction cache %s: %s", self.path, e)
            accounts = {}

        self._accounts = accounts
        return accounts

    def _require_loaded(self) -> dict[str, list[Transaction]]:
        if self._accounts is None:
            raise CacheNotLoadedError("transaction cache must be loaded before use")
        return self._accounts

    def save(self) -> None:
        """Write the cache file (atomically, owner read/write only)."""
        accounts = self._require_loaded()
        payload = {
            account_id: {"transactions": [tx.to_dict() for tx in txs]}
            for account_id, txs in accounts.items()
        }

        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        try:
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                json.dump(payload, f)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            raise CacheError(f"Failed to write transaction cache {self.path}: {e}") from e

    def clear(self) -> bool:
        """Drop all cached data and remove the file."""
        self._accounts = {}
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        logger.info("Removed transaction cache %s", self.path)
        return True

    def is_empty(self, account_id: str | None = None) -> bool:
        """True when nothing is cached (for ``account_id``, if given)."""
        accounts = self._accounts or {}
        if account_id:
            return not accounts.get(account_id)
        return not any(accounts.values())

    def upsert(self, account_id: str, transaction: Transaction) -> None:
        """Insert or replace (by id, in place) and persist."""
        accounts = self._require_loaded()
        transactions = accounts.setdefault(account_id, [])

        for i, existing in enumerate(transactions):
            if existing.id == transaction.id:
                transactions[i] = transaction
                break
        else:
            transactions.append(transaction)

        self.save()

    def upsert_multi(self, account_id: str, transactions: list[Transaction]) -> None:
        """Upsert each transaction; every element is persisted on its own."""
        for transaction in transactions:
            self.upsert(account_id, transaction)

    def find(self, account_id: str | None, transaction_id: str) -> Transaction | None:
        """Find a transaction by id, in one account or (no account) in all."""
        accounts = self._accounts or {}

        if account_id:
            candidates = [accounts.get(account_id, [])]
        else:
            candidates = list(accounts.values())

        for transactions in candidates:
            for transaction in transactions:
                if transaction.id == transaction_id:
                    return transaction
        return None

    def find_multi(
        self,
        account_id: str,
        pagination: Pagination | None,
        now: datetime | None = None,
    ) -> list[Transaction]:
        """Transactions for an account inside the pagination window.

        Without pagination the whole list is returned unfiltered. With it,
        a transaction is kept when ``since < created < before`` (before
        defaults to now), in storage order, truncated at a nonzero limit.
        """
        transactions = list((self._accounts or {}).get(account_id, []))
        if pagination is None:
            return transactions

        since = pagination.since_time()
        if pagination.since_is_id:
            # The API lets `since` be an object id; resolve it from the cache
            anchor = self.find(account_id, pagination.since)
            since = (anchor.created_time if anchor else None) or MIN_TIME
        before = pagination.before_time(now or datetime.now(timezone.utc))

        result: list[Transaction] = []
        for transaction in transactions:
            created = transaction.created_time
            if created is None or not since < created < before:
                continue
            result.append(transaction)
            if pagination.limit and len(result) >= pagination.limit:
                break

        return result

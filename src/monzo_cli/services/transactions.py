"""Transaction retrieval service.

Decides per call whether to answer from the local cache, from the Monzo
API, or both, and keeps the cache up to date with whatever the API
returns.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from monzo_cli.monzo_client import MonzoClient, Pagination, Transaction
    from monzo_cli.state_store import TransactionCache

logger = logging.getLogger(__name__)


class TransactionService:
    """Serves transaction queries from the cache, falling back to the API.

    | request    | cache state               | behaviour                          |
    |------------|---------------------------|------------------------------------|
    | list       | account cached, no bypass | filter cached list                 |
    | list       | not cached or bypass      | fetch, merge into cache, filter    |
    | get by id  | cache empty or bypass     | fetch, upsert under its account    |
    | get by id  | cache non-empty           | scan cache, None if not found      |
    """

    def __init__(self, client: MonzoClient, cache: TransactionCache) -> None:
        """Initialize the service.

        Args:
            client: Authenticated Monzo API client.
            cache: Transaction cache; loaded here if the caller has not.
        """
        self.client = client
        self.cache = cache
        if not self.cache.loaded:
            self.cache.load()

    def list_transactions(
        self,
        account_id: str,
        pagination: Pagination | None = None,
        expand_merchants: bool = False,
        no_cache: bool = False,
    ) -> list[Transaction]:
        """List transactions for an account inside the pagination window."""
        if not account_id or not account_id.strip():
            raise ValueError("--account-id is required to list transactions")

        if no_cache or self.cache.is_empty(account_id):
            logger.info(
                "Fetching transactions for %s from API (%s)",
                account_id,
                "cache bypassed" if no_cache else "not cached",
            )
            fetched = self.client.list_transactions(
                account_id, expand_merchant=expand_merchants, pagination=pagination
            )
            self.cache.upsert_multi(account_id, fetched)
        else:
            logger.info("Serving transactions for %s from cache", account_id)

        return self.cache.find_multi(account_id, pagination)

    def get_transaction(
        self,
        transaction_id: str,
        account_id: str | None = None,
        expand_merchants: bool = False,
        no_cache: bool = False,
    ) -> Transaction | None:
        """Get one transaction by id.

        A fetched transaction is cached under its own account id, which may
        differ from ``account_id``. From the cache, ``account_id`` narrows
        the search; without it every account is scanned.
        """
        if no_cache or self.cache.is_empty():
            logger.info("Fetching transaction %s from API", transaction_id)
            transaction = self.client.get_transaction(
                transaction_id, expand_merchant=expand_merchants
            )
            self.cache.upsert(transaction.account_id, transaction)
            return transaction

        transaction = self.cache.find(account_id, transaction_id)
        if transaction is None:
            logger.info("Transaction %s not in cache", transaction_id)
        return transaction

    def annotate(self, transaction_id: str, metadata: dict[str, str]) -> Transaction:
        """Annotate a transaction and record the result in the cache.

        The API does not reliably persist annotations, so the requested
        metadata is applied to the returned transaction before caching; the
        cached copy is authoritative for what was annotated.
        """
        if not metadata:
            raise ValueError("at least one key=value pair is required")

        returned = self.client.annotate_transaction(transaction_id, metadata)
        transaction = returned.with_metadata(metadata)
        if transaction.metadata != returned.metadata:
            logger.warning(
                "API response for %s does not reflect the requested metadata", transaction_id
            )

        self.cache.upsert(transaction.account_id, transaction)
        return transaction

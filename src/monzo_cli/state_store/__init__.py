"""
State Store (JSON-file based).

Local persistent cache of transactions per account:
- Upsert by transaction id (duplicates replaced in place, never appended)
- Range-filtered reads by pagination window
- Missing cache file reads as an empty cache
"""

from .transaction_cache import (
    CacheError,
    CacheNotLoadedError,
    TransactionCache,
)

__all__ = [
    "TransactionCache",
    "CacheError",
    "CacheNotLoadedError",
]

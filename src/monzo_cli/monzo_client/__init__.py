"""
Monzo API Client.

Provides:
- Identity check (GET /ping/whoami) and token revocation
- Accounts, balance, pots, feed items and webhooks
- Transactions: list, get and annotate, with merchant expansion
- Structured API errors decoded from Monzo error bodies

Errors are never retried; they propagate to the caller.
"""

from .client import (
    MonzoAPIError,
    MonzoClient,
    MonzoConnectionError,
    MonzoError,
)
from .models import (
    Account,
    AccountType,
    Balance,
    CollapsedTransaction,
    ExpandedTransaction,
    FeedItem,
    Merchant,
    MerchantAddress,
    Pagination,
    Pot,
    Transaction,
    Webhook,
    WebhookPayload,
    Whoami,
    decode_transaction,
    normalize_transaction,
)

__all__ = [
    "MonzoClient",
    "MonzoError",
    "MonzoAPIError",
    "MonzoConnectionError",
    "Account",
    "AccountType",
    "Balance",
    "CollapsedTransaction",
    "ExpandedTransaction",
    "FeedItem",
    "Merchant",
    "MerchantAddress",
    "Pagination",
    "Pot",
    "Transaction",
    "Webhook",
    "WebhookPayload",
    "Whoami",
    "decode_transaction",
    "normalize_transaction",
]

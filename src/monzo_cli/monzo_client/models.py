"""
Monzo API resource models.

Every model is built from the raw JSON the API returns via
``from_api_response`` and can be turned back into the same shape with
``to_dict``. Transactions get special treatment because the API returns
two different shapes depending on whether merchant expansion was requested;
see ``decode_transaction`` / ``normalize_transaction``.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

_RFC3339_RE = re.compile(
    r"^(?P<main>\d{4}-\d{2}-\d{2}[Tt ]\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d+))?"
    r"(?P<tz>[Zz]|[+-]\d{2}:\d{2})?$"
)

MIN_TIME = datetime.min.replace(tzinfo=timezone.utc)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp into an aware UTC datetime.

    Accepts a trailing ``Z`` and any number of fractional digits (the API
    sends nanosecond precision on some fields). Naive timestamps are
    assumed to be UTC. Returns None for empty or unparseable input.
    """
    if not value:
        return None

    match = _RFC3339_RE.match(value.strip())
    if not match:
        return None

    frac = (match.group("frac") or "")[:6].ljust(6, "0")
    tz = match.group("tz")
    if tz is None or tz in ("Z", "z"):
        tz = "+00:00"

    try:
        parsed = datetime.fromisoformat(f"{match.group('main').replace('t', 'T')}.{frac}{tz}")
    except ValueError:
        return None

    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as RFC 3339 in UTC with a trailing Z."""
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class AccountType(str, Enum):
    """Account types accepted by the accounts filter."""

    UK_RETAIL = "uk_retail"
    UK_RETAIL_JOINT = "uk_retail_joint"


@dataclass
class Whoami:
    """Information about the access token currently in use."""

    authenticated: bool
    client_id: str
    user_id: str

    @classmethod
    def from_api_response(cls, data: dict) -> Whoami:
        return cls(
            authenticated=bool(data.get("authenticated", False)),
            client_id=data.get("client_id", ""),
            user_id=data.get("user_id", ""),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AccountOwner:
    user_id: str = ""
    preferred_name: str = ""
    preferred_first_name: str = ""


@dataclass
class Account:
    """An account (store of funds) owned by the authorised user."""

    id: str
    description: str = ""
    created: str = ""
    closed: bool = False
    type: str = ""
    country_code: str = ""
    owners: list[AccountOwner] = field(default_factory=list)
    account_number: str = ""
    sort_code: str = ""

    @classmethod
    def from_api_response(cls, data: dict) -> Account:
        # Older responses only carry the numbers under payment_details.locale_uk
        locale_uk = (data.get("payment_details") or {}).get("locale_uk") or {}
        return cls(
            id=data.get("id", ""),
            description=data.get("description", ""),
            created=data.get("created", ""),
            closed=bool(data.get("closed", False)),
            type=data.get("type", ""),
            country_code=data.get("country_code", ""),
            owners=[
                AccountOwner(
                    user_id=o.get("user_id", ""),
                    preferred_name=o.get("preferred_name", ""),
                    preferred_first_name=o.get("preferred_first_name", ""),
                )
                for o in data.get("owners") or []
            ],
            account_number=data.get("account_number") or locale_uk.get("account_number", ""),
            sort_code=data.get("sort_code") or locale_uk.get("sort_code", ""),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Balance:
    """Balance information for an account. Amounts are in minor units."""

    balance: int
    total_balance: int
    currency: str
    spend_today: int = 0
    balance_including_flexible_savings: int = 0
    local_currency: str = ""
    local_exchange_rate: float = 0
    local_spend: list[Any] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, data: dict) -> Balance:
        return cls(
            balance=int(data.get("balance", 0)),
            total_balance=int(data.get("total_balance", 0)),
            currency=data.get("currency", ""),
            spend_today=int(data.get("spend_today", 0)),
            balance_including_flexible_savings=int(
                data.get("balance_including_flexible_savings", 0)
            ),
            local_currency=data.get("local_currency", ""),
            local_exchange_rate=data.get("local_exchange_rate") or 0,
            local_spend=list(data.get("local_spend") or []),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Pot:
    """A pot: money kept separate from the main spending account."""

    id: str
    name: str = ""
    style: str = ""
    balance: int = 0
    currency: str = ""
    type: str = ""
    current_account_id: str = ""
    created: str = ""
    updated: str = ""
    deleted: bool = False
    locked: bool = False
    round_up: bool = False

    @classmethod
    def from_api_response(cls, data: dict) -> Pot:
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            style=data.get("style", ""),
            balance=int(data.get("balance", 0)),
            currency=data.get("currency", ""),
            type=data.get("type", ""),
            current_account_id=data.get("current_account_id", ""),
            created=data.get("created", ""),
            updated=data.get("updated", ""),
            deleted=bool(data.get("deleted", False)),
            locked=bool(data.get("locked", False)),
            round_up=bool(data.get("round_up", False)),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class FeedItem:
    """A basic feed item. ``basic`` is the only type the API supports."""

    account_id: str
    title: str
    image_url: str
    body: str | None = None
    url: str | None = None
    background_color: str | None = None
    title_color: str | None = None
    body_color: str | None = None
    type: str = "basic"

    def to_dict(self) -> dict:
        params = {"title": self.title, "image_url": self.image_url}
        for key in ("body", "background_color", "title_color", "body_color"):
            value = getattr(self, key)
            if value:
                params[key] = value

        payload: dict[str, Any] = {
            "account_id": self.account_id,
            "type": self.type,
            "params": params,
        }
        if self.url:
            payload["url"] = self.url
        return payload


@dataclass
class Webhook:
    account_id: str
    id: str
    url: str

    @classmethod
    def from_api_response(cls, data: dict) -> Webhook:
        return cls(
            account_id=data.get("account_id", ""),
            id=data.get("id", ""),
            url=data.get("url", ""),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class MerchantAddress:
    short_formatted: str = ""
    city: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    zoom_level: int = 0
    approximate: bool = False
    formatted: str = ""
    address: str = ""
    region: str = ""
    country: str = ""
    postcode: str = ""

    @classmethod
    def from_api_response(cls, data: dict | None) -> MerchantAddress:
        data = data or {}
        return cls(
            short_formatted=data.get("short_formatted") or "",
            city=data.get("city") or "",
            latitude=float(data.get("latitude") or 0.0),
            longitude=float(data.get("longitude") or 0.0),
            zoom_level=int(data.get("zoom_level") or 0),
            approximate=bool(data.get("approximate", False)),
            formatted=data.get("formatted") or "",
            address=data.get("address") or "",
            region=data.get("region") or "",
            country=data.get("country") or "",
            postcode=data.get("postcode") or "",
        )


@dataclass(frozen=True)
class Merchant:
    """Merchant details. Only ``id`` is populated for non-expanded payloads."""

    id: str = ""
    group_id: str = ""
    name: str = ""
    logo: str = ""
    emoji: str = ""
    category: str = ""
    created: str = ""
    online: bool = False
    atm: bool = False
    address: MerchantAddress = field(default_factory=MerchantAddress)
    disable_feedback: bool = False
    suggested_tags: str = ""
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_api_response(cls, data: dict) -> Merchant:
        return cls(
            id=data.get("id") or "",
            group_id=data.get("group_id") or "",
            name=data.get("name") or "",
            logo=data.get("logo") or "",
            emoji=data.get("emoji") or "",
            category=data.get("category") or "",
            created=data.get("created") or "",
            online=bool(data.get("online", False)),
            atm=bool(data.get("atm", False)),
            address=MerchantAddress.from_api_response(data.get("address")),
            disable_feedback=bool(data.get("disable_feedback", False)),
            suggested_tags=data.get("suggested_tags") or "",
            metadata=dict(data.get("metadata") or {}),
        )

    def to_dict(self) -> dict:
        return asdict(self)


# Wire keys modelled explicitly on Transaction; everything else rides in `extra`.
_TRANSACTION_FIELDS = (
    "id",
    "account_id",
    "amount",
    "currency",
    "created",
    "description",
    "merchant",
    "metadata",
    "category",
    "notes",
    "settled",
    "updated",
    "is_load",
    "local_amount",
    "local_currency",
    "amount_is_pending",
    "dedupe_id",
    "user_id",
    "scheme",
)


@dataclass(frozen=True)
class Transaction:
    """A movement of funds into or out of an account.

    Negative amounts are debits (spending), positive amounts are credits.
    Amounts are integers in minor currency units (pence for GBP).

    Fields the client does not model (counterparty, fees, labels, ...)
    are kept verbatim in ``extra`` so the cache stores the full payload.
    """

    id: str
    account_id: str = ""
    amount: int = 0
    currency: str = ""
    created: str = ""
    description: str = ""
    merchant: Merchant | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    category: str = ""
    notes: str = ""
    settled: str = ""
    updated: str = ""
    is_load: bool = False
    local_amount: int = 0
    local_currency: str = ""
    amount_is_pending: bool = False
    dedupe_id: str = ""
    user_id: str = ""
    scheme: str = ""
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def created_time(self) -> datetime | None:
        return parse_timestamp(self.created)

    @property
    def is_debit(self) -> bool:
        return self.amount < 0

    @classmethod
    def from_api_response(cls, data: dict, merchant: Merchant | None = None) -> Transaction:
        """Create from an API transaction object.

        ``merchant`` is supplied by the caller because its wire shape
        depends on expansion; see ``decode_transaction``.
        """
        return cls(
            id=data.get("id") or "",
            account_id=data.get("account_id") or "",
            amount=int(data.get("amount") or 0),
            currency=data.get("currency") or "",
            created=data.get("created") or "",
            description=data.get("description") or "",
            merchant=merchant,
            metadata={k: str(v) for k, v in (data.get("metadata") or {}).items()},
            category=data.get("category") or "",
            notes=data.get("notes") or "",
            settled=data.get("settled") or "",
            updated=data.get("updated") or "",
            is_load=bool(data.get("is_load", False)),
            local_amount=int(data.get("local_amount") or 0),
            local_currency=data.get("local_currency") or "",
            amount_is_pending=bool(data.get("amount_is_pending", False)),
            dedupe_id=data.get("dedupe_id") or "",
            user_id=data.get("user_id") or "",
            scheme=data.get("scheme") or "",
            extra={k: v for k, v in data.items() if k not in _TRANSACTION_FIELDS},
        )

    def to_dict(self) -> dict:
        """Wire-shaped dict (merchant always in object form)."""
        data: dict[str, Any] = dict(self.extra)
        for name in _TRANSACTION_FIELDS:
            data[name] = getattr(self, name)
        data["merchant"] = self.merchant.to_dict() if self.merchant else None
        data["metadata"] = dict(self.metadata)
        return data

    def with_metadata(self, metadata: dict[str, str]) -> Transaction:
        """Return a copy with ``metadata`` applied; empty values delete keys."""
        merged = dict(self.metadata)
        for key, value in metadata.items():
            if value == "":
                merged.pop(key, None)
            else:
                merged[key] = value
        return replace(self, metadata=merged)


@dataclass(frozen=True)
class ExpandedTransaction:
    """Payload fetched with ``expand[]=merchant``: merchant is an object."""

    transaction: Transaction


@dataclass(frozen=True)
class CollapsedTransaction:
    """Payload fetched without expansion: merchant is a bare id (or null)."""

    merchant_id: str
    transaction: Transaction


TransactionPayload = ExpandedTransaction | CollapsedTransaction


def decode_transaction(data: dict) -> TransactionPayload:
    """Decode a raw API transaction into its tagged payload variant."""
    raw_merchant = data.get("merchant")

    if isinstance(raw_merchant, dict):
        return ExpandedTransaction(
            transaction=Transaction.from_api_response(
                data, merchant=Merchant.from_api_response(raw_merchant)
            )
        )

    return CollapsedTransaction(
        merchant_id=raw_merchant or "",
        transaction=Transaction.from_api_response(data),
    )


def normalize_transaction(payload: TransactionPayload) -> Transaction:
    """Produce the canonical Transaction shape from either payload variant.

    A collapsed merchant id becomes a Merchant with only ``id`` populated.
    Transactions without a merchant (top-ups, transfers) keep ``None``.
    """
    if isinstance(payload, ExpandedTransaction):
        return payload.transaction

    if not payload.merchant_id:
        return payload.transaction

    return replace(payload.transaction, merchant=Merchant(id=payload.merchant_id))


def transaction_from_api(data: dict) -> Transaction:
    """Decode and normalize a raw API transaction in one step."""
    return normalize_transaction(decode_transaction(data))


@dataclass
class WebhookPayload:
    """Body Monzo POSTs to registered webhook URLs."""

    type: str
    data: Transaction

    @classmethod
    def from_api_response(cls, data: dict) -> WebhookPayload:
        return cls(
            type=data.get("type", ""),
            data=transaction_from_api(data.get("data") or {}),
        )

    def to_dict(self) -> dict:
        return {"type": self.type, "data": self.data.to_dict()}


@dataclass
class Pagination:
    """Pagination window for transaction queries.

    ``since`` may be an RFC 3339 timestamp or a transaction id (the API
    accepts both); ``before`` must be a timestamp and defaults to now.
    """

    limit: int | None = None
    since: str | None = None
    before: str | None = None

    @classmethod
    def build(
        cls,
        limit: int | None = None,
        since: str | None = None,
        before: str | None = None,
    ) -> Pagination | None:
        """Build a window from CLI input; None when nothing was given.

        Raises:
            ValueError: On a negative limit or malformed timestamp.
        """
        since = (since or "").strip() or None
        before = (before or "").strip() or None

        if not limit and since is None and before is None:
            return None

        if limit is not None and limit < 0:
            raise ValueError("limit must be a positive number")
        if before is not None and parse_timestamp(before) is None:
            raise ValueError(f"before must be an RFC 3339 timestamp, got {before!r}")
        if since is not None and parse_timestamp(since) is None and not _looks_like_id(since):
            raise ValueError(
                f"since must be an RFC 3339 timestamp or a transaction id, got {since!r}"
            )

        return cls(limit=limit or None, since=since, before=before)

    @property
    def since_is_id(self) -> bool:
        return bool(self.since) and parse_timestamp(self.since) is None

    def to_params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        if self.limit:
            params["limit"] = str(self.limit)
        if self.since:
            params["since"] = self.since
        if self.before:
            params["before"] = self.before
        return params

    def since_time(self) -> datetime:
        """Lower bound; the beginning of time when unset or an id."""
        return parse_timestamp(self.since) or MIN_TIME

    def before_time(self, now: datetime | None = None) -> datetime:
        """Upper bound; ``now`` when unset."""
        parsed = parse_timestamp(self.before)
        if parsed is not None:
            return parsed
        return now or datetime.now(timezone.utc)


def _looks_like_id(value: str) -> bool:
    # Monzo object ids are "<prefix>_<opaque>", e.g. tx_00008zIcpb1TB4yeIFXMzx
    return re.fullmatch(r"[a-z]+_[A-Za-z0-9]+", value) is not None

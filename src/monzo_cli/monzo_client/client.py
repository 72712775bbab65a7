"""
Monzo API client implementation.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import requests

from .models import (
    Account,
    AccountType,
    Balance,
    FeedItem,
    Pagination,
    Pot,
    Transaction,
    Webhook,
    Whoami,
    transaction_from_api,
)

if TYPE_CHECKING:
    from ..auth.token_store import Token
    from ..auth.transport import BearerTokenAuth

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.monzo.com"


class MonzoError(Exception):
    """Base exception for Monzo client errors."""

    pass


class MonzoAPIError(MonzoError):
    """API returned an error response.

    Monzo error bodies look like
    ``{"code": "...", "message": "...", "params": {...}, "retryable": {...}}``.
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        code: str | None = None,
        params: Any = None,
        retryable: Any = None,
        response_body: str | None = None,
    ):
        self.status_code = status_code
        self.message = message
        self.code = code
        self.params = params
        self.retryable = retryable
        self.response_body = response_body

        detail = f"{code}: {message}" if code else message
        super().__init__(f"Monzo API error {status_code}: {detail}")


class MonzoConnectionError(MonzoError):
    """Failed to connect to the Monzo API."""

    pass


class MonzoClient:
    """
    Client for the Monzo API.

    Features:
    - Identity check (whoami) and token revocation
    - Accounts, balance, pots, feed items, webhooks
    - Transactions: list, get, annotate (merchant expansion optional)
    - Transparent OAuth2 token refresh via the configured auth

    A single attempt is made per request; errors propagate to the caller.
    """

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        auth: BearerTokenAuth,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = DEFAULT_TIMEOUT,
        user_agent: str | None = None,
        session: requests.Session | None = None,
    ):
        """
        Initialize Monzo client.

        Args:
            auth: Request signer holding the OAuth2 token
            base_url: Monzo API URL
            timeout: Request timeout in seconds
            user_agent: User-Agent header value
            session: Optional pre-configured requests session
        """
        self.base_url = base_url.rstrip("/")
        self.auth = auth
        self.timeout = timeout

        self.session = session or requests.Session()
        self.session.auth = auth
        self.session.headers.update({"Accept": "application/json"})
        if user_agent:
            self.session.headers["User-Agent"] = user_agent

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | list | None = None,
        data: dict | list | None = None,
        json_data: dict | None = None,
    ) -> requests.Response:
        """Make an API request with error handling."""
        url = f"{self.base_url}{endpoint}"

        logger.debug(f"API Request: {method} {url}")
        if json_data:
            logger.debug(f"Request body: {json.dumps(json_data, indent=2)}")

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                data=data,
                json=json_data,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Connection error to {url}: {e}")
            raise MonzoConnectionError(
                f"Failed to connect to Monzo at {self.base_url}: {e}"
            ) from e
        except requests.exceptions.Timeout as e:
            logger.error(f"Timeout for {url}: {e}")
            raise MonzoConnectionError(f"Request to Monzo timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error for {url}: {e}")
            raise MonzoError(f"Request failed: {e}") from e

        logger.debug(f"Response status: {response.status_code}")

        if not response.ok:
            raise self._api_error(response)

        return response

    @staticmethod
    def _api_error(response: requests.Response) -> MonzoAPIError:
        error_body = response.text
        message = response.reason or "Unknown error"
        code = params = retryable = None

        try:
            error_json = response.json()
        except ValueError:
            error_json = None

        if isinstance(error_json, dict):
            message = error_json.get("message") or message
            code = error_json.get("code")
            params = error_json.get("params")
            retryable = error_json.get("retryable")

        logger.error(f"API Error {response.status_code}: {code or ''} {message}".rstrip())
        logger.debug(f"Full response body: {error_body}")

        return MonzoAPIError(
            status_code=response.status_code,
            message=message,
            code=code,
            params=params,
            retryable=retryable,
            response_body=error_body,
        )

    @staticmethod
    def _json(response: requests.Response) -> dict:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise MonzoError(f"Invalid JSON in response: {e}") from e

    # --- Auth ---

    def whoami(self) -> Whoami:
        """Information about the access token in use."""
        response = self._request("GET", "/ping/whoami")
        return Whoami.from_api_response(self._json(response))

    def test_connection(self) -> bool:
        """Check that the API accepts our token."""
        try:
            return self.whoami().authenticated
        except MonzoError:
            return False

    def logout(self) -> None:
        """Revoke the access and refresh tokens."""
        self._request("POST", "/oauth2/logout")

    def token(self) -> Token:
        """The OAuth2 token currently in use (possibly refreshed)."""
        return self.auth.token()

    def refresh_token_on_next_request(self) -> None:
        """Expire the cached token so the next request refreshes it."""
        self.auth.expire()

    def refresh_token(self) -> Whoami:
        """Force a token refresh by expiring the token and calling whoami.

        The caller is responsible for persisting ``token()`` afterwards.
        """
        self.refresh_token_on_next_request()
        return self.whoami()

    # --- Accounts & balance ---

    def list_accounts(self, account_type: AccountType | str | None = None) -> list[Account]:
        """List accounts owned by the authorised user, optionally by type."""
        params = None
        if account_type:
            params = {"account_type": AccountType(account_type).value}

        response = self._request("GET", "/accounts", params=params)
        return [Account.from_api_response(a) for a in self._json(response).get("accounts", [])]

    def get_balance(self, account_id: str) -> Balance:
        if not account_id.strip():
            raise ValueError("account id cannot be empty")
        response = self._request("GET", "/balance", params={"account_id": account_id})
        return Balance.from_api_response(self._json(response))

    # --- Pots ---

    def list_pots(self, account_id: str) -> list[Pot]:
        """List pots associated with the given current account."""
        if not account_id.strip():
            raise ValueError("account id cannot be empty")
        response = self._request("GET", "/pots", params={"current_account_id": account_id})
        return [Pot.from_api_response(p) for p in self._json(response).get("pots", [])]

    def get_pot(self, pot_id: str) -> Pot:
        # Undocumented endpoint, may change without notice
        if not pot_id.strip():
            raise ValueError("pot id cannot be empty")
        response = self._request("GET", f"/pots/{pot_id}")
        return Pot.from_api_response(self._json(response))

    def deposit_into_pot(
        self, pot_id: str, source_account_id: str, amount: int, dedupe_id: str
    ) -> Pot:
        """Move money from an account into a pot.

        ``dedupe_id`` makes the call idempotent: retrying with the same id
        will not move the money twice.
        """
        _validate_pot_transfer(pot_id, source_account_id, amount, dedupe_id, "deposit")
        response = self._request(
            "PUT",
            f"/pots/{pot_id}/deposit",
            data={
                "source_account_id": source_account_id,
                "amount": str(amount),
                "dedupe_id": dedupe_id,
            },
        )
        return Pot.from_api_response(self._json(response))

    def withdraw_from_pot(
        self, pot_id: str, destination_account_id: str, amount: int, dedupe_id: str
    ) -> Pot:
        """Move money from a pot back into an account."""
        _validate_pot_transfer(pot_id, destination_account_id, amount, dedupe_id, "withdraw")
        response = self._request(
            "PUT",
            f"/pots/{pot_id}/withdraw",
            data={
                "destination_account_id": destination_account_id,
                "amount": str(amount),
                "dedupe_id": dedupe_id,
            },
        )
        return Pot.from_api_response(self._json(response))

    # --- Feed ---

    def create_feed_item(self, item: FeedItem) -> None:
        """Post a dismissable item to the user's feed."""
        if not item.account_id.strip():
            raise ValueError("account id cannot be empty")
        if not item.title or not item.image_url:
            raise ValueError("feed items require a title and an image url")
        self._request("POST", "/feed", json_data=item.to_dict())

    # --- Webhooks ---

    def register_webhook(self, account_id: str, url: str) -> Webhook:
        if not account_id.strip():
            raise ValueError("account id cannot be empty")
        if not url.strip():
            raise ValueError("url cannot be empty")

        response = self._request(
            "POST", "/webhooks", data={"account_id": account_id, "url": url}
        )
        return Webhook.from_api_response(self._json(response).get("webhook", {}))

    def list_webhooks(self, account_id: str) -> list[Webhook]:
        if not account_id.strip():
            raise ValueError("account id cannot be empty")
        response = self._request("GET", "/webhooks", params={"account_id": account_id})
        return [Webhook.from_api_response(w) for w in self._json(response).get("webhooks", [])]

    def delete_webhook(self, webhook_id: str) -> None:
        if not webhook_id.strip():
            raise ValueError("webhook id cannot be empty")
        self._request("DELETE", f"/webhooks/{webhook_id}")

    # --- Transactions ---

    def list_transactions(
        self,
        account_id: str,
        expand_merchant: bool = False,
        pagination: Pagination | None = None,
    ) -> list[Transaction]:
        """
        List transactions on an account.

        Note: after the first 5 minutes following authentication, only the
        last 90 days of transactions can be fetched.
        """
        if not account_id.strip():
            raise ValueError("account id cannot be empty")

        params: list[tuple[str, str]] = [("account_id", account_id)]
        if expand_merchant:
            params.append(("expand[]", "merchant"))
        if pagination is not None:
            params.extend(pagination.to_params().items())

        response = self._request("GET", "/transactions", params=params)
        return [transaction_from_api(tx) for tx in self._json(response).get("transactions", [])]

    def get_transaction(self, transaction_id: str, expand_merchant: bool = False) -> Transaction:
        """Get a single transaction by id."""
        if not transaction_id.strip():
            raise ValueError("transaction id cannot be empty")

        params = [("expand[]", "merchant")] if expand_merchant else None
        response = self._request("GET", f"/transactions/{transaction_id}", params=params)
        return transaction_from_api(self._json(response).get("transaction", {}))

    def annotate_transaction(self, transaction_id: str, metadata: dict[str, str]) -> Transaction:
        """
        Store key-value annotations against a transaction.

        Note: the API does not always persist these; callers should not
        assume the returned metadata reflects server-side state.
        """
        if not transaction_id.strip():
            raise ValueError("transaction id cannot be empty")

        form = [(f"metadata[{key}]", value) for key, value in metadata.items()]
        response = self._request("PATCH", f"/transactions/{transaction_id}", data=form)
        return transaction_from_api(self._json(response).get("transaction", {}))


def _validate_pot_transfer(
    pot_id: str, account_id: str, amount: int, dedupe_id: str, action: str
) -> None:
    if not pot_id.strip():
        raise ValueError("pot id cannot be empty")
    if not account_id.strip():
        raise ValueError("account id cannot be empty")
    if amount <= 0:
        raise ValueError(f"{action} amount must be a positive number")
    if not dedupe_id.strip():
        raise ValueError("dedupe id must not be empty")

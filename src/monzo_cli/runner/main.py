"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
import uuid
from pathlib import Path

import yaml

from ..auth import (
    Token,
    TokenStore,
    build_auth,
    login_oauth2,
    static_token,
)
from ..config import CONFIG_FILE_NAME, Config, ConfigValidationError, create_default_config, load_config
from ..monzo_client import AccountType, FeedItem, MonzoClient, MonzoError, Pagination
from ..services import TransactionService
from ..services.webhook_receiver import create_webhook_server
from ..state_store import TransactionCache

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging (stderr, so stdout stays clean JSON)."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="monzo",
        description="CLI for interacting with Monzo APIs",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help=f"Path to config file (default: <home-dir>/{CONFIG_FILE_NAME})",
    )
    parser.add_argument(
        "--home-dir",
        type=Path,
        default=None,
        help="Directory for token and cache files (default: ~/.monzo)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Shared option groups
    account_parent = argparse.ArgumentParser(add_help=False)
    account_parent.add_argument(
        "-a", "--account-id", type=str, default="", help="Account ID to operate on"
    )

    pagination_parent = argparse.ArgumentParser(add_help=False)
    pagination_parent.add_argument(
        "-l", "--limit", type=int, default=0, help="Pagination - return at most this many results"
    )
    pagination_parent.add_argument(
        "-s", "--since", type=str, default="", help="Pagination - return results since this date/time or transaction id"
    )
    pagination_parent.add_argument(
        "-b", "--before", type=str, default="", help="Pagination - return results before this date/time"
    )

    cache_parent = argparse.ArgumentParser(add_help=False)
    cache_parent.add_argument(
        "--no-cache",
        action="store_true",
        help="Bypass transactions cache and force call to API",
    )
    cache_parent.add_argument(
        "--expand-merchants",
        action="store_true",
        help="Fetch expanded Merchants data",
    )

    # login command
    login_parser = subparsers.add_parser(
        "login", help="Authenticate to the Monzo API (--token | --client-id --client-secret)"
    )
    login_parser.add_argument("-t", "--token", type=str, default="", help="Authenticate with static access token")
    login_parser.add_argument("-c", "--client-id", type=str, default="", help="Authenticate with Client ID")
    login_parser.add_argument("-s", "--client-secret", type=str, default="", help="Authenticate with Client Secret")

    # refresh-token command
    subparsers.add_parser("refresh-token", help="Force refresh of token if using OAuth2")

    # logout command
    logout_parser = subparsers.add_parser("logout", help="Delete all cached data")
    logout_parser.add_argument(
        "--revoke",
        action="store_true",
        help="Also revoke the access and refresh tokens with Monzo",
    )

    # init-config command
    subparsers.add_parser("init-config", help="Write a default config file to the home directory")

    # whoami command
    subparsers.add_parser("whoami", help="Check auth status")

    # accounts command
    accounts_parser = subparsers.add_parser("accounts", help="List accounts")
    accounts_parser.add_argument(
        "account_type",
        nargs="?",
        default=None,
        choices=[t.value for t in AccountType],
        help="Only list accounts of this type",
    )

    # balance command
    subparsers.add_parser("balance", parents=[account_parent], help="Show balance")

    # pots commands
    pots_parser = subparsers.add_parser("pots", help="List pots and move money in and out")
    pots_sub = pots_parser.add_subparsers(dest="pots_command", help="Pots command")
    pots_sub.add_parser("list", parents=[account_parent], help="List pots for an account")
    for action in ("deposit", "withdraw"):
        move_parser = pots_sub.add_parser(
            action, parents=[account_parent], help=f"{action.capitalize()} money ({'into' if action == 'deposit' else 'out of'} a pot)"
        )
        move_parser.add_argument("pot_id", type=str, help="Pot ID")
        move_parser.add_argument(
            "--amount", type=int, required=True, help="Amount in minor units (e.g. pence)"
        )
        move_parser.add_argument(
            "--dedupe-id",
            type=str,
            default=None,
            help="Idempotency key (default: a new random id)",
        )

    # feed command
    feed_parser = subparsers.add_parser("feed", help="Post items to the account feed")
    feed_sub = feed_parser.add_subparsers(dest="feed_command", help="Feed command")
    feed_create = feed_sub.add_parser("create", parents=[account_parent], help="Create a basic feed item")
    feed_create.add_argument("--title", type=str, required=True, help="Feed item title")
    feed_create.add_argument("--image-url", type=str, required=True, help="Feed item image URL")
    feed_create.add_argument("--body", type=str, default=None, help="Feed item body text")
    feed_create.add_argument("--url", type=str, default=None, help="URL opened when the item is tapped")

    # webhooks commands
    webhooks_parser = subparsers.add_parser("webhooks", help="Manage and receive webhooks")
    webhooks_sub = webhooks_parser.add_subparsers(dest="webhooks_command", help="Webhooks command")
    webhooks_sub.add_parser("list", parents=[account_parent], help="List registered webhooks")
    register_parser = webhooks_sub.add_parser(
        "register", parents=[account_parent], help="Register a webhook URL"
    )
    register_parser.add_argument("url", type=str, help="URL Monzo will POST events to")
    delete_parser = webhooks_sub.add_parser("delete", help="Delete a webhook")
    delete_parser.add_argument("webhook_id", type=str, help="Webhook ID")
    serve_parser = webhooks_sub.add_parser("serve", help="Print webhook payloads received locally")
    serve_parser.add_argument("--host", type=str, default="0.0.0.0", help="Host to bind (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=54093, help="Port to listen on (default: 54093)")

    # transactions commands
    transactions_parser = subparsers.add_parser("transactions", help="Get and annotate transactions")
    transactions_sub = transactions_parser.add_subparsers(
        dest="transactions_command", help="Transactions command"
    )
    get_parser = transactions_sub.add_parser(
        "get",
        parents=[account_parent, pagination_parent, cache_parent],
        help="Get all transactions or a specific transaction by ID",
    )
    get_parser.add_argument("transaction_id", nargs="?", default=None, help="Transaction ID")
    annotate_parser = transactions_sub.add_parser(
        "annotate", help="Store key=value metadata against a transaction"
    )
    annotate_parser.add_argument("transaction_id", type=str, help="Transaction ID")
    annotate_parser.add_argument("metadata", nargs="+", help="key=value pairs (empty value deletes a key)")

    return parser


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _error(message) -> None:
    print(f"❌ {message}", file=sys.stderr)


def validate_login_args(token: str, client_id: str, client_secret: str) -> None:
    """Check the login options form exactly one complete auth method."""
    if token and (client_id or client_secret):
        raise ConfigValidationError("cannot use --token with --client-id and --client-secret")
    if not token and not client_id and not client_secret:
        raise ConfigValidationError("--token or --client-id and --client-secret must be supplied")
    if not token and not (client_id and client_secret):
        raise ConfigValidationError("--client-id and --client-secret must both be provided for oauth2")


def parse_metadata_args(pairs: list[str]) -> dict[str, str]:
    """Parse ``key=value`` arguments into a metadata mapping."""
    metadata: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ConfigValidationError(f"invalid metadata argument {pair!r}, expected key=value")
        metadata[key.strip()] = value
    return metadata


def build_client(token: Token, config: Config) -> MonzoClient:
    """Create an API client signing requests with ``token``."""
    auth = build_auth(token, config.oauth.token_url, timeout=config.api.timeout_seconds)
    return MonzoClient(
        auth,
        base_url=config.api.base_url,
        timeout=config.api.timeout_seconds,
        user_agent=config.api.user_agent,
    )


def cmd_login(
    config: Config, token_store: TokenStore, token: str, client_id: str, client_secret: str
) -> int:
    """Authenticate and store the resulting token."""
    validate_login_args(token, client_id, client_secret)

    if token:
        credential = static_token(token)
    else:
        credential = login_oauth2(client_id, client_secret, config)

    client = build_client(credential, config)
    if not client.test_connection():
        _error("Monzo did not accept the token, nothing was saved")
        return 1
    who = client.whoami()

    token_store.save(client.auth.current)
    print(f"Authenticated to Monzo! User: {who.user_id}\n")
    return 0


def cmd_refresh_token(client: MonzoClient, stored: Token) -> int:
    """Force a token refresh. The token is persisted by the caller."""
    if not stored.can_refresh:
        raise ConfigValidationError(
            "cannot refresh - missing client id, client secret, or refresh token"
        )

    client.refresh_token()
    print(f"Token refreshed, new expiry: {client.token().expiry}")
    return 0


def cmd_logout(config: Config, token_store: TokenStore, cache: TransactionCache, revoke: bool) -> int:
    """Delete the stored token and transaction cache."""
    if revoke and token_store.exists():
        client = build_client(token_store.load(), config)
        client.logout()
        print("✓ Tokens revoked")

    token_store.delete()
    cache.clear()
    print("✓ Logged out, cached data removed")
    return 0


def cmd_init_config(config: Config, config_path: Path | None) -> int:
    """Write a default config file."""
    path = config_path or (config.home_dir / CONFIG_FILE_NAME)
    if path.exists():
        _error(f"Config file already exists: {path}")
        return 1
    create_default_config(path)
    print(f"✓ Wrote default config to {path}")
    return 0


def cmd_whoami(client: MonzoClient) -> int:
    _print_json(client.whoami().to_dict())
    return 0


def cmd_accounts(client: MonzoClient, account_type: str | None) -> int:
    accounts = client.list_accounts(account_type)
    _print_json({"accounts": [a.to_dict() for a in accounts]})
    return 0


def cmd_balance(client: MonzoClient, account_id: str) -> int:
    _print_json(client.get_balance(account_id).to_dict())
    return 0


def cmd_pots(client: MonzoClient, parsed: argparse.Namespace) -> int:
    """List pots, or deposit into / withdraw from a pot."""
    if parsed.pots_command == "list":
        pots = client.list_pots(parsed.account_id)
        _print_json({"pots": [p.to_dict() for p in pots]})
        return 0

    if parsed.pots_command not in ("deposit", "withdraw"):
        raise ConfigValidationError("pots requires a command: list, deposit or withdraw")

    dedupe_id = parsed.dedupe_id or str(uuid.uuid4())
    if parsed.pots_command == "deposit":
        pot = client.deposit_into_pot(parsed.pot_id, parsed.account_id, parsed.amount, dedupe_id)
    else:
        pot = client.withdraw_from_pot(parsed.pot_id, parsed.account_id, parsed.amount, dedupe_id)

    logger.info("Pot %s %s with dedupe id %s", parsed.pot_id, parsed.pots_command, dedupe_id)
    _print_json(pot.to_dict())
    return 0


def cmd_feed(client: MonzoClient, parsed: argparse.Namespace) -> int:
    if parsed.feed_command != "create":
        raise ConfigValidationError("feed requires a command: create")

    client.create_feed_item(
        FeedItem(
            account_id=parsed.account_id,
            title=parsed.title,
            image_url=parsed.image_url,
            body=parsed.body,
            url=parsed.url,
        )
    )
    print("✓ Feed item created")
    return 0


def cmd_webhooks(client: MonzoClient, parsed: argparse.Namespace) -> int:
    """List, register or delete webhooks."""
    if parsed.webhooks_command == "list":
        webhooks = client.list_webhooks(parsed.account_id)
        _print_json({"webhooks": [w.to_dict() for w in webhooks]})
    elif parsed.webhooks_command == "register":
        _print_json({"webhook": client.register_webhook(parsed.account_id, parsed.url).to_dict()})
    elif parsed.webhooks_command == "delete":
        client.delete_webhook(parsed.webhook_id)
        print(f"✓ Webhook {parsed.webhook_id} deleted")
    else:
        raise ConfigValidationError("webhooks requires a command: list, register, delete or serve")
    return 0


def cmd_webhooks_serve(host: str, port: int) -> int:
    """Receive webhook deliveries and print them until interrupted."""
    server = create_webhook_server(host, port, lambda payload: _print_json(payload.to_dict()))
    print(f"🌐 Listening for webhooks on {host}:{port}", file=sys.stderr)

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\n✓ Webhook receiver stopped", file=sys.stderr)
    finally:
        server.server_close()

    return 0


def cmd_transactions_get(service: TransactionService, parsed: argparse.Namespace) -> int:
    """List transactions for an account, or get one by id."""
    if not parsed.transaction_id and not parsed.account_id:
        raise ConfigValidationError("--account-id flag is required to list transactions")

    if not parsed.transaction_id:
        pagination = Pagination.build(parsed.limit, parsed.since, parsed.before)
        transactions = service.list_transactions(
            parsed.account_id,
            pagination=pagination,
            expand_merchants=parsed.expand_merchants,
            no_cache=parsed.no_cache,
        )
        _print_json({"transactions": [tx.to_dict() for tx in transactions]})
        return 0

    transaction = service.get_transaction(
        parsed.transaction_id,
        account_id=parsed.account_id or None,
        expand_merchants=parsed.expand_merchants,
        no_cache=parsed.no_cache,
    )
    if transaction is None:
        _error(f"Transaction {parsed.transaction_id} not found in cache (use --no-cache to fetch it)")
        return 1

    _print_json({"transaction": transaction.to_dict()})
    return 0


def cmd_transactions_annotate(service: TransactionService, transaction_id: str, pairs: list[str]) -> int:
    metadata = parse_metadata_args(pairs)
    transaction = service.annotate(transaction_id, metadata)
    _print_json({"transaction": transaction.to_dict()})
    return 0


def run_command(
    parsed: argparse.Namespace,
    client: MonzoClient,
    stored: Token,
    cache: TransactionCache,
) -> int:
    """Route an authenticated command to its handler."""
    command = parsed.command

    if command == "refresh-token":
        return cmd_refresh_token(client, stored)
    elif command == "whoami":
        return cmd_whoami(client)
    elif command == "accounts":
        return cmd_accounts(client, parsed.account_type)
    elif command == "balance":
        return cmd_balance(client, parsed.account_id)
    elif command == "pots":
        return cmd_pots(client, parsed)
    elif command == "feed":
        return cmd_feed(client, parsed)
    elif command == "webhooks":
        return cmd_webhooks(client, parsed)
    elif command == "transactions":
        service = TransactionService(client, cache)
        if parsed.transactions_command == "get":
            return cmd_transactions_get(service, parsed)
        elif parsed.transactions_command == "annotate":
            return cmd_transactions_annotate(service, parsed.transaction_id, parsed.metadata)
        raise ConfigValidationError("transactions requires a command: get or annotate")

    raise ConfigValidationError(f"Unknown command: {command}")


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    # Load config
    try:
        config = load_config(parsed.config, home_dir=parsed.home_dir)
        config.ensure_home_dir()
    except (ConfigValidationError, yaml.YAMLError, OSError) as e:
        _error(f"Failed to load config: {e}")
        return 1

    token_store = TokenStore(config.token_path)
    cache = TransactionCache(config.cache_path)

    # Commands that do not need a stored token
    try:
        if parsed.command == "login":
            return cmd_login(config, token_store, parsed.token, parsed.client_id, parsed.client_secret)
        elif parsed.command == "logout":
            return cmd_logout(config, token_store, cache, parsed.revoke)
        elif parsed.command == "init-config":
            return cmd_init_config(config, parsed.config)
        elif parsed.command == "webhooks" and parsed.webhooks_command == "serve":
            return cmd_webhooks_serve(parsed.host, parsed.port)

        stored = token_store.load()
        client = build_client(stored, config)
    except (MonzoError, ConfigValidationError, ValueError, OSError) as e:
        _error(e)
        return 1

    try:
        exit_code = run_command(parsed, client, stored, cache)
    except (MonzoError, ConfigValidationError, ValueError) as e:
        _error(e)
        exit_code = 1

    # The token may have been refreshed during the command; always persist it
    try:
        token_store.save(client.auth.current)
    except MonzoError as e:
        _error(f"Failed to save token: {e}")
        exit_code = 1

    return exit_code


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()

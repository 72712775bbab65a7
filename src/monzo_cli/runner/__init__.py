"""
CLI runner module.

Provides commands:
- login / logout / refresh-token: Manage the stored OAuth2 token
- whoami, accounts, balance: Inspect the authenticated user
- pots, feed, webhooks: Act on account resources
- transactions: Cached transaction retrieval and annotation
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]

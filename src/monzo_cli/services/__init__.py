"""Services layer for the Monzo CLI.

This module contains business logic services that sit between the API
client and the command line runner.
"""

from monzo_cli.services.transactions import TransactionService

__all__ = ["TransactionService"]

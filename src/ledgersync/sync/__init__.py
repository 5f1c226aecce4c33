"""Pulling ledger state from a server."""

from .account_fetcher import AccountListFetcher
from .legacy_html import LegacyHtmlParser
from .orchestrator import SyncOrchestrator
from .persistence import AppStateService, SyncPersistence
from .transaction_fetcher import TransactionListFetcher

__all__ = [
    "AccountListFetcher",
    "AppStateService",
    "LegacyHtmlParser",
    "SyncOrchestrator",
    "SyncPersistence",
    "TransactionListFetcher",
]

"""Transport connectors for ledger servers."""

from .hledger_client import HledgerClient

__all__ = ["HledgerClient"]

"""ledgersync: sync and submission engine for hledger-web servers.

The engine negotiates the wire protocol a server speaks (one of several JSON
API versions or the legacy HTML pages), pulls its accounts and transactions
with progress reporting, and submits new transactions.
"""

__version__ = "0.1.0"

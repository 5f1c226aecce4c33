"""Transaction list retrieval over the JSON API."""

import json
import logging
from collections.abc import Awaitable, Callable

from ..api.gateway import WireFormatError, to_transaction, validate_transactions
from ..api.versions import DEFAULT_CATALOG, VersionCatalog
from ..connectors.hledger_client import HledgerClient, NotFoundError
from ..models import Profile, Transaction

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Awaitable[None]]


class TransactionListFetcher:
    """Reads ``GET /transactions`` and reports progress per decoded item."""

    def __init__(self, client: HledgerClient, catalog: VersionCatalog = DEFAULT_CATALOG):
        self.client = client
        self.catalog = catalog

    async def fetch(
        self,
        profile: Profile,
        expected_count: int,
        on_progress: ProgressCallback,
    ) -> list[Transaction] | None:
        """Fetch all transactions, newest first.

        Args:
            profile: Server to read from
            expected_count: Item count hinted by the account stage
            on_progress: Awaited with (current, total) after each decoded
                transaction; ``total`` is the number of items in the response

        Returns:
            The transactions sorted by date then ledger id, newest first, or
            None when the server has no usable JSON transaction endpoint.
        """
        candidates = self.catalog.candidates(profile.api)
        if not candidates:
            logger.debug("Declining JSON API for transactions with legacy HTML selector")
            return None

        try:
            body = await self.client.get(profile, "transactions")
        except NotFoundError:
            logger.info(f"{profile.url} has no JSON transaction list")
            return None

        try:
            data = json.loads(body)
        except ValueError:
            logger.info("Transaction list response is not JSON")
            return None

        for version in candidates:
            try:
                items = validate_transactions(version, data)
            except WireFormatError as e:
                logger.debug(f"Transaction list is not protocol {version.value}: {e}")
                continue

            total = len(items)
            if expected_count != total:
                logger.debug(f"Expected {expected_count} items, server sent {total}")

            transactions = []
            for current, item in enumerate(items, start=1):
                transactions.append(to_transaction(item))
                await on_progress(current, total)

            transactions.sort(key=lambda t: (t.date, t.ledger_id), reverse=True)
            logger.info(
                f"Got {len(transactions)} transactions using protocol {version.value}"
            )
            return transactions

        logger.warning("No known protocol version matches the transaction list")
        return None

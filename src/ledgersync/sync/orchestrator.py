"""Full pull of a ledger server's state with a progress stream.

:meth:`SyncOrchestrator.sync` is an async generator. Nothing happens until the
consumer starts iterating; a producer task then runs the pass and hands
progress items over a bounded queue. Closing the generator (``aclose()``,
leaving an ``async for`` early, or cancelling the consuming task) cancels the
producer along with its in-flight request. A client the orchestrator created
itself is closed after every pass; an injected client belongs to the caller.

Stage order::

    Starting
    Indeterminate(FETCHING_ACCOUNTS)
    Indeterminate(FETCHING_TRANSACTIONS)    # JSON path
    Running(i, total) ...
    Indeterminate(FETCHING_HTML)            # only when JSON is unavailable
    Running(i, total) ...                   # one per scraped transaction
    Indeterminate(SAVING)
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime

from ..api.versions import DEFAULT_CATALOG, VersionCatalog
from ..classifier import ErrorClassifier
from ..connectors.hledger_client import HledgerClient
from ..errors import AppException
from ..models import (
    Account,
    Indeterminate,
    Profile,
    Running,
    Starting,
    SyncInfo,
    SyncProgress,
    SyncResult,
    Transaction,
)
from .account_fetcher import AccountListFetcher
from .legacy_html import LegacyHtmlParser
from .persistence import AppStateService, SyncPersistence
from .transaction_fetcher import TransactionListFetcher

logger = logging.getLogger(__name__)

FETCHING_ACCOUNTS = "fetching accounts"
FETCHING_TRANSACTIONS = "fetching transactions"
FETCHING_HTML = "fetching via HTML fallback"
SAVING = "saving"


@dataclass(frozen=True)
class _Finished:
    pass


@dataclass(frozen=True)
class _Failed:
    exception: AppException


@dataclass
class _ProfileLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SyncOrchestrator:
    """Drives account, transaction and persistence stages for one profile.

    The last successful :class:`SyncResult` is kept on the instance. Only the
    orchestrator's producer tasks write it; readers may call
    :meth:`get_last_result` at any time.

    Overlapping :meth:`sync` calls for the same profile run one after the
    other; syncs of different profiles run concurrently.
    """

    def __init__(
        self,
        persistence: SyncPersistence,
        state_service: AppStateService | None = None,
        client: HledgerClient | None = None,
        catalog: VersionCatalog = DEFAULT_CATALOG,
        account_fetcher: AccountListFetcher | None = None,
        transaction_fetcher: TransactionListFetcher | None = None,
        legacy_parser: LegacyHtmlParser | None = None,
        classifier: ErrorClassifier | None = None,
    ):
        self._owns_client = client is None
        self.client = client or HledgerClient()
        self.persistence = persistence
        self.state_service = state_service
        self.account_fetcher = account_fetcher or AccountListFetcher(
            self.client, catalog
        )
        self.transaction_fetcher = transaction_fetcher or TransactionListFetcher(
            self.client, catalog
        )
        self.legacy_parser = legacy_parser or LegacyHtmlParser(self.client)
        self.classifier = classifier or ErrorClassifier()

        self._last_result: SyncResult | None = None
        self._locks: dict[int | str, _ProfileLock] = {}

    def get_last_result(self) -> SyncResult | None:
        """Result of the most recent successful pass; None before the first."""
        return self._last_result

    @asynccontextmanager
    async def _profile_lock(self, profile: Profile) -> AsyncIterator[None]:
        """Hold the profile's lock; the entry is dropped once nobody uses it."""
        key: int | str = profile.id if profile.id is not None else profile.url
        entry = self._locks.get(key)
        if entry is None:
            entry = _ProfileLock()
            self._locks[key] = entry
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    async def sync(self, profile: Profile) -> AsyncIterator[SyncProgress]:
        """Run one sync pass, yielding progress as it goes.

        Raises:
            SyncException: On network, protocol or server failures
            AppException: On storage failures reported by the persistence
        """
        queue: asyncio.Queue[SyncProgress | _Finished | _Failed] = asyncio.Queue(
            maxsize=1
        )
        producer = asyncio.create_task(self._produce(profile, queue))
        finished = False
        try:
            while True:
                item = await queue.get()
                if isinstance(item, (_Finished, _Failed)):
                    finished = True
                    await producer
                    if isinstance(item, _Failed):
                        raise item.exception
                    break
                yield item
        finally:
            if not finished:
                logger.info(f"Sync of {profile.url} cancelled")
                producer.cancel()
                await asyncio.wait({producer})

    async def _produce(
        self,
        profile: Profile,
        queue: "asyncio.Queue[SyncProgress | _Finished | _Failed]",
    ) -> None:
        try:
            async with self._profile_lock(profile):
                await self._run(profile, queue)
            await queue.put(_Finished())
        except Exception as e:
            logger.error(f"Sync of {profile.url} failed: {e}")
            await queue.put(_Failed(self.classifier.to_exception(e)))
        finally:
            if self._owns_client:
                self.client.close()

    async def _run(
        self,
        profile: Profile,
        queue: "asyncio.Queue[SyncProgress | _Finished | _Failed]",
    ) -> None:
        started = time.monotonic()
        logger.info(f"Starting sync of {profile.url}")
        await queue.put(Starting())

        async def on_progress(current: int, total: int) -> None:
            await queue.put(Running(current=current, total=total))

        await queue.put(Indeterminate(FETCHING_ACCOUNTS))
        account_result = await self.account_fetcher.fetch(profile)

        accounts: list[Account] = []
        transactions: list[Transaction] | None = None
        expected = 0
        if account_result is not None:
            accounts = account_result.accounts
            expected = account_result.expected_count
            await queue.put(Indeterminate(FETCHING_TRANSACTIONS))
            transactions = await self.transaction_fetcher.fetch(
                profile, expected, on_progress
            )

        if transactions is None:
            await queue.put(Indeterminate(FETCHING_HTML))
            legacy = await self.legacy_parser.parse(profile, expected, on_progress)
            accounts = legacy.accounts
            transactions = legacy.transactions

        await queue.put(Indeterminate(SAVING))
        await self.persistence.save(profile, accounts, transactions)

        result = SyncResult(
            transaction_count=len(transactions),
            account_count=len(accounts),
            duration=time.monotonic() - started,
        )
        self._last_result = result
        logger.info(
            f"Synced {result.transaction_count} transactions and "
            f"{result.account_count} accounts in {result.duration:.2f}s"
        )

        if self.state_service is not None:
            self.state_service.update_sync_info(
                SyncInfo(
                    date=datetime.now(),
                    transaction_count=result.transaction_count,
                    account_count=sum(1 for a in accounts if a.amounts),
                    total_account_count=result.account_count,
                )
            )
            self.state_service.signal_data_changed()

"""Tests for the sync orchestrator and its progress stream."""

import asyncio
import json
import sqlite3
import time
from datetime import date
from decimal import Decimal
from typing import Any

import pytest
import requests
from conftest import FakeHledgerClient, account_json_v1_40, amount_json, transaction_json
from pytest_mock import MockerFixture

from ledgersync.api.versions import LegacyHtmlSelector
from ledgersync.connectors.hledger_client import NotFoundError
from ledgersync.errors import (
    AppException,
    ConstraintViolation,
    NetworkError,
    SyncException,
)
from ledgersync.models import (
    Account,
    AccountAmount,
    Indeterminate,
    LegacyParseResult,
    Profile,
    Running,
    Starting,
    SyncInfo,
    Transaction,
    TransactionLine,
)
from ledgersync.sync.orchestrator import (
    FETCHING_ACCOUNTS,
    FETCHING_HTML,
    FETCHING_TRANSACTIONS,
    SAVING,
    SyncOrchestrator,
)

LEGACY_JOURNAL = """<html><body>
<table class="balancereport">
<tr><td class="acct"><a href="/register?q=inacct:Assets:Cash">Cash</a></td>
<td><span class="amount">-20.00 EUR</span></td></tr>
</table>
<h2>General Journal</h2>
<table class="transactionsreport">
<tr class="title" id="transaction-1"><td>2024-01-05</td><td>Bakery</td></tr>
<tr class="posting" title="2024-01-05 Bakery
    Expenses:Food    5.00 EUR
    Assets:Cash"><td>Food</td></tr>
<tr class="title" id="transaction-2"><td>2024-01-20</td><td>Market</td></tr>
<tr class="posting" title="2024-01-20 Market
    Expenses:Food    15.00 EUR
    Assets:Cash"><td>Food</td></tr>
</table>
</body></html>
"""


class RecordingPersistence:
    """Persistence collaborator remembering what it was asked to save."""

    def __init__(self, error: Exception | None = None, delay: float = 0.0) -> None:
        self.error = error
        self.delay = delay
        self.saved: list[tuple[Profile, list[Account], list[Transaction]]] = []
        self.events: list[tuple[str, int | None]] = []

    async def save(
        self,
        profile: Profile,
        accounts: list[Account],
        transactions: list[Transaction],
    ) -> None:
        self.events.append(("start", profile.id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.saved.append((profile, accounts, transactions))
        self.events.append(("end", profile.id))


class RecordingStateService:
    def __init__(self) -> None:
        self.infos: list[SyncInfo] = []
        self.signals = 0

    def update_sync_info(self, info: SyncInfo) -> None:
        self.infos.append(info)

    def signal_data_changed(self) -> None:
        self.signals += 1


async def collect(orchestrator: SyncOrchestrator, profile: Profile) -> list[Any]:
    return [event async for event in orchestrator.sync(profile)]


def serve_json_ledger(client: FakeHledgerClient) -> None:
    """Three transactions over two accounts, in 1.40 format."""
    client.get_responses["accounts"] = json.dumps(
        [
            account_json_v1_40("Assets:Cash", [amount_json(-4500)], 3),
            account_json_v1_40("Expenses:Food", [amount_json(4500)], 3),
        ]
    )
    client.get_responses["transactions"] = json.dumps(
        [
            transaction_json(
                1, "2024-01-05", "Bakery", [("Expenses:Food", 500), ("Assets:Cash", None)]
            ),
            transaction_json(
                2, "2024-01-20", "Market", [("Expenses:Food", 1500), ("Assets:Cash", None)]
            ),
            transaction_json(
                3, "2024-01-20", "Dinner", [("Expenses:Food", 2500), ("Assets:Cash", None)]
            ),
        ]
    )


@pytest.fixture
def persistence() -> RecordingPersistence:
    return RecordingPersistence()


@pytest.fixture
def state_service() -> RecordingStateService:
    return RecordingStateService()


@pytest.fixture
def orchestrator(
    fake_client: FakeHledgerClient,
    persistence: RecordingPersistence,
    state_service: RecordingStateService,
) -> SyncOrchestrator:
    return SyncOrchestrator(persistence, state_service, client=fake_client)


class TestJsonSync:
    """Sync against a server with the JSON API."""

    @pytest.mark.unit
    def test_emits_stages_in_order(
        self,
        orchestrator: SyncOrchestrator,
        fake_client: FakeHledgerClient,
        profile: Profile,
    ) -> None:
        serve_json_ledger(fake_client)

        events = asyncio.run(collect(orchestrator, profile))

        assert events == [
            Starting(),
            Indeterminate(FETCHING_ACCOUNTS),
            Indeterminate(FETCHING_TRANSACTIONS),
            Running(1, 3),
            Running(2, 3),
            Running(3, 3),
            Indeterminate(SAVING),
        ]

    @pytest.mark.unit
    def test_running_fractions_increase_to_one(
        self,
        orchestrator: SyncOrchestrator,
        fake_client: FakeHledgerClient,
        profile: Profile,
    ) -> None:
        serve_json_ledger(fake_client)

        events = asyncio.run(collect(orchestrator, profile))

        fractions = [e.fraction for e in events if isinstance(e, Running)]
        assert len(fractions) == 3
        assert all(a < b for a, b in zip(fractions, fractions[1:]))
        assert fractions[-1] == 1.0

    @pytest.mark.unit
    def test_saves_accounts_and_sorted_transactions(
        self,
        orchestrator: SyncOrchestrator,
        fake_client: FakeHledgerClient,
        persistence: RecordingPersistence,
        profile: Profile,
    ) -> None:
        serve_json_ledger(fake_client)

        asyncio.run(collect(orchestrator, profile))

        [(saved_profile, accounts, transactions)] = persistence.saved
        assert saved_profile == profile
        assert [a.name for a in accounts] == [
            "Assets:Cash",
            "Expenses:Food",
            "Assets",
            "Expenses",
        ]
        assert [t.ledger_id for t in transactions] == [3, 2, 1]
        assert transactions[0].lines[0].amount == Decimal("25.00")

    @pytest.mark.unit
    def test_records_result_and_notifies_state_service(
        self,
        orchestrator: SyncOrchestrator,
        fake_client: FakeHledgerClient,
        state_service: RecordingStateService,
        profile: Profile,
    ) -> None:
        serve_json_ledger(fake_client)
        assert orchestrator.get_last_result() is None

        asyncio.run(collect(orchestrator, profile))

        result = orchestrator.get_last_result()
        assert result is not None
        assert result.transaction_count == 3
        assert result.account_count == 4
        assert result.duration >= 0

        [info] = state_service.infos
        assert info.transaction_count == 3
        assert info.account_count == 2
        assert info.total_account_count == 4
        assert state_service.signals == 1

    @pytest.mark.unit
    def test_leaves_injected_client_open(
        self,
        orchestrator: SyncOrchestrator,
        fake_client: FakeHledgerClient,
        profile: Profile,
    ) -> None:
        serve_json_ledger(fake_client)

        asyncio.run(collect(orchestrator, profile))

        assert fake_client.closed == 0

    @pytest.mark.unit
    def test_closes_own_client_after_each_pass(
        self,
        mocker: MockerFixture,
        fake_client: FakeHledgerClient,
        persistence: RecordingPersistence,
        profile: Profile,
    ) -> None:
        serve_json_ledger(fake_client)
        mocker.patch(
            "ledgersync.sync.orchestrator.HledgerClient", return_value=fake_client
        )
        orchestrator = SyncOrchestrator(persistence)

        asyncio.run(collect(orchestrator, profile))
        asyncio.run(collect(orchestrator, profile))

        assert fake_client.closed == 2

    @pytest.mark.unit
    def test_without_state_service(
        self,
        fake_client: FakeHledgerClient,
        persistence: RecordingPersistence,
        profile: Profile,
    ) -> None:
        serve_json_ledger(fake_client)
        orchestrator = SyncOrchestrator(persistence, client=fake_client)

        asyncio.run(collect(orchestrator, profile))

        assert orchestrator.get_last_result() is not None
        assert len(persistence.saved) == 1


class TestHtmlFallback:
    """Sync against a server without a usable JSON API."""

    @pytest.fixture
    def legacy_result(self) -> LegacyParseResult:
        return LegacyParseResult(
            accounts=[
                Account.from_name(
                    "Assets:Cash", [AccountAmount(currency="EUR", amount=Decimal("-5"))]
                ),
                Account.from_name("Assets"),
            ],
            transactions=[
                Transaction(
                    ledger_id=1,
                    date=date(2020, 1, 1),
                    description="Old",
                    lines=[TransactionLine(account_name="Assets:Cash")],
                )
            ],
        )

    @pytest.mark.unit
    def test_missing_account_endpoint_skips_json_transactions(
        self,
        mocker: MockerFixture,
        fake_client: FakeHledgerClient,
        persistence: RecordingPersistence,
        profile: Profile,
        legacy_result: LegacyParseResult,
    ) -> None:
        fake_client.get_responses["accounts"] = NotFoundError(
            "https://ledger.example.com/accounts"
        )
        transaction_fetcher = mocker.Mock()
        transaction_fetcher.fetch = mocker.AsyncMock()
        legacy_parser = mocker.Mock()
        legacy_parser.parse = mocker.AsyncMock(return_value=legacy_result)
        orchestrator = SyncOrchestrator(
            persistence,
            client=fake_client,
            transaction_fetcher=transaction_fetcher,
            legacy_parser=legacy_parser,
        )

        events = asyncio.run(collect(orchestrator, profile))

        assert events == [
            Starting(),
            Indeterminate(FETCHING_ACCOUNTS),
            Indeterminate(FETCHING_HTML),
            Indeterminate(SAVING),
        ]
        transaction_fetcher.fetch.assert_not_called()
        legacy_parser.parse.assert_awaited_once()
        [(_, accounts, transactions)] = persistence.saved
        assert accounts == legacy_result.accounts
        assert transactions == legacy_result.transactions

    @pytest.mark.unit
    def test_unusable_transaction_list_falls_back(
        self,
        mocker: MockerFixture,
        fake_client: FakeHledgerClient,
        persistence: RecordingPersistence,
        profile: Profile,
        legacy_result: LegacyParseResult,
    ) -> None:
        serve_json_ledger(fake_client)
        fake_client.get_responses["transactions"] = "<html>not json</html>"
        legacy_parser = mocker.Mock()
        legacy_parser.parse = mocker.AsyncMock(return_value=legacy_result)
        orchestrator = SyncOrchestrator(
            persistence, client=fake_client, legacy_parser=legacy_parser
        )

        events = asyncio.run(collect(orchestrator, profile))

        assert Indeterminate(FETCHING_TRANSACTIONS) in events
        assert Indeterminate(FETCHING_HTML) in events
        assert not any(isinstance(e, Running) for e in events)
        args = legacy_parser.parse.await_args.args
        assert args[1] == 6
        [(_, accounts, _)] = persistence.saved
        assert accounts == legacy_result.accounts

    @pytest.mark.unit
    def test_scraped_transactions_report_progress(
        self,
        fake_client: FakeHledgerClient,
        persistence: RecordingPersistence,
    ) -> None:
        profile = Profile(id=9, url="https://old.example.com", api=LegacyHtmlSelector())
        fake_client.get_responses["journal"] = LEGACY_JOURNAL
        orchestrator = SyncOrchestrator(persistence, client=fake_client)

        events = asyncio.run(collect(orchestrator, profile))

        assert events == [
            Starting(),
            Indeterminate(FETCHING_ACCOUNTS),
            Indeterminate(FETCHING_HTML),
            Running(1, 2),
            Running(2, 2),
            Indeterminate(SAVING),
        ]
        [(_, _, transactions)] = persistence.saved
        assert [t.description for t in transactions] == ["Bakery", "Market"]

    @pytest.mark.unit
    def test_legacy_selector_never_touches_json(
        self,
        mocker: MockerFixture,
        fake_client: FakeHledgerClient,
        persistence: RecordingPersistence,
        legacy_result: LegacyParseResult,
    ) -> None:
        profile = Profile(id=9, url="https://old.example.com", api=LegacyHtmlSelector())
        legacy_parser = mocker.Mock()
        legacy_parser.parse = mocker.AsyncMock(return_value=legacy_result)
        orchestrator = SyncOrchestrator(
            persistence, client=fake_client, legacy_parser=legacy_parser
        )

        asyncio.run(collect(orchestrator, profile))

        assert fake_client.calls == []
        assert orchestrator.get_last_result().transaction_count == 1


class TestFailures:
    """Errors surface as classified exceptions from the stream."""

    @pytest.mark.unit
    def test_network_failure_is_sync_exception(
        self,
        orchestrator: SyncOrchestrator,
        fake_client: FakeHledgerClient,
        persistence: RecordingPersistence,
        profile: Profile,
    ) -> None:
        fake_client.get_responses["accounts"] = requests.ConnectionError("refused")

        with pytest.raises(SyncException) as exc_info:
            asyncio.run(collect(orchestrator, profile))

        assert exc_info.value.error == NetworkError(message="refused")
        assert persistence.saved == []
        assert orchestrator.get_last_result() is None
        assert fake_client.closed == 0

    @pytest.mark.unit
    def test_storage_failure_is_app_exception(
        self,
        fake_client: FakeHledgerClient,
        state_service: RecordingStateService,
        profile: Profile,
    ) -> None:
        serve_json_ledger(fake_client)
        persistence = RecordingPersistence(
            error=sqlite3.IntegrityError("UNIQUE constraint failed: transactions.ledger_id")
        )
        orchestrator = SyncOrchestrator(persistence, state_service, client=fake_client)

        with pytest.raises(AppException) as exc_info:
            asyncio.run(collect(orchestrator, profile))

        assert not isinstance(exc_info.value, SyncException)
        assert exc_info.value.error == ConstraintViolation(table="transactions")
        assert state_service.infos == []

    @pytest.mark.unit
    def test_failed_pass_keeps_previous_result(
        self,
        orchestrator: SyncOrchestrator,
        fake_client: FakeHledgerClient,
        profile: Profile,
    ) -> None:
        serve_json_ledger(fake_client)
        asyncio.run(collect(orchestrator, profile))
        previous = orchestrator.get_last_result()

        fake_client.get_responses["accounts"] = requests.Timeout()
        with pytest.raises(SyncException):
            asyncio.run(collect(orchestrator, profile))

        assert orchestrator.get_last_result() is previous


class TestCancellation:
    """Closing the stream stops the pass."""

    @pytest.mark.unit
    def test_closing_stream_cancels_producer(
        self,
        orchestrator: SyncOrchestrator,
        fake_client: FakeHledgerClient,
        persistence: RecordingPersistence,
        profile: Profile,
    ) -> None:
        serve_json_ledger(fake_client)

        async def take_first() -> Any:
            stream = orchestrator.sync(profile)
            first = await stream.__anext__()
            await stream.aclose()
            return first

        first = asyncio.run(take_first())

        assert first == Starting()
        assert persistence.saved == []
        assert orchestrator.get_last_result() is None
        assert fake_client.closed == 0

    @pytest.mark.unit
    def test_cancelling_consumer_abandons_pending_request(
        self,
        orchestrator: SyncOrchestrator,
        fake_client: FakeHledgerClient,
        persistence: RecordingPersistence,
        profile: Profile,
    ) -> None:
        serve_json_ledger(fake_client)
        events: list[Any] = []

        async def consume() -> None:
            async for event in orchestrator.sync(profile):
                events.append(event)

        async def transactions_requested() -> None:
            while not any(c["path"] == "transactions" for c in fake_client.calls):
                await asyncio.sleep(0)

        async def cancel_during_request() -> int:
            release = asyncio.Event()
            fake_client.blocked["transactions"] = release
            task = asyncio.create_task(consume())
            await asyncio.wait_for(transactions_requested(), timeout=1)

            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            seen = len(events)

            # A late reply must not reach the closed stream
            release.set()
            await asyncio.sleep(0.01)
            return seen

        started = time.monotonic()
        seen = asyncio.run(cancel_during_request())
        elapsed = time.monotonic() - started

        assert elapsed < 1
        assert fake_client.abandoned == ["transactions"]
        assert len(events) == seen
        assert events[0] == Starting()
        assert not any(isinstance(e, Running) for e in events)
        assert Indeterminate(SAVING) not in events
        assert persistence.saved == []
        assert orchestrator.get_last_result() is None
        assert orchestrator._locks == {}

    @pytest.mark.unit
    def test_nothing_happens_until_iteration(
        self,
        orchestrator: SyncOrchestrator,
        fake_client: FakeHledgerClient,
        profile: Profile,
    ) -> None:
        serve_json_ledger(fake_client)

        orchestrator.sync(profile)

        assert fake_client.calls == []


class TestSerialization:
    """Overlapping syncs of one profile do not interleave."""

    @pytest.mark.integration
    def test_same_profile_runs_one_after_the_other(
        self, fake_client: FakeHledgerClient, profile: Profile
    ) -> None:
        serve_json_ledger(fake_client)
        persistence = RecordingPersistence(delay=0.01)
        orchestrator = SyncOrchestrator(persistence, client=fake_client)

        async def run_both() -> None:
            await asyncio.gather(
                collect(orchestrator, profile), collect(orchestrator, profile)
            )

        asyncio.run(run_both())

        assert persistence.events == [
            ("start", 1),
            ("end", 1),
            ("start", 1),
            ("end", 1),
        ]
        assert orchestrator._locks == {}

    @pytest.mark.integration
    def test_different_profiles_both_complete(
        self, fake_client: FakeHledgerClient, profile: Profile
    ) -> None:
        serve_json_ledger(fake_client)
        other = Profile(id=2, url="https://other.example.com")
        persistence = RecordingPersistence(delay=0.01)
        orchestrator = SyncOrchestrator(persistence, client=fake_client)

        async def run_both() -> None:
            await asyncio.gather(
                collect(orchestrator, profile), collect(orchestrator, other)
            )

        asyncio.run(run_both())

        assert sorted(p.id for p, _, _ in persistence.saved) == [1, 2]
        assert orchestrator._locks == {}

    @pytest.mark.unit
    def test_failed_pass_releases_profile_lock(
        self, fake_client: FakeHledgerClient, profile: Profile
    ) -> None:
        fake_client.get_responses["accounts"] = requests.ConnectionError("refused")
        orchestrator = SyncOrchestrator(RecordingPersistence(), client=fake_client)

        with pytest.raises(SyncException):
            asyncio.run(collect(orchestrator, profile))

        assert orchestrator._locks == {}

"""Sync command: pull accounts and transactions from a server.

Without ``--output`` the result is only summarized. With it, the accounts and
transactions are written to a JSON file.
"""

import asyncio
import json
import logging
from pathlib import Path

import typer

from ...errors import AppException
from ...models import (
    Account,
    Indeterminate,
    Profile,
    Running,
    Starting,
    SyncProgress,
    Transaction,
)
from ...sync.orchestrator import SyncOrchestrator
from ..options import (
    ApiOption,
    CurrencyOption,
    PasswordOption,
    UrlArgument,
    UserOption,
    build_profile,
)

logger = logging.getLogger(__name__)


class SummaryPersistence:
    """Persistence that only logs what it was given."""

    async def save(
        self,
        profile: Profile,
        accounts: list[Account],
        transactions: list[Transaction],
    ) -> None:
        logger.info(
            f"Received {len(accounts)} accounts and {len(transactions)} "
            f"transactions from {profile.url}"
        )


class JsonFilePersistence:
    """Persistence writing the synced data to a JSON document."""

    def __init__(self, path: Path):
        self.path = path

    async def save(
        self,
        profile: Profile,
        accounts: list[Account],
        transactions: list[Transaction],
    ) -> None:
        document = {
            "url": profile.url,
            "accounts": [a.model_dump(mode="json") for a in accounts],
            "transactions": [t.model_dump(mode="json") for t in transactions],
        }
        await asyncio.to_thread(
            self.path.write_text, json.dumps(document, indent=2), "utf-8"
        )
        logger.info(f"📁 Data saved to: {self.path}")


def describe_progress(progress: SyncProgress) -> str:
    if isinstance(progress, Starting):
        return "Starting sync"
    if isinstance(progress, Indeterminate):
        return progress.message.capitalize()
    if isinstance(progress, Running):
        return f"Transaction {progress.current}/{progress.total} ({progress.fraction:.0%})"
    raise TypeError(f"Unknown progress item: {progress!r}")


async def _run_sync(orchestrator: SyncOrchestrator, profile: Profile) -> None:
    async for progress in orchestrator.sync(profile):
        if isinstance(progress, Running):
            logger.debug(describe_progress(progress))
        else:
            logger.info(describe_progress(progress))


def sync_command(
    url: UrlArgument,
    user: UserOption = None,
    password: PasswordOption = None,
    api: ApiOption = "auto",
    currency: CurrencyOption = None,
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write accounts and transactions to this JSON file"
    ),
) -> None:
    """Pull all accounts and transactions from a server.

    Example:
        ledgersync sync https://ledger.example.com --api 1.32 -o ledger.json
    """
    profile = build_profile(url, user, password, api, currency, profile_id=None)
    persistence = JsonFilePersistence(output) if output else SummaryPersistence()
    orchestrator = SyncOrchestrator(persistence)

    try:
        asyncio.run(_run_sync(orchestrator, profile))
    except AppException as e:
        logger.error(f"❌ Sync failed: {e}")
        raise typer.Exit(1) from e

    result = orchestrator.get_last_result()
    if result is None:
        logger.error("❌ Sync finished without a result")
        raise typer.Exit(1)

    logger.info("✅ Sync completed successfully")
    print(
        f"{result.transaction_count} transactions, {result.account_count} accounts "
        f"in {result.duration:.2f}s"
    )

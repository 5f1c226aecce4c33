"""Send command: add a transaction to a server."""

import asyncio
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

import typer

from ...errors import AppException
from ...models import Transaction, TransactionLine
from ...sender import TransactionSender
from ..options import (
    ApiOption,
    CurrencyOption,
    PasswordOption,
    ProfileIdOption,
    UrlArgument,
    UserOption,
    build_profile,
)

logger = logging.getLogger(__name__)


def parse_posting(value: str) -> TransactionLine:
    """Parse ``ACCOUNT=AMOUNT [CURRENCY]``; the amount part may be empty.

    Raises:
        typer.BadParameter: If the value has no ``=`` or an invalid amount
    """
    account, sep, rest = value.rpartition("=")
    if not sep or not account.strip():
        raise typer.BadParameter(
            f"Expected ACCOUNT=AMOUNT [CURRENCY], got: {value}", param_hint="--posting"
        )

    parts = rest.split()
    if not parts:
        return TransactionLine(account_name=account.strip())
    if len(parts) > 2:
        raise typer.BadParameter(f"Too many fields in: {value}", param_hint="--posting")

    try:
        amount = Decimal(parts[0])
    except InvalidOperation as e:
        raise typer.BadParameter(
            f"Invalid amount: {parts[0]}", param_hint="--posting"
        ) from e

    return TransactionLine(
        account_name=account.strip(),
        amount=amount,
        currency=parts[1] if len(parts) == 2 else "",
    )


def send_command(
    url: UrlArgument,
    description: str = typer.Option(
        ..., "--description", "-d", help="Transaction description"
    ),
    postings: list[str] = typer.Option(
        ...,
        "--posting",
        "-p",
        help="ACCOUNT=AMOUNT [CURRENCY]; leave one amount empty to auto-balance",
    ),
    when: datetime | None = typer.Option(
        None, "--date", formats=["%Y-%m-%d"], help="Transaction date (default: today)"
    ),
    comment: str | None = typer.Option(None, "--comment", help="Transaction comment"),
    simulate: bool = typer.Option(
        False, "--simulate", help="Log the requests instead of sending them"
    ),
    user: UserOption = None,
    password: PasswordOption = None,
    api: ApiOption = "auto",
    currency: CurrencyOption = None,
    profile_id: ProfileIdOption = 1,
) -> None:
    """Add a transaction to a server.

    Example:
        ledgersync send https://ledger.example.com -d Groceries \\
            -p "Expenses:Food=12.50 EUR" -p "Assets:Cash="
    """
    profile = build_profile(url, user, password, api, currency, profile_id)
    lines = [parse_posting(p) for p in postings]
    if len([line for line in lines if line.amount is None]) > 1:
        raise typer.BadParameter(
            "Only one posting may omit its amount", param_hint="--posting"
        )

    transaction = Transaction(
        date=when.date() if when else date.today(),
        description=description,
        comment=comment,
        lines=lines,
    )

    sender = TransactionSender()
    try:
        asyncio.run(sender.send(profile, transaction, simulate=simulate))
    except AppException as e:
        logger.error(f"❌ Sending failed: {e}")
        raise typer.Exit(1) from e
    finally:
        sender.close()

    if simulate:
        logger.info("✅ Simulated, nothing was sent")
    else:
        logger.info("✅ Transaction sent")

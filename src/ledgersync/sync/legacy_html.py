"""Scraper for servers that only expose the HTML journal page.

Old hledger-web releases have no JSON API. Their ``/journal`` page lists every
account in a sidebar (links to ``register?q=inacct:<name>`` followed by
``amount`` spans) and every transaction in a table: a ``tr.title`` row with id
``transaction-N`` followed by ``tr.posting`` rows whose ``title`` attribute
holds the transaction in journal syntax.
"""

import logging
import re
from collections.abc import Awaitable, Callable
from datetime import date
from decimal import Decimal, InvalidOperation
from urllib.parse import unquote_plus

from bs4 import BeautifulSoup, Tag

from ..connectors.hledger_client import HledgerClient
from ..models import (
    Account,
    AccountAmount,
    LegacyParseResult,
    Profile,
    Transaction,
    TransactionLine,
    ensure_parent_accounts,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Awaitable[None]]

ACCOUNT_HREF_RE = re.compile(r"register\?q=inacct(?:%3A|:)([^&\s]+)")
ACCOUNT_AMOUNT_RE = re.compile(r"^\s*([-+]?[\d.,]+)(?:\s+(\S+))?\s*$")
TRANSACTION_ID_RE = re.compile(r"^transaction-(\d+)$")
DESCRIPTION_RE = re.compile(r"^(\S+)(?:\s+(.*))?$")
POSTING_RE = re.compile(
    r"^\s+([!*]\s+)?(\S[\S\s]+\S)\s\s+"
    r"(?:([^\d\s+\-]+)\s*)?([-+]?\d[\d,.]*)(?:\s*([^\d\s+\-]+)\s*$)?"
)
ELIDED_POSTING_RE = re.compile(r"^\s+([!*]\s+)?(\S(?:.*\S)?)\s*$")
COMMENT_RE = re.compile(r"^\s*;")
DECIMAL_COMMA_RE = re.compile(r",\d\d?$")
DECIMAL_POINT_RE = re.compile(r"\.\d\d?$")
GENERAL_JOURNAL = "General Journal"


class LegacyFormatError(ValueError):
    """The journal page does not have the expected structure."""


def parse_number(text: str) -> Decimal:
    """Parse a number that may use either ``,`` or ``.`` as decimal mark.

    Raises:
        LegacyFormatError: If ``text`` is not a number
    """
    value = text.strip()
    if DECIMAL_COMMA_RE.search(value):
        value = value.replace(".", "").replace(",", ".")
    elif DECIMAL_POINT_RE.search(value):
        value = value.replace(",", "")
    else:
        value = value.replace(",", "").replace(".", "")
    value = value.replace(" ", "")
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise LegacyFormatError(f"Invalid amount: {text}") from e


def parse_ledger_date(text: str) -> date:
    """Parse ``2024-01-31``, ``2024/01/31`` or ``2024.01.31``.

    For ``primary=secondary`` dates the part after ``=`` wins.
    """
    if "=" in text:
        text = text[text.index("=") + 1 :]
    normalized = text.replace("/", "-").replace(".", "-")
    try:
        return date.fromisoformat(normalized)
    except ValueError as e:
        raise LegacyFormatError(f"Invalid date: {text}") from e


def parse_posting_line(line: str) -> TransactionLine | None:
    """Parse one indented posting line of a journal entry.

    Returns None for lines that are not postings, or whose currency is given
    both before and after the amount.
    """
    m = POSTING_RE.match(line)
    if m is None:
        elided = ELIDED_POSTING_RE.match(line)
        if elided is None:
            return None
        return TransactionLine(account_name=elided.group(2))

    account_name = m.group(2)
    currency_pre, amount, currency_post = m.group(3), m.group(4), m.group(5)
    if currency_pre and currency_post:
        return None

    return TransactionLine(
        account_name=account_name,
        amount=parse_number(amount),
        currency=currency_pre or currency_post or "",
    )


def extract_form_token(html: str) -> str | None:
    """Return the value of the hidden ``_token`` input of the add form."""
    soup = BeautifulSoup(html, "lxml")
    field = soup.find("input", attrs={"type": "hidden", "name": "_token"})
    if not isinstance(field, Tag):
        return None
    value = field.get("value")
    return str(value) if value else None


class LegacyHtmlParser:
    """Reads accounts and transactions from ``GET /journal`` in one pass."""

    def __init__(self, client: HledgerClient):
        self.client = client

    async def parse(
        self,
        profile: Profile,
        postings_hint: int,
        on_progress: ProgressCallback,
    ) -> LegacyParseResult:
        """Fetch and scrape the journal page.

        Args:
            profile: Server to read from
            postings_hint: Expected item count from earlier stages; only logged
            on_progress: Awaited once per transaction row with (current, total)

        Returns:
            LegacyParseResult: Accounts (with synthesized parents) and
            transactions in page order
        """
        html = await self.client.get(profile, "journal")
        soup = BeautifulSoup(html, "lxml")

        accounts = ensure_parent_accounts(self._parse_accounts(soup))

        rows = soup.find_all("tr", class_="title", id=TRANSACTION_ID_RE)
        total = len(rows)
        if postings_hint > 0 and postings_hint != total:
            logger.debug(f"Expected {postings_hint} items, journal lists {total}")

        transactions: list[Transaction] = []
        for current, row in enumerate(rows, start=1):
            transaction = self._parse_transaction(row)
            if transaction is not None:
                transactions.append(transaction)
            await on_progress(current, total)

        logger.info(
            f"Scraped {len(accounts)} accounts and {len(transactions)} transactions "
            f"from {profile.url}"
        )
        return LegacyParseResult(accounts=accounts, transactions=transactions)

    def _parse_accounts(self, soup: BeautifulSoup) -> list[Account]:
        names: list[str] = []
        amounts: dict[str, list[AccountAmount]] = {}
        current: str | None = None

        for tag in soup.find_all(["a", "span", "h2"]):
            if tag.name == "h2" and tag.get_text(strip=True) == GENERAL_JOURNAL:
                break

            if tag.name == "a":
                m = ACCOUNT_HREF_RE.search(str(tag.get("href", "")))
                if m is None:
                    continue
                name = unquote_plus(m.group(1)).replace('"', "")
                if name in amounts:
                    current = None
                    continue
                names.append(name)
                amounts[name] = []
                current = name

            elif tag.name == "span" and current is not None:
                if "amount" not in (tag.get("class") or []):
                    continue
                m = ACCOUNT_AMOUNT_RE.match(tag.get_text())
                if m is None:
                    continue
                amounts[current].append(
                    AccountAmount(currency=m.group(2) or "", amount=parse_number(m.group(1)))
                )

        return [Account.from_name(name, amounts[name]) for name in names]

    def _parse_transaction(self, row: Tag) -> Transaction | None:
        ledger_id = int(TRANSACTION_ID_RE.match(str(row["id"])).group(1))
        posting_row = None
        for sibling in row.find_next_siblings("tr"):
            classes = sibling.get("class") or []
            if "title" in classes:
                break
            if "posting" in classes:
                posting_row = sibling
                break
        if posting_row is None or not posting_row.get("title"):
            logger.warning(f"Transaction {ledger_id} has no posting details, skipping")
            return None

        text_lines = str(posting_row["title"]).splitlines()
        header = DESCRIPTION_RE.match(text_lines[0].strip())
        if header is None:
            raise LegacyFormatError(f"Can't parse transaction {ledger_id} header")

        lines = []
        for text in text_lines[1:]:
            if not text.strip() or COMMENT_RE.match(text):
                continue
            line = parse_posting_line(text)
            if line is None:
                logger.debug(f"Skipping unparsable line of transaction {ledger_id}: {text}")
                continue
            lines.append(line)

        return Transaction(
            ledger_id=ledger_id,
            date=parse_ledger_date(header.group(1)),
            description=(header.group(2) or "").strip(),
            lines=lines,
        )

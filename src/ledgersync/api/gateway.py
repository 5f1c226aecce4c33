"""Conversion between the hledger-web JSON wire format and domain models.

Decoding is version aware: a payload is accepted for a version only when its
shape matches what that release emits (for example ``adata`` balances are
1.50-only and string ``ptransaction_`` ids appeared in 1.32). This lets the
fetchers probe the version catalog against a single response.
"""

import logging
from collections import defaultdict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pydantic import TypeAdapter, ValidationError

from ..models import Account, AccountAmount, Transaction, TransactionLine
from .schemas import AccountSchema, AmountSchema, TransactionSchema
from .versions import ApiVersion

logger = logging.getLogger(__name__)

_ACCOUNT_LIST = TypeAdapter(list[AccountSchema])
_TRANSACTION_LIST = TypeAdapter(list[TransactionSchema])

AMOUNT_DECIMAL_PLACES = 2


class WireFormatError(ValueError):
    """Payload does not match the shape of the requested protocol version."""


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


def decode_accounts(version: ApiVersion, data: Any) -> tuple[list[Account], int]:
    """Decode a ``GET /accounts`` payload.

    Args:
        version: Protocol version the payload is expected to follow
        data: Parsed JSON document

    Returns:
        The accounts in server order and the total number of postings
        reported for them.

    Raises:
        WireFormatError: If the payload is not a ``version`` account list
    """
    if not isinstance(data, list):
        raise WireFormatError("Account list must be a JSON array")

    for raw in data:
        if not isinstance(raw, dict):
            raise WireFormatError("Account entry must be a JSON object")
        if version.uses_period_balances and "adata" not in raw:
            raise WireFormatError(f"Account without adata for {version.value}")
        if not version.uses_period_balances and "aibalance" not in raw:
            raise WireFormatError(f"Account without aibalance for {version.value}")

    try:
        parsed = _ACCOUNT_LIST.validate_python(data)
    except ValidationError as e:
        raise WireFormatError(f"Invalid account list: {e}") from e

    accounts = [
        Account.from_name(item.aname, _aggregate(item.balances())) for item in parsed
    ]
    expected = sum(item.posting_count() for item in parsed)
    logger.debug(
        f"Decoded {len(accounts)} accounts with {expected} postings "
        f"using protocol {version.value}"
    )
    return accounts, expected


def _aggregate(balances: list[AmountSchema]) -> list[AccountAmount]:
    """Sum balances per commodity, keeping first-seen order."""
    totals: dict[str, Decimal] = {}
    for balance in balances:
        totals.setdefault(balance.acommodity, Decimal(0))
        totals[balance.acommodity] += balance.aquantity.to_decimal()
    return [AccountAmount(currency=c, amount=a) for c, a in totals.items()]


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def validate_transactions(version: ApiVersion, data: Any) -> list[TransactionSchema]:
    """Check a ``GET /transactions`` payload against ``version`` and parse it.

    Raises:
        WireFormatError: If the payload is not a ``version`` transaction list
    """
    if not isinstance(data, list):
        raise WireFormatError("Transaction list must be a JSON array")

    for raw in data:
        if not isinstance(raw, dict):
            raise WireFormatError("Transaction entry must be a JSON object")
        _check_transaction_shape(version, raw)

    try:
        return _TRANSACTION_LIST.validate_python(data)
    except ValidationError as e:
        raise WireFormatError(f"Invalid transaction list: {e}") from e


def _check_transaction_shape(version: ApiVersion, raw: dict[str, Any]) -> None:
    if "tsourcepos" in raw:
        is_list = isinstance(raw["tsourcepos"], list)
        if version.uses_source_range != is_list:
            raise WireFormatError(f"Unexpected tsourcepos shape for {version.value}")

    for posting in raw.get("tpostings") or []:
        if not isinstance(posting, dict) or "ptransaction_" not in posting:
            continue
        is_string = isinstance(posting["ptransaction_"], str)
        if version.uses_string_transaction_ids != is_string:
            raise WireFormatError(
                f"Unexpected ptransaction_ type for {version.value}"
            )


def to_transaction(item: TransactionSchema) -> Transaction:
    """Convert a parsed wire transaction into a domain transaction.

    Raises:
        WireFormatError: If the transaction date is not an ISO date
    """
    try:
        tdate = date.fromisoformat(item.tdate)
    except ValueError as e:
        raise WireFormatError(f"Invalid transaction date: {item.tdate}") from e

    lines = []
    for posting in item.tpostings:
        amount = posting.pamount[0] if posting.pamount else None
        lines.append(
            TransactionLine(
                account_name=posting.paccount,
                amount=amount.aquantity.to_decimal() if amount else None,
                currency=amount.acommodity if amount else "",
                comment=posting.pcomment or None,
            )
        )

    return Transaction(
        ledger_id=item.tindex,
        date=tdate,
        description=item.tdescription,
        comment=(item.tcomment or "").strip() or None,
        lines=lines,
    )


# ---------------------------------------------------------------------------
# Add request
# ---------------------------------------------------------------------------


def encode_add_request(
    version: ApiVersion, transaction: Transaction, default_currency: str = ""
) -> dict[str, Any]:
    """Build the ``PUT /add`` body for ``transaction`` in ``version``'s format.

    Lines without an amount receive the negated sum of the other lines in the
    same currency. Lines with an empty account name are skipped.
    """
    transaction_id: int | str = "1" if version.uses_string_transaction_ids else 1
    postings = [
        {
            "pbalanceassertion": None,
            "pstatus": "Unmarked",
            "paccount": line.account_name,
            "pamount": [_encode_amount(version, amount, currency)],
            "pdate": None,
            "pdate2": None,
            "ptype": "RegularPosting",
            "pcomment": line.comment or "",
            "ptags": [],
            "poriginal": None,
            "ptransaction_": transaction_id,
        }
        for line, amount, currency in _balanced_lines(transaction, default_currency)
    ]

    source_pos = {"sourceName": "", "sourceLine": 1, "sourceColumn": 1}
    return {
        "tdate": transaction.date.isoformat(),
        "tdate2": None,
        "tdescription": transaction.description,
        "tcomment": transaction.comment or "",
        "tindex": 1,
        "tpostings": postings,
        "tsourcepos": (
            [source_pos, dict(source_pos)]
            if version.uses_source_range
            else source_pos
        ),
        "tcode": "",
        "tstatus": "Unmarked",
        "tprecedingcomment": "",
        "ttags": [],
    }


def _balanced_lines(
    transaction: Transaction, default_currency: str
) -> list[tuple[TransactionLine, Decimal, str]]:
    lines = [line for line in transaction.lines if line.account_name]
    sums: dict[str, Decimal] = defaultdict(Decimal)
    for line in lines:
        if line.amount is not None:
            sums[line.currency or default_currency] += line.amount

    result = []
    for line in lines:
        currency = line.currency or default_currency
        if line.amount is None:
            amount = -sums[currency]
        else:
            amount = line.amount
        result.append((line, amount, currency))
    return result


def _encode_amount(version: ApiVersion, amount: Decimal, currency: str) -> dict[str, Any]:
    mantissa = int(
        (amount * 10**AMOUNT_DECIMAL_PLACES).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    )
    return {
        "acommodity": currency,
        "aismultiplier": False,
        "aprice": None,
        "aquantity": {
            "decimalMantissa": mantissa,
            "decimalPlaces": AMOUNT_DECIMAL_PLACES,
            "floatingPoint": float(amount),
        },
        "astyle": _encode_style(version),
    }


def _encode_style(version: ApiVersion) -> dict[str, Any]:
    style: dict[str, Any] = {
        "ascommodityside": "L",
        "ascommodityspaced": False,
        "digitgroups": None,
    }
    if version.release >= (1, 32):
        style["asprecision"] = AMOUNT_DECIMAL_PLACES
        style["asdecimalmark"] = "."
        style["asrounding"] = "NoRounding"
    elif version is ApiVersion.V1_19_1:
        style["asprecision"] = {"tag": "Precision", "contents": AMOUNT_DECIMAL_PLACES}
        style["asdecimalpoint"] = "."
    else:
        style["asprecision"] = AMOUNT_DECIMAL_PLACES
        style["asdecimalpoint"] = "."
    return style

"""Domain models shared by the sync and submission engine.

Profiles, accounts and transactions are immutable pydantic models. The engine
never mutates a profile; accounts and transactions are produced fresh on
every sync pass and handed to the persistence collaborator as-is.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .api.versions import AutoSelector, ProtocolSelector


class BaseDomainModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
    )


class Profile(BaseDomainModel):
    """Connection identity for one ledger server.

    A profile without an ``id`` has not been saved by the profile store yet.
    """

    id: int | None = Field(default=None, description="Profile store identity")
    url: str = Field(..., description="Base URL of the hledger-web server")
    auth_user: str | None = Field(default=None, description="Basic-auth user")
    auth_password: str | None = Field(
        default=None, description="Basic-auth password", repr=False
    )
    api: ProtocolSelector = Field(
        default_factory=AutoSelector, description="Protocol version selector"
    )
    default_currency: str = Field(
        default="", description="Currency for lines that do not name one"
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Require an http(s) URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Profile URL must start with http:// or https://")
        return v

    @property
    def is_saved(self) -> bool:
        return self.id is not None

    @property
    def use_authentication(self) -> bool:
        return bool(self.auth_user)


class AccountAmount(BaseDomainModel):
    """One (currency, amount) balance of an account."""

    currency: str = ""
    amount: Decimal


class Account(BaseDomainModel):
    """A ledger account; ``name`` is colon-delimited (``Assets:Cash``)."""

    name: str
    level: int = 0
    amounts: list[AccountAmount] = Field(default_factory=list)

    @classmethod
    def from_name(
        cls, name: str, amounts: list[AccountAmount] | None = None
    ) -> "Account":
        """Build an account, deriving its nesting level from the name."""
        return cls(name=name, level=name.count(":"), amounts=amounts or [])

    @property
    def parent_name(self) -> str | None:
        idx = self.name.rfind(":")
        if idx <= 0:
            return None
        return self.name[:idx]


class TransactionLine(BaseDomainModel):
    """A posting: account plus an optional amount."""

    account_name: str
    amount: Decimal | None = None
    currency: str = ""
    comment: str | None = None


class Transaction(BaseDomainModel):
    """A ledger transaction.

    At most one line per currency may omit its amount; the server infers it.
    The engine consumes transactions as given and does not re-balance them.
    """

    id: int | None = None
    ledger_id: int = 0
    date: date
    description: str = ""
    comment: str | None = None
    lines: list[TransactionLine] = Field(default_factory=list)


def ensure_parent_accounts(accounts: list[Account]) -> list[Account]:
    """Append synthetic parent accounts missing from a flat account list.

    hledger reports a flat list, so ``Assets:Cash`` may arrive without
    ``Assets``. Missing ancestors are appended (without amounts) after the
    reported accounts.
    """
    existing = {a.name for a in accounts}
    added: list[Account] = []
    for account in accounts:
        parent = account.parent_name
        while parent is not None and parent not in existing:
            added.append(Account.from_name(parent))
            existing.add(parent)
            parent = Account.from_name(parent).parent_name
    return accounts + added


# ---------------------------------------------------------------------------
# Progress stream elements
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Starting:
    """The sync pass has begun."""


@dataclass(frozen=True)
class Indeterminate:
    """A stage without a measurable amount of work."""

    message: str


@dataclass(frozen=True)
class Running:
    """Measurable progress: ``current`` of ``total`` items done."""

    current: int
    total: int

    @property
    def fraction(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.current / self.total


SyncProgress = Starting | Indeterminate | Running


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one completed sync pass."""

    transaction_count: int
    account_count: int
    duration: float


@dataclass(frozen=True)
class SyncInfo:
    """Summary handed to the application state service after a sync."""

    date: datetime
    transaction_count: int
    account_count: int
    total_account_count: int


@dataclass(frozen=True)
class AccountFetchResult:
    """Accounts from the JSON endpoint plus the number of postings they carry.

    ``expected_count`` is only a progress hint for the transaction stage.
    """

    accounts: list[Account]
    expected_count: int


@dataclass(frozen=True)
class LegacyParseResult:
    """Accounts and transactions scraped from the HTML journal page."""

    accounts: list[Account]
    transactions: list[Transaction]


@dataclass
class FormPostResponse:
    """Response of one legacy HTML form POST."""

    status_code: int
    body: str = ""
    cookies: dict[str, str] = field(default_factory=dict)

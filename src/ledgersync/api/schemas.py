"""Pydantic schemas for the hledger-web JSON wire format.

These models are deliberately permissive: they accept the union of the shapes
used by every supported release. Version-specific shape checks live in
:mod:`ledgersync.api.gateway`, which decides whether a payload belongs to the
version being probed.
"""

from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class WireSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
    )


class QuantitySchema(WireSchema):
    """A decimal quantity: ``decimalMantissa * 10 ** -decimalPlaces``."""

    decimal_mantissa: int = Field(..., alias="decimalMantissa")
    decimal_places: int = Field(default=0, alias="decimalPlaces", ge=0)
    floating_point: float | None = Field(default=None, alias="floatingPoint")

    def to_decimal(self) -> Decimal:
        return Decimal(self.decimal_mantissa).scaleb(-self.decimal_places)


class StyleSchema(WireSchema):
    """Amount display style; only decoded, the gateway encodes styles itself."""

    ascommodityside: str = "L"
    ascommodityspaced: bool = False
    asprecision: int = 0
    asdecimalmark: str = Field(
        default=".", validation_alias=AliasChoices("asdecimalmark", "asdecimalpoint")
    )
    asrounding: str | None = None

    @field_validator("asdecimalmark", mode="before")
    @classmethod
    def default_decimal_mark(cls, v: Any) -> Any:
        return v or "."

    @field_validator("asprecision", mode="before")
    @classmethod
    def flatten_precision(cls, v: Any) -> Any:
        """1.19.1 sends ``{"tag": "Precision", "contents": N}``."""
        if isinstance(v, dict):
            return v.get("contents", 0)
        if v is None:
            return 0
        return v


class AmountSchema(WireSchema):
    """One commodity amount."""

    acommodity: str = ""
    aquantity: QuantitySchema
    astyle: StyleSchema | None = None
    aismultiplier: bool = False


class BalanceDataSchema(WireSchema):
    """Per-period balance block introduced in 1.50."""

    bdincludingsubs: list[AmountSchema] = Field(default_factory=list)
    bdexcludingsubs: list[AmountSchema] = Field(default_factory=list)
    bdnumpostings: int = 0


class AccountDataSchema(WireSchema):
    """``adata`` block of a 1.50 account."""

    pdperiods: list[tuple[str, BalanceDataSchema]] = Field(default_factory=list)
    pdpre: BalanceDataSchema | None = None

    def first_period(self) -> BalanceDataSchema | None:
        if not self.pdperiods:
            return None
        return self.pdperiods[0][1]


class AccountSchema(WireSchema):
    """An entry of ``GET /accounts``."""

    aname: str
    anumpostings: int = 0
    aibalance: list[AmountSchema] | None = None
    aebalance: list[AmountSchema] | None = None
    adata: AccountDataSchema | None = None

    def balances(self) -> list[AmountSchema]:
        """Balances including sub-accounts, wherever the release keeps them."""
        if self.adata is not None:
            period = self.adata.first_period()
            if period is not None:
                return period.bdincludingsubs
        return self.aibalance or []

    def posting_count(self) -> int:
        if self.adata is not None:
            period = self.adata.first_period()
            if period is not None:
                return period.bdnumpostings
        return self.anumpostings


class SourcePosSchema(WireSchema):
    """Position of a transaction in the journal file."""

    source_name: str = Field(default="", alias="sourceName")
    source_line: int = Field(default=1, alias="sourceLine")
    source_column: int = Field(default=1, alias="sourceColumn")


class PostingSchema(WireSchema):
    """A posting of a transaction."""

    paccount: str = ""
    pamount: list[AmountSchema] = Field(default_factory=list)
    pcomment: str = ""
    ptransaction_: int | str = "0"
    pstatus: str = "Unmarked"
    ptype: str = "RegularPosting"

    @field_validator("pcomment", mode="before")
    @classmethod
    def strip_comment(cls, v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, str):
            return v.strip()
        return v


class TransactionSchema(WireSchema):
    """An entry of ``GET /transactions``."""

    tdate: str
    tdate2: str | None = None
    tdescription: str = ""
    tcomment: str | None = None
    tindex: int = 0
    tpostings: list[PostingSchema] = Field(default_factory=list)
    tsourcepos: SourcePosSchema | list[SourcePosSchema] | None = None
    tstatus: str = "Unmarked"
    tcode: str = ""

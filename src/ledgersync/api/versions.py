"""Protocol versions and the order in which they are probed."""

import re
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class ApiVersion(Enum):
    """hledger-web JSON protocol versions, named after the release that introduced them."""

    V1_50 = "1.50"
    V1_40 = "1.40"
    V1_32 = "1.32"
    V1_23 = "1.23"
    V1_19_1 = "1.19.1"
    V1_15 = "1.15"
    V1_14 = "1.14"

    @property
    def release(self) -> tuple[int, ...]:
        return tuple(int(part) for part in self.value.split("."))

    @property
    def uses_string_transaction_ids(self) -> bool:
        """``ptransaction_`` is a string from 1.32 on, an integer before."""
        return self.release >= (1, 32)

    @property
    def uses_source_range(self) -> bool:
        """``tsourcepos`` is a start/end pair from 1.50 on, one position before."""
        return self.release >= (1, 50)

    @property
    def uses_period_balances(self) -> bool:
        """Account balances live under ``adata.pdperiods`` from 1.50 on."""
        return self.release >= (1, 50)


class AutoSelector(BaseModel):
    """Probe every known JSON version, newest first, then fall back to HTML."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["auto"] = "auto"


class ExplicitSelector(BaseModel):
    """Use one JSON version; fall back to HTML only when it is unsupported."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["explicit"] = "explicit"
    version: ApiVersion


class LegacyHtmlSelector(BaseModel):
    """Skip JSON entirely and scrape/submit the HTML pages."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["html"] = "html"


ProtocolSelector = Annotated[
    AutoSelector | ExplicitSelector | LegacyHtmlSelector,
    Field(discriminator="kind"),
]


class VersionCatalog:
    """Ordered list of JSON protocol versions, newest to oldest.

    The HTML form/scrape protocol is the implicit last resort after every
    candidate returned by :meth:`candidates`.
    """

    def __init__(self, versions: list[ApiVersion] | None = None):
        if versions is None:
            versions = sorted(ApiVersion, key=lambda v: v.release, reverse=True)
        self.versions: tuple[ApiVersion, ...] = tuple(versions)

    def candidates(
        self, selector: AutoSelector | ExplicitSelector | LegacyHtmlSelector
    ) -> list[ApiVersion]:
        """Return the JSON versions to try for ``selector``, in order."""
        if isinstance(selector, LegacyHtmlSelector):
            return []
        if isinstance(selector, ExplicitSelector):
            return [selector.version]
        return list(self.versions)

    def newest_not_after(self, release: tuple[int, ...]) -> ApiVersion | None:
        """Return the newest catalog version not newer than ``release``."""
        for version in self.versions:
            if version.release <= release:
                return version
        return None


DEFAULT_CATALOG = VersionCatalog()

_RELEASE_RE = re.compile(r"^(\d+)\.(\d+)(?:\.(\d+))?$")


def parse_selector(value: str) -> AutoSelector | ExplicitSelector | LegacyHtmlSelector:
    """Parse a selector name: ``auto``, ``html`` or a version such as ``1.32``.

    Raises:
        ValueError: If ``value`` names no known selector or version
    """
    value = value.strip().lower()
    if value == "auto":
        return AutoSelector()
    if value in ("html", "legacy"):
        return LegacyHtmlSelector()
    for version in ApiVersion:
        if version.value == value:
            return ExplicitSelector(version=version)
    raise ValueError(
        f"Unknown API version: {value}. "
        f"Use auto, html or one of: {', '.join(v.value for v in ApiVersion)}"
    )


def parse_release(value: str) -> tuple[int, ...] | None:
    """Parse ``"1.32"`` or ``"1.32.1"`` into a tuple; None when malformed."""
    m = _RELEASE_RE.match(value.strip())
    if not m:
        return None
    return tuple(int(g) for g in m.groups() if g is not None)

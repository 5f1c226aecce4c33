"""Shared pytest fixtures for ledgersync tests.

This module provides a scripted stand-in for the HTTP transport, sample
profiles and helpers building hledger-web JSON payloads for the supported
protocol versions.
"""

import asyncio
from collections.abc import Generator
from typing import Any

import pytest

from ledgersync.config import clear_settings_cache
from ledgersync.models import FormPostResponse, Profile


class FakeHledgerClient:
    """Scripted transport recording every request.

    ``get_responses`` maps a path to a body or an exception. PUT and POST
    responses are consumed in order; a missing PUT response means success.
    A GET of a path in ``blocked`` waits for that event before answering;
    GETs cancelled while waiting are listed in ``abandoned``.
    """

    def __init__(self) -> None:
        self.get_responses: dict[str, str | Exception] = {}
        self.put_responses: list[Exception | None] = []
        self.post_responses: list[FormPostResponse | Exception] = []
        self.calls: list[dict[str, Any]] = []
        self.closed = 0
        self.blocked: dict[str, asyncio.Event] = {}
        self.abandoned: list[str] = []

    async def get(self, profile: Profile, path: str) -> str:
        self.calls.append({"method": "GET", "path": path})
        if path in self.blocked:
            try:
                await self.blocked[path].wait()
            except asyncio.CancelledError:
                self.abandoned.append(path)
                raise
        response = self.get_responses[path]
        if isinstance(response, Exception):
            raise response
        return response

    async def put_json(
        self,
        profile: Profile,
        path: str,
        payload: dict[str, Any],
        simulate: bool = False,
    ) -> None:
        self.calls.append(
            {"method": "PUT", "path": path, "payload": payload, "simulate": simulate}
        )
        if self.put_responses:
            response = self.put_responses.pop(0)
            if response is not None:
                raise response

    async def post_form(
        self,
        profile: Profile,
        path: str,
        fields: list[tuple[str, str]],
        cookies: dict[str, str] | None = None,
        simulate: bool = False,
    ) -> FormPostResponse:
        self.calls.append(
            {
                "method": "POST",
                "path": path,
                "fields": list(fields),
                "cookies": dict(cookies or {}),
                "simulate": simulate,
            }
        )
        response = self.post_responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed += 1

    def calls_by(self, method: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method]


def amount_json(quantity: int, places: int = 2, commodity: str = "EUR") -> dict[str, Any]:
    """Build a wire amount of ``quantity * 10**-places``."""
    return {
        "acommodity": commodity,
        "aquantity": {
            "decimalMantissa": quantity,
            "decimalPlaces": places,
            "floatingPoint": quantity / 10**places,
        },
        "aismultiplier": False,
        "astyle": {
            "ascommodityside": "L",
            "ascommodityspaced": False,
            "asprecision": places,
            "asdecimalmark": ".",
        },
    }


def account_json_v1_40(name: str, amounts: list[dict[str, Any]], postings: int) -> dict[str, Any]:
    return {
        "aname": name,
        "anumpostings": postings,
        "aibalance": amounts,
        "aebalance": amounts,
        "aparent_": "root",
        "asubs_": [],
    }


def account_json_v1_50(name: str, amounts: list[dict[str, Any]], postings: int) -> dict[str, Any]:
    return {
        "aname": name,
        "adeclarationinfo": None,
        "adata": {
            "pdperiods": [
                [
                    "0000-01-01",
                    {
                        "bdincludingsubs": amounts,
                        "bdexcludingsubs": amounts,
                        "bdnumpostings": postings,
                    },
                ]
            ],
            "pdpre": {"bdincludingsubs": [], "bdexcludingsubs": [], "bdnumpostings": 0},
        },
    }


def transaction_json(
    index: int,
    tdate: str,
    description: str,
    postings: list[tuple[str, int | None]],
    string_ids: bool = True,
    source_range: bool = False,
) -> dict[str, Any]:
    """Build a wire transaction; posting amounts are in cents."""
    source_pos = {"sourceName": "ledger.journal", "sourceLine": index, "sourceColumn": 1}
    return {
        "tindex": index,
        "tdate": tdate,
        "tdate2": None,
        "tdescription": description,
        "tcomment": "",
        "tcode": "",
        "tstatus": "Unmarked",
        "tprecedingcomment": "",
        "ttags": [],
        "tsourcepos": [source_pos, source_pos] if source_range else source_pos,
        "tpostings": [
            {
                "paccount": account,
                "pamount": [] if cents is None else [amount_json(cents)],
                "pcomment": "",
                "pstatus": "Unmarked",
                "ptype": "RegularPosting",
                "ptags": [],
                "pbalanceassertion": None,
                "ptransaction_": str(index) if string_ids else index,
            }
            for account, cents in postings
        ],
    }


@pytest.fixture(autouse=True)
def clean_settings_state() -> Generator[None, None, None]:
    """Clear the settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def fake_client() -> FakeHledgerClient:
    """Scripted transport with no responses configured."""
    return FakeHledgerClient()


@pytest.fixture
def profile() -> Profile:
    """A saved profile using automatic protocol detection."""
    return Profile(id=1, url="https://ledger.example.com", default_currency="EUR")

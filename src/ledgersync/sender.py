"""Submission of a new transaction to a ledger server.

The JSON ``PUT /add`` endpoint is tried once per candidate protocol version.
A 400/405 answer means the server does not speak that version and the next
candidate is tried; any other failure ends the call. When no JSON version is
accepted the legacy HTML form is posted instead. That form is protected by a
session cookie and a ``_token`` field, so the first POST usually comes back
as a 200 page carrying a fresh token, and is repeated with it.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from .api.gateway import encode_add_request
from .api.versions import DEFAULT_CATALOG, VersionCatalog
from .classifier import ErrorClassifier
from .config import HttpConfig, get_http_config
from .connectors.hledger_client import (
    ApiNotSupportedError,
    HledgerClient,
    HttpStatusError,
    MissingTokenError,
    RetriesExhaustedError,
)
from .errors import ProfileNotSavedError
from .models import Profile, Transaction
from .sync.legacy_html import extract_form_token

logger = logging.getLogger(__name__)

SESSION_COOKIE = "_SESSION"
FORM_ID = "identify-add"

Sleep = Callable[[float], Awaitable[None]]


def build_form_fields(
    transaction: Transaction, token: str | None, default_currency: str = ""
) -> list[tuple[str, str]]:
    """Fields of the legacy ``add`` form, one account/amount pair per line."""
    fields = [("_formid", FORM_ID)]
    if token:
        fields.append(("_token", token))
    fields.append(("date", transaction.date.isoformat()))
    fields.append(("description", transaction.description))
    for line in transaction.lines:
        fields.append(("account", line.account_name))
        fields.append(
            ("amount", f"{line.amount:1.2f}" if line.amount is not None else "")
        )
        fields.append(("currency", line.currency or default_currency))
        fields.append(("comment", line.comment or ""))
    return fields


class TransactionSender:
    """Sends transactions, negotiating the protocol with the server.

    A client the sender creates is released by :meth:`close`; an injected
    client is left to its owner.
    """

    def __init__(
        self,
        client: HledgerClient | None = None,
        catalog: VersionCatalog = DEFAULT_CATALOG,
        classifier: ErrorClassifier | None = None,
        config: HttpConfig | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config or get_http_config()
        self._owns_client = client is None
        self.client = client or HledgerClient(self.config)
        self.catalog = catalog
        self.classifier = classifier or ErrorClassifier()
        self.sleep = sleep

    def close(self) -> None:
        """Release the HTTP client if this sender created it."""
        if self._owns_client:
            self.client.close()

    async def send(
        self, profile: Profile, transaction: Transaction, simulate: bool = False
    ) -> None:
        """Submit ``transaction`` to ``profile``'s server.

        Args:
            profile: Saved profile of the target server
            transaction: Transaction to add
            simulate: Log the requests instead of sending them

        Raises:
            ProfileNotSavedError: If the profile has no id; nothing is sent
            AppException: With one tagged error for any other failure
        """
        if not profile.is_saved:
            raise ProfileNotSavedError("Cannot send a transaction for an unsaved profile")

        try:
            for version in self.catalog.candidates(profile.api):
                logger.debug(f"Trying protocol {version.value}")
                payload = encode_add_request(
                    version, transaction, profile.default_currency
                )
                try:
                    await self.client.put_json(profile, "add", payload, simulate)
                except ApiNotSupportedError as e:
                    logger.debug(f"Protocol {version.value} not supported: {e}")
                    continue
                logger.info(f"Transaction sent using protocol {version.value}")
                return

            logger.debug("Trying HTML form emulation")
            await self._send_form(profile, transaction, simulate)
            logger.info("Transaction sent using the HTML form")
        except Exception as e:
            logger.warning(f"Error sending transaction to {profile.url}: {e}")
            raise self.classifier.to_exception(e)

    async def _send_form(
        self, profile: Profile, transaction: Transaction, simulate: bool
    ) -> None:
        token: str | None = None
        cookies: dict[str, str] = {}
        max_attempts = self.config.max_retries

        for attempt in range(1, max_attempts + 1):
            fields = build_form_fields(transaction, token, profile.default_currency)
            response = await self.client.post_form(
                profile, "add", fields, cookies, simulate
            )
            logger.debug(f"Form attempt {attempt}: HTTP {response.status_code}")

            if response.status_code == 303:
                return
            if response.status_code != 200:
                raise HttpStatusError(response.status_code)

            session = response.cookies.get(SESSION_COOKIE)
            if session:
                cookies = {SESSION_COOKIE: session}
            else:
                logger.warning("Response has no _SESSION cookie")

            token = extract_form_token(response.body)
            if token is None:
                raise MissingTokenError()

            if attempt < max_attempts:
                await self.sleep(self.config.retry_delay)

        raise RetriesExhaustedError(max_attempts)

"""Account list retrieval over the JSON API."""

import json
import logging

from ..api.gateway import WireFormatError, decode_accounts
from ..api.versions import DEFAULT_CATALOG, VersionCatalog
from ..connectors.hledger_client import HledgerClient, NotFoundError
from ..models import AccountFetchResult, Profile, ensure_parent_accounts

logger = logging.getLogger(__name__)


class AccountListFetcher:
    """Reads ``GET /accounts`` and decodes it with the first matching version."""

    def __init__(self, client: HledgerClient, catalog: VersionCatalog = DEFAULT_CATALOG):
        self.client = client
        self.catalog = catalog

    async def fetch(self, profile: Profile) -> AccountFetchResult | None:
        """Fetch the account list.

        Returns:
            AccountFetchResult, or None when the server has no usable JSON
            account endpoint (HTTP 404, HTML-only selector, or a body that
            no candidate version decodes). Other failures propagate.
        """
        candidates = self.catalog.candidates(profile.api)
        if not candidates:
            logger.debug("Declining JSON API for accounts with legacy HTML selector")
            return None

        try:
            body = await self.client.get(profile, "accounts")
        except NotFoundError:
            logger.info(f"{profile.url} has no JSON account list")
            return None

        try:
            data = json.loads(body)
        except ValueError:
            logger.info("Account list response is not JSON")
            return None

        for version in candidates:
            try:
                accounts, expected = decode_accounts(version, data)
            except WireFormatError as e:
                logger.debug(f"Account list is not protocol {version.value}: {e}")
                continue

            logger.info(f"Got {len(accounts)} accounts using protocol {version.value}")
            return AccountFetchResult(
                accounts=ensure_parent_accounts(accounts), expected_count=expected
            )

        logger.warning("No known protocol version matches the account list")
        return None

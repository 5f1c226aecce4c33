"""Detection of the hledger-web release behind a URL."""

import logging
import re

from .api.versions import (
    DEFAULT_CATALOG,
    AutoSelector,
    ExplicitSelector,
    LegacyHtmlSelector,
    VersionCatalog,
    parse_release,
)
from .classifier import ErrorClassifier
from .connectors.hledger_client import HledgerClient, NotFoundError
from .models import Profile

logger = logging.getLogger(__name__)

PRE_1_19 = "pre-1.19"

_VERSION_RE = re.compile(r'^"?(\d+)\.(\d+)(?:\.(\d+))?"?$')


class VersionFormatError(ValueError):
    """The ``/version`` response is not a version string."""


def parse_version(body: str) -> str:
    """Reduce a ``/version`` body such as ``"1.32.1"`` to ``1.32``.

    Raises:
        VersionFormatError: If the first line is not a version string
    """
    first_line = body.strip().splitlines()[0] if body.strip() else ""
    m = _VERSION_RE.match(first_line.strip())
    if m is None:
        raise VersionFormatError(f"Version string format not recognized: {first_line}")
    return f"{m.group(1)}.{m.group(2)}"


class VersionDetector:
    """Asks a server for its release; servers older than 1.19 have no endpoint."""

    def __init__(
        self,
        client: HledgerClient | None = None,
        catalog: VersionCatalog = DEFAULT_CATALOG,
        classifier: ErrorClassifier | None = None,
    ):
        self._owns_client = client is None
        self.client = client or HledgerClient()
        self.catalog = catalog
        self.classifier = classifier or ErrorClassifier()

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    async def detect(
        self,
        url: str,
        auth_user: str | None = None,
        auth_password: str | None = None,
    ) -> str:
        """Return ``major.minor`` of the server at ``url``, or ``"pre-1.19"``.

        Raises:
            AppException: If the server cannot be reached or answers nonsense
        """
        logger.debug(f"Detecting version for {url}")
        profile = Profile(url=url, auth_user=auth_user, auth_password=auth_password)
        try:
            body = await self.client.get(profile, "version")
            version = parse_version(body)
        except NotFoundError:
            logger.info("Version endpoint not found, assuming pre-1.19")
            return PRE_1_19
        except Exception as e:
            logger.warning(f"Version detection failed: {e}")
            raise self.classifier.to_exception(e)

        logger.info(f"Detected version {version}")
        return version

    def suggest_selector(
        self, version: str
    ) -> AutoSelector | ExplicitSelector | LegacyHtmlSelector:
        """Pick the protocol selector matching a detected version.

        Unknown or pre-1.19 servers get automatic probing; releases older than
        every catalog version get the HTML protocol.
        """
        release = parse_release(version)
        if release is None:
            return AutoSelector()
        match = self.catalog.newest_not_after(release)
        if match is None:
            return LegacyHtmlSelector()
        return ExplicitSelector(version=match)

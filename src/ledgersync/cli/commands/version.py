"""Server version detection command."""

import asyncio
import logging

import typer

from ...api.versions import ExplicitSelector
from ...errors import AppException
from ...version_detector import VersionDetector
from ..options import PasswordOption, UrlArgument, UserOption

logger = logging.getLogger(__name__)


def version_command(
    url: UrlArgument,
    user: UserOption = None,
    password: PasswordOption = None,
) -> None:
    """Detect the hledger-web release of a server.

    Prints the detected version and the --api value to use with it.

    Example:
        ledgersync version https://ledger.example.com
    """
    detector = VersionDetector()
    try:
        version = asyncio.run(detector.detect(url, user, password))
    except AppException as e:
        logger.error(f"❌ Version detection failed: {e}")
        raise typer.Exit(1) from e
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="URL") from e
    finally:
        detector.close()

    selector = detector.suggest_selector(version)
    if isinstance(selector, ExplicitSelector):
        suggested = selector.version.value
    else:
        suggested = selector.kind

    print(f"Server version: {version}")
    print(f"Suggested --api: {suggested}")

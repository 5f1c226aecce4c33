"""Options shared by the commands that talk to a server."""

from typing import Annotated

import typer
from pydantic import ValidationError

from ..api.versions import parse_selector
from ..config import get_settings
from ..models import Profile

UrlArgument = Annotated[str, typer.Argument(help="Base URL of the hledger-web server")]
UserOption = Annotated[
    str | None,
    typer.Option("--user", "-u", help="HTTP basic-auth user", envvar="LEDGERSYNC_USER"),
]
PasswordOption = Annotated[
    str | None,
    typer.Option(
        "--password",
        help="HTTP basic-auth password",
        envvar="LEDGERSYNC_PASSWORD",
        hide_input=True,
    ),
]
ApiOption = Annotated[
    str,
    typer.Option(
        "--api",
        help="Protocol: auto, html, or a version such as 1.32",
    ),
]
CurrencyOption = Annotated[
    str | None,
    typer.Option("--currency", help="Default currency for lines without one"),
]
ProfileIdOption = Annotated[
    int,
    typer.Option("--profile-id", help="Identity of the profile in your profile store"),
]


def build_profile(
    url: str,
    user: str | None,
    password: str | None,
    api: str,
    currency: str | None,
    profile_id: int | None,
) -> Profile:
    """Build a profile from command-line options.

    Raises:
        typer.BadParameter: If the URL or API selector is invalid
    """
    try:
        selector = parse_selector(api)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--api") from e

    if currency is None:
        currency = get_settings().default_currency

    try:
        return Profile(
            id=profile_id,
            url=url,
            auth_user=user,
            auth_password=password,
            api=selector,
            default_currency=currency,
        )
    except ValidationError as e:
        raise typer.BadParameter(str(e), param_hint="URL") from e

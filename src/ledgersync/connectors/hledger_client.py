"""HTTP transport for hledger-web servers.

The client wraps a ``requests.Session`` and exposes the three request shapes
the engine needs: plain GETs (JSON or HTML bodies), JSON PUTs to ``add`` and
urlencoded form POSTs to the legacy ``add`` form. Status codes are mapped to
the typed exceptions below; ``requests`` exceptions (timeouts, refused
connections) propagate unchanged and are tagged by the classifier.

``requests`` is blocking, so every call runs in a worker thread through
``asyncio.to_thread``. Cancelling the awaiting task aborts the request: its
socket is shut down so the worker thread returns at once.
:meth:`HledgerClient.close` drops the pooled connections.
"""

import asyncio
import json
import logging
from typing import Any

import requests

from ..config import HttpConfig, get_http_config
from ..models import FormPostResponse, Profile
from .abortable import AbortableAdapter, InFlightRequest

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Base class for failures reported by the ledger server."""


class NotFoundError(TransportError):
    """The server has no such endpoint (HTTP 404)."""

    def __init__(self, url: str):
        super().__init__(f"Not found: {url}")
        self.url = url
        self.status_code = 404


class AuthenticationRequiredError(TransportError):
    """The server rejected the credentials (HTTP 401)."""

    def __init__(self, url: str):
        super().__init__(f"Authentication required for {url}")
        self.url = url


class HttpStatusError(TransportError):
    """Any other unexpected HTTP status."""

    def __init__(self, status_code: int, reason: str = ""):
        super().__init__(f"HTTP error {status_code} {reason}".rstrip())
        self.status_code = status_code


class ApiNotSupportedError(TransportError):
    """The server does not understand this JSON request (HTTP 400/405)."""

    def __init__(self, status_code: int):
        super().__init__(f"API not supported (HTTP {status_code})")
        self.status_code = status_code


class MissingTokenError(TransportError):
    """A 200 response to the legacy form carried no ``_token`` field."""

    def __init__(self):
        super().__init__("Can't find _token in the add form response")


class RetriesExhaustedError(TransportError):
    """The legacy form never answered with a redirect."""

    def __init__(self, attempts: int):
        super().__init__(f"aborting after {attempts} attempts")
        self.attempts = attempts


JSON_ACCEPTED = (200, 201, 204)
JSON_UNSUPPORTED = (400, 405)


class HledgerClient:
    """Async-facing ``requests`` transport bound to one HTTP configuration."""

    def __init__(
        self,
        config: HttpConfig | None = None,
        session: requests.Session | None = None,
    ):
        self.config = config or get_http_config()
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": self.config.user_agent})
        adapter = AbortableAdapter()
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)

    @staticmethod
    def build_url(profile: Profile, path: str) -> str:
        return f"{profile.url.rstrip('/')}/{path.lstrip('/')}"

    def _auth(self, profile: Profile) -> tuple[str, str] | None:
        if not profile.use_authentication:
            return None
        return (profile.auth_user or "", profile.auth_password or "")

    async def _request(
        self, method: str, url: str, profile: Profile, **kwargs: Any
    ) -> requests.Response:
        logger.debug(f"{method} {url}")
        in_flight = InFlightRequest()
        try:
            return await asyncio.to_thread(
                in_flight.run,
                self._session.request,
                method,
                url,
                auth=self._auth(profile),
                timeout=self.config.timeout,
                allow_redirects=False,
                **kwargs,
            )
        except asyncio.CancelledError:
            logger.debug(f"Aborting {method} {url}")
            in_flight.abort()
            raise

    async def get(self, profile: Profile, path: str) -> str:
        """GET ``path`` and return the response body.

        Raises:
            NotFoundError: On HTTP 404
            AuthenticationRequiredError: On HTTP 401
            HttpStatusError: On any other non-200 status
        """
        url = self.build_url(profile, path)
        response = await self._request("GET", url, profile)

        if response.status_code == 200:
            return response.text
        if response.status_code == 404:
            raise NotFoundError(url)
        if response.status_code == 401:
            raise AuthenticationRequiredError(url)
        raise HttpStatusError(response.status_code, response.reason or "")

    async def put_json(
        self,
        profile: Profile,
        path: str,
        payload: dict[str, Any],
        simulate: bool = False,
    ) -> None:
        """PUT a JSON document.

        With ``simulate`` the request is logged and nothing is sent.

        Raises:
            ApiNotSupportedError: On HTTP 400 or 405
            AuthenticationRequiredError: On HTTP 401
            HttpStatusError: On any other non-2xx status
        """
        url = self.build_url(profile, path)
        body = json.dumps(payload)
        if simulate:
            logger.info(f"Simulated PUT {url}: {body}")
            return

        response = await self._request(
            "PUT",
            url,
            profile,
            data=body.encode("utf-8"),
            headers={"Content-Type": "application/json"},
        )
        if response.status_code in JSON_ACCEPTED:
            return
        if response.status_code in JSON_UNSUPPORTED:
            raise ApiNotSupportedError(response.status_code)
        if response.status_code == 401:
            raise AuthenticationRequiredError(url)
        raise HttpStatusError(response.status_code, response.reason or "")

    async def post_form(
        self,
        profile: Profile,
        path: str,
        fields: list[tuple[str, str]],
        cookies: dict[str, str] | None = None,
        simulate: bool = False,
    ) -> FormPostResponse:
        """POST an urlencoded form without following redirects.

        The caller interprets the status code; only 401 is raised here. With
        ``simulate`` the form is logged and a 303 response is returned.

        Raises:
            AuthenticationRequiredError: On HTTP 401
        """
        url = self.build_url(profile, path)
        if simulate:
            logger.info(f"Simulated POST {url}: {fields}")
            return FormPostResponse(status_code=303)

        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if cookies:
            headers["Cookie"] = "; ".join(f"{k}={v}" for k, v in cookies.items())

        response = await self._request(
            "POST", url, profile, data=fields, headers=headers
        )
        if response.status_code == 401:
            raise AuthenticationRequiredError(url)

        return FormPostResponse(
            status_code=response.status_code,
            body=response.text,
            cookies=response.cookies.get_dict(),
        )

    def close(self) -> None:
        """Release pooled connections."""
        self._session.close()

"""
HTTP client for the contact directory (student-management system).

Every request carries the two static auth headers (apitoken / wstoken) and a
bounded timeout. Calls are issued one at a time by the caller; nothing here
retries.
"""

import logging
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from notebridge.config import Settings

logger = logging.getLogger(__name__)

CONTACT_LOOKUP_PATH = "/api/contacts"
CONTACT_SEARCH_PATH = "/api/contacts/search"
CONTACT_NOTE_PATH = "/api/contact/note"

_ERROR_BODY_LIMIT = 500


class DirectoryError(Exception):
    """Base class for directory call failures."""

    def __init__(self, message: str, url: str):
        super().__init__(message)
        self.url = url


class DirectoryRequestError(DirectoryError):
    """The directory answered with a non-2xx status (or an unreadable body)."""

    def __init__(self, url: str, status_code: int, body: str = ""):
        super().__init__(f"Directory returned {status_code} for {url}", url)
        self.status_code = status_code
        self.body = body


class DirectoryTransportError(DirectoryError):
    """Network failure or timeout; no response was received."""

    def __init__(self, url: str, cause: Exception):
        super().__init__(f"Directory request to {url} failed: {cause!r}", url)
        self.cause = cause


def as_records(data: Any) -> list[dict]:
    """Normalize a directory response into a list of record dicts."""
    if isinstance(data, dict):
        for key in ("rows", "data", "contacts"):
            if isinstance(data.get(key), list):
                data = data[key]
                break
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


class DirectoryClient:
    """Async client for the directory's contact endpoints."""

    def __init__(
        self,
        base_url: str,
        api_token: str,
        ws_token: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            headers={
                "apitoken": api_token,
                "wstoken": ws_token,
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "DirectoryClient":
        return cls(
            settings.directory_base_url or "",
            settings.directory_api_token or "",
            settings.directory_ws_token or "",
            timeout=settings.request_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "DirectoryClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def build_url(self, path: str, params: Optional[dict] = None) -> str:
        url = f"{self.base_url}{path}"
        if params:
            url = f"{url}?{urlencode(params)}"
        return url

    async def get_json(self, path: str, params: Optional[dict] = None) -> tuple[str, Any]:
        """
        GET a JSON document.

        Returns (url, parsed_json). Raises DirectoryRequestError on a non-2xx
        status or a body that is not JSON, DirectoryTransportError on network
        failure or timeout.
        """
        url = self.build_url(path, params)
        try:
            response = await self._client.get(url)
        except httpx.RequestError as exc:
            logger.error("Directory GET failed: %s (%s)", url, type(exc).__name__)
            raise DirectoryTransportError(url, exc) from exc

        if not response.is_success:
            logger.error("Directory GET %s returned %s", url, response.status_code)
            raise DirectoryRequestError(
                url, response.status_code, response.text[:_ERROR_BODY_LIMIT]
            )

        try:
            return url, response.json()
        except ValueError:
            logger.error("Directory GET %s returned a non-JSON body", url)
            raise DirectoryRequestError(
                url, response.status_code, response.text[:_ERROR_BODY_LIMIT]
            )

    async def post_form(self, path: str, form: dict[str, str]) -> httpx.Response:
        """
        POST form-encoded data and return the response whatever its status.

        Raises DirectoryTransportError when no response was received.
        """
        url = self.build_url(path)
        try:
            return await self._client.post(url, data=form)
        except httpx.RequestError as exc:
            logger.error("Directory POST failed: %s (%s)", url, type(exc).__name__)
            raise DirectoryTransportError(url, exc) from exc

    # -- contact endpoints ---------------------------------------------------

    async def lookup_contacts_by_email(self, email: str) -> tuple[str, list[dict]]:
        """Exact-lookup endpoint: contacts whose address equals `email`."""
        url, data = await self.get_json(CONTACT_LOOKUP_PATH, {"emailAddress": email})
        return url, as_records(data)

    async def search_contacts(
        self,
        param: str,
        value: str,
        *,
        offset: int = 0,
        page_size: int = 100,
    ) -> tuple[str, list[dict]]:
        """One page of the free-text search endpoint, filtered by `param`."""
        params = {param: value, "displayLength": page_size, "offset": offset}
        url, data = await self.get_json(CONTACT_SEARCH_PATH, params)
        return url, as_records(data)

    async def create_note(self, contact_id: str, note: str) -> httpx.Response:
        """Attach a note to a contact (form-encoded POST)."""
        return await self.post_form(
            CONTACT_NOTE_PATH,
            {"contactID": str(contact_id), "contactNote": note},
        )

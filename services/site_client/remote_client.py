"""HTTP client for the Remote Content API."""

import logging
from typing import List, Optional
from urllib.parse import quote

import httpx

from shared.models import ContentType
from services.site_client.config import DataServiceConfig
from services.site_client.retry import retry_with_exponential_backoff

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """Base class for Remote Content API failures."""


class RemoteUnavailable(RemoteError):
    """The API could not be reached (connection error, timeout)."""


class RemoteHTTPError(RemoteError):
    """The API answered with a non-2xx status or an unsuccessful envelope."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message

    @property
    def is_rejection(self) -> bool:
        """A 4xx other than 401: sending the same request again cannot succeed."""
        return 400 <= self.status_code < 500 and self.status_code != 401


class RemoteServerError(RemoteHTTPError):
    """5xx response; retried."""


class AuthenticationRequired(RemoteHTTPError):
    """401 response; terminal, never retried."""


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or "Unknown error"
    if isinstance(body, dict):
        return body.get("message") or body.get("detail") or "Unknown error"
    return "Unknown error"


def _unwrap(body):
    """Return the payload of a {success, message, data} envelope."""
    if isinstance(body, dict):
        return body.get("data")
    return body


class RemoteContentClient:
    """Calls the per-content-type CRUD endpoints of the Content API."""

    def __init__(self, config: DataServiceConfig, http_client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the remote client.

        Args:
            config: Data service configuration (base URL, API key, retry policy)
            http_client: Optional pre-built client, e.g. with a mock transport
        """
        self.config = config
        self.http_client = http_client or httpx.AsyncClient(
            base_url=config.api_base_url,
            timeout=config.timeout
        )
        self._request = retry_with_exponential_backoff(
            max_attempts=config.max_retries,
            initial_delay=config.retry_delay,
            exponential_base=config.retry_backoff,
            exceptions=(RemoteUnavailable, RemoteServerError)
        )(self._request_once)

    async def _request_once(self, method: str, path: str, json=None, params=None):
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["X-API-Key"] = self.config.api_key

        try:
            response = await self.http_client.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.HTTPError as e:
            raise RemoteUnavailable(f"{method} {path} failed: {e}") from e

        if response.status_code == 401:
            raise AuthenticationRequired(401, _error_message(response))
        if response.status_code >= 500:
            raise RemoteServerError(response.status_code, _error_message(response))
        if not response.is_success:
            raise RemoteHTTPError(response.status_code, _error_message(response))

        try:
            body = response.json()
        except ValueError:
            raise RemoteHTTPError(response.status_code, "Invalid JSON response")

        if isinstance(body, dict) and body.get("success") is False:
            raise RemoteHTTPError(response.status_code, body.get("message") or "Request failed")

        return body

    @staticmethod
    def _path(content_type: ContentType, item_id: Optional[str] = None) -> str:
        path = f"/{content_type.api_path}"
        if item_id is not None:
            path += f"/{quote(str(item_id), safe='')}"
        return path

    async def list(self, content_type: ContentType, published: bool = False) -> List[dict]:
        params = {"published": "true"} if published else None
        body = await self._request("GET", self._path(content_type), params=params)
        return _unwrap(body) or []

    async def get(self, content_type: ContentType, item_id: str) -> Optional[dict]:
        body = await self._request("GET", self._path(content_type, item_id))
        return _unwrap(body) or None

    async def create(self, content_type: ContentType, data: dict) -> Optional[dict]:
        body = await self._request("POST", self._path(content_type), json=data)
        return _unwrap(body) or None

    async def update(self, content_type: ContentType, item_id: str, data: dict) -> Optional[dict]:
        body = await self._request("PUT", self._path(content_type, item_id), json=data)
        return _unwrap(body) or None

    async def delete(self, content_type: ContentType, item_id: str) -> dict:
        body = await self._request("DELETE", self._path(content_type, item_id))
        return _unwrap(body) or {"id": item_id}

    async def aclose(self):
        await self.http_client.aclose()

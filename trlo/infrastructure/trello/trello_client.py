"""Implementation of the BoardApiClient interface for the Trello REST API.

Executes one batch operation per call over a shared httpx.AsyncClient.
Throttling (HTTP 429) is raised as ThrottledError so the retry service can
back off; every other failure becomes an APIError with the status code.
"""

import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from trlo.domain.errors import APIError, ThrottledError
from trlo.domain.interfaces.board_api import BoardApiClient
from trlo.domain.models.common import ApiKey, ApiToken, ResponsePayload
from trlo.infrastructure.trello.endpoints import build_request

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.trello.com/1"
DEFAULT_HTTP_TIMEOUT_S = 30.0


class TrelloClient(BoardApiClient):
    """Trello REST adapter used by the batch scheduler."""

    def __init__(
        self,
        api_key: ApiKey,
        token: ApiToken,
        base_url: str = DEFAULT_BASE_URL,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initializes the Trello client.

        Args:
            api_key: Trello API key.
            token: Trello API token.
            base_url: REST API root.
            http_timeout: Transport-level timeout for a single request.
            transport: Optional httpx transport (e.g. httpx.MockTransport in tests).
        """
        if not api_key or not token:
            raise ValueError("Trello API key and token are required.")
        self._auth = {"key": str(api_key), "token": str(token)}
        self.base_url = base_url.rstrip("/")
        self.http_timeout = http_timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        logger.info(f"TrelloClient initialized for {self.base_url}")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                params=self._auth,
                timeout=self.http_timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def execute(self, operation_type: str, params: Mapping[str, Any]) -> ResponsePayload:
        request = build_request(operation_type, params)
        client = self._get_client()
        logger.debug(f"{request.method} {request.path} ({operation_type})")
        try:
            response = await client.request(
                request.method, request.path, params=request.query or None, json=request.json,
            )
        except httpx.HTTPError as e:
            raise APIError(f"transport error calling Trello: {e}") from e

        if response.status_code == 429:
            raise ThrottledError(retry_after=_retry_after(response))
        if response.status_code >= 400:
            raise APIError(
                f"{response.status_code} {response.reason_phrase}: {_error_text(response)}",
                status_code=response.status_code,
            )
        return ResponsePayload(_decode(response))

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "TrelloClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def _retry_after(response: httpx.Response) -> Optional[float]:
    """Seconds from the Retry-After header, if it is numeric."""
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        logger.debug(f"Ignoring non-numeric Retry-After header: {raw!r}")
        return None


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or "no details"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)


def _decode(response: httpx.Response) -> Dict[str, Any]:
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError as e:
        raise APIError(f"Trello returned a non-JSON body: {response.text[:200]!r}",
                       status_code=response.status_code) from e
    if isinstance(body, dict):
        return body
    if isinstance(body, list):
        return {"items": body}
    return {"value": body}

"""
REST page fetcher for the FORCAM cycle-time API.

One call fetches one page. Retrying is left to the caller's RetryExecutor,
so this module only classifies failures: network errors, timeouts, 429 and
5xx are TransientApiError; other 4xx and undecodable bodies are
ApiRequestError.
"""

from typing import Any
from urllib.parse import urljoin

import requests
from pydantic import BaseModel, Field

from forcam_ingest.core.config import ApiEndpoint, ApiSettings
from forcam_ingest.core.errors import ApiRequestError, TransientApiError
from forcam_ingest.observability.logger import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})

ITEM_KEYS = ("items", "data", "results", "value")
CURSOR_KEYS = ("next", "nextPageToken", "next_page_token", "@odata.nextLink", "links.next")
HAS_MORE_KEYS = ("hasMore", "has_more")
TOTAL_PAGES_KEYS = ("totalPages", "total_pages")


class ApiPage(BaseModel):
    """One decoded page of an endpoint."""

    items: list[Any] = Field(default_factory=list)
    next_page_token: str | None = None
    has_more: bool | None = None
    total_pages: int | None = None


def _dig(body: dict[str, Any], dotted: str) -> Any:
    if dotted in body:
        return body[dotted]
    value: Any = body
    for part in dotted.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def _first(body: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = _dig(body, key)
        if value is not None:
            return value
    return None


def parse_page(body: Any) -> ApiPage:
    """
    Decode a response body into an ApiPage.

    Accepts a bare JSON array or an envelope object.

    Raises:
        ApiRequestError: If the body carries no recognisable item list
    """
    if isinstance(body, list):
        return ApiPage(items=body)
    if not isinstance(body, dict):
        raise ApiRequestError(f"Unexpected response body type: {type(body).__name__}")

    items = _first(body, ITEM_KEYS)
    if items is None:
        items = []
    if not isinstance(items, list):
        raise ApiRequestError("Response item list is not an array")

    cursor = _first(body, CURSOR_KEYS)
    has_more = _first(body, HAS_MORE_KEYS)
    total_pages = _first(body, TOTAL_PAGES_KEYS)

    try:
        total_pages = int(total_pages) if total_pages is not None else None
    except (TypeError, ValueError):
        total_pages = None

    return ApiPage(
        items=items,
        next_page_token=str(cursor) if cursor not in (None, "") else None,
        has_more=bool(has_more) if has_more is not None else None,
        total_pages=total_pages,
    )


class RestApiClient:
    """
    GET-only client for the cycle-time endpoints.

    Args:
        settings: API section of the run settings
        session: requests.Session to use (tests pass a fake)
    """

    def __init__(self, settings: ApiSettings, session: requests.Session | None = None):
        if not settings.base_url or not settings.token:
            raise ApiRequestError("API base_url and token are required")
        self.settings = settings
        self.base_url = settings.base_url.rstrip("/") + "/"
        self.session = session or requests.Session()
        token = f"{settings.auth_scheme} {settings.token}" if settings.auth_scheme else settings.token
        self.session.headers.update({settings.auth_header: token, "Accept": "application/json"})

    def url_for(self, endpoint: ApiEndpoint) -> str:
        return urljoin(self.base_url, endpoint.path.lstrip("/"))

    def fetch_page(
        self,
        endpoint: ApiEndpoint,
        page_token: str | None = None,
        page_number: int = 1,
    ) -> ApiPage:
        """
        Fetch one page of an endpoint.

        A cursor that is an absolute URL (next links) is followed as-is;
        any other cursor is sent as the cursor parameter. Without a cursor
        the page number is sent.

        Args:
            endpoint: Configured endpoint
            page_token: Cursor from the previous page
            page_number: 1-based page number

        Returns:
            ApiPage

        Raises:
            TransientApiError: Network failure, timeout, 408/429/5xx
            ApiRequestError: Other 4xx or an undecodable body
        """
        params: dict[str, Any] | None = dict(endpoint.params)
        if page_token and page_token.startswith(("http://", "https://")):
            url, params = page_token, None
        else:
            url = self.url_for(endpoint)
            if page_token:
                params[self.settings.cursor_param] = page_token
            else:
                params[self.settings.page_param] = page_number
            if endpoint.page_size:
                params[self.settings.page_size_param] = endpoint.page_size

        try:
            response = self.session.get(
                url,
                params=params,
                timeout=self.settings.timeout,
                verify=self.settings.verify_tls,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientApiError(f"GET {url} failed: {e}") from e
        except requests.RequestException as e:
            raise ApiRequestError(f"GET {url} failed: {e}") from e

        if response.status_code in RETRYABLE_STATUS:
            raise TransientApiError(f"GET {url} returned {response.status_code}")
        if response.status_code >= 400:
            raise ApiRequestError(
                f"GET {url} returned {response.status_code}", status_code=response.status_code
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ApiRequestError(f"GET {url} returned a non-JSON body") from e

        page = parse_page(body)
        logger.debug(
            "API page fetched",
            extra={
                "endpoint": endpoint.path,
                "page": page_number,
                "items": len(page.items),
                "has_more": page.has_more,
                "total_pages": page.total_pages,
            },
        )
        return page

    def close(self) -> None:
        self.session.close()

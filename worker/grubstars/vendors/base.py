"""Shared behaviour for provider adapters."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from grubstars.domain.models import Listing, ReviewSnippet

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


class AdapterError(RuntimeError):
    """Base class for provider failures the indexer knows how to report."""


class AdapterConfigurationError(AdapterError):
    """Raised when an adapter is used without credentials."""


class AdapterAPIError(AdapterError):
    """Raised when a provider answers with a non-success status or cannot be reached."""

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class AdapterRateLimitError(AdapterError):
    def __init__(self, source: str, limit: int, current_count: int) -> None:
        super().__init__(f"API rate limit exceeded for {source}: {current_count}/{limit} requests used")
        self.source = source
        self.limit = limit
        self.current_count = current_count


class ProviderAdapter:
    """Translate one provider's API into :class:`Listing` objects.

    Subclasses set ``source_name``, the pagination bounds and ``REQUEST_LIMIT``
    (``None`` means unmetered) and implement the four lookup methods.
    """

    source_name = ""
    page_size = 50
    max_results = 50
    REQUEST_LIMIT: Optional[int] = None

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str,
        session: Optional[requests.Session] = None,
        request_counter=None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._api_key = api_key or ""
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._request_counter = request_counter
        self._timeout = timeout

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def search_area(
        self, location: str, category: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> List[Listing]:
        raise NotImplementedError

    def search_by_name(self, name: str, location: Optional[str] = None, limit: int = 10) -> List[Listing]:
        raise NotImplementedError

    def get_detail(self, provider_id: str) -> Listing:
        raise NotImplementedError

    def get_reviews(self, provider_id: str) -> List[ReviewSnippet]:
        raise NotImplementedError

    # ---------- quota ----------

    @property
    def request_counter(self):
        if self._request_counter is None:
            from grubstars.core.request_counter import RequestCounter

            self._request_counter = RequestCounter()
        return self._request_counter

    def request_count(self) -> int:
        return self.request_counter.get_count(self.source_name)

    def remaining_requests(self) -> Optional[int]:
        if self.REQUEST_LIMIT is None:
            return None
        return max(self.REQUEST_LIMIT - self.request_count(), 0)

    def usage(self) -> Dict[str, Any]:
        count = self.request_count()
        limit = self.REQUEST_LIMIT
        return {
            "name": self.source_name,
            "configured": self.is_configured(),
            "request_count": count,
            "request_limit": limit,
            "remaining": self.remaining_requests(),
            "usage_percent": round(count / limit * 100, 1) if limit else None,
        }

    def _track_request(self) -> None:
        if self.REQUEST_LIMIT is None:
            return
        current = self.request_count()
        if current >= self.REQUEST_LIMIT:
            raise AdapterRateLimitError(self.source_name, self.REQUEST_LIMIT, current)
        self.request_counter.increment(self.source_name)

    # ---------- HTTP ----------

    def _ensure_configured(self) -> None:
        if not self.is_configured():
            raise AdapterConfigurationError(f"{self.source_name} API key is not configured")

    def strip_prefix(self, provider_id: str) -> str:
        prefix = f"{self.source_name}:"
        return provider_id[len(prefix):] if provider_id.startswith(prefix) else provider_id

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None) -> Any:
        """Issue a metered GET and return the decoded JSON body."""
        self._ensure_configured()
        self._track_request()

        url = f"{self._base_url}/{path.lstrip('/')}"
        try:
            response = self._session.get(url, params=params, headers=headers, timeout=self._timeout)
        except requests.RequestException as exc:
            logger.error("%s request to %s failed: %s", self.source_name, path, exc)
            raise AdapterAPIError(f"{self.source_name} request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = response.text

        if response.status_code >= 400:
            message = self._error_message(payload)
            logger.error("%s API error: status=%s message=%s", self.source_name, response.status_code, message)
            raise AdapterAPIError(
                f"{self.source_name} API error: {message}", status=response.status_code, body=payload
            )
        if not isinstance(payload, (dict, list)):
            logger.error("%s returned a non-JSON body: status=%s", self.source_name, response.status_code)
            raise AdapterAPIError(
                f"{self.source_name} returned an unexpected response body",
                status=response.status_code,
                body=response.text,
            )
        return payload

    def _error_message(self, payload: Any) -> str:
        if isinstance(payload, dict):
            error = payload.get("error")
            if isinstance(error, dict):
                return str(error.get("description") or error.get("message") or error)
            return str(payload.get("message") or error or payload)
        return str(payload)

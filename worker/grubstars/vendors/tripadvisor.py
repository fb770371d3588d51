"""Client for the TripAdvisor Content API."""

import logging
from typing import List, Optional

import requests

from grubstars.domain.models import Listing, ReviewSnippet
from grubstars.etl.transform import (
    tripadvisor_location_to_listing,
    tripadvisor_photo_urls,
    tripadvisor_review_to_snippet,
)
from grubstars.vendors.base import AdapterAPIError, ProviderAdapter

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://api.content.tripadvisor.com/api/v1"


class TripAdvisorAdapter(ProviderAdapter):
    source_name = "tripadvisor"
    # location/search returns at most ten results and has no paging.
    page_size = 10
    max_results = 10

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = _BASE_URL,
        session: Optional[requests.Session] = None,
        request_counter=None,
        timeout: float = 10,
    ) -> None:
        super().__init__(api_key, base_url, session or _SESSION, request_counter, timeout)

    def search_area(
        self, location: str, category: Optional[str] = None, limit: int = 10, offset: int = 0
    ) -> List[Listing]:
        query = f"{category} in {location}" if category else f"restaurants in {location}"
        return self._search(query)[offset:offset + limit]

    def search_by_name(self, name: str, location: Optional[str] = None, limit: int = 10) -> List[Listing]:
        query = f"{name} in {location}" if location else name
        return self._search(query)[:limit]

    def get_detail(self, provider_id: str) -> Listing:
        location_id = self.strip_prefix(provider_id)
        payload = self._get(f"location/{location_id}/details", params=self._params())
        listing = tripadvisor_location_to_listing(payload)
        listing.photos = self.get_photos(location_id)
        return listing

    def get_reviews(self, provider_id: str) -> List[ReviewSnippet]:
        payload = self._get(f"location/{self.strip_prefix(provider_id)}/reviews", params=self._params())
        return [tripadvisor_review_to_snippet(review) for review in payload.get("data") or []]

    def get_photos(self, provider_id: str) -> List[str]:
        """Photos are optional decoration; a failing photos call yields none."""
        try:
            payload = self._get(f"location/{self.strip_prefix(provider_id)}/photos", params=self._params())
        except AdapterAPIError as exc:
            logger.warning("TripAdvisor photos unavailable for %s: %s", provider_id, exc)
            return []
        return tripadvisor_photo_urls(payload.get("data") or [])

    def _search(self, query: str) -> List[Listing]:
        params = self._params()
        params["searchQuery"] = query
        params["category"] = "restaurants"
        payload = self._get("location/search", params=params)
        return [tripadvisor_location_to_listing(item) for item in payload.get("data") or []]

    def _params(self):
        return {"key": self._api_key, "language": "en"}

"""Client for the Google Places API."""

import logging
import time
from typing import Any, Dict, List, Optional

import requests

from grubstars.domain.models import Listing, ReviewSnippet
from grubstars.etl.transform import google_place_to_listing, google_review_to_snippet
from grubstars.vendors.base import AdapterAPIError, ProviderAdapter

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://maps.googleapis.com/maps/api/place"

# Google rejects a next_page_token that is used too quickly.
PAGE_TOKEN_DELAY_SECONDS = 2.5

DETAIL_FIELDS = (
    "place_id,name,formatted_address,formatted_phone_number,geometry,rating,"
    "user_ratings_total,types,photos"
)


class GooglePlacesAdapter(ProviderAdapter):
    source_name = "google"
    page_size = 60
    max_results = 60
    REQUEST_LIMIT = 10_000

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = _BASE_URL,
        session: Optional[requests.Session] = None,
        request_counter=None,
        timeout: float = 10,
    ) -> None:
        super().__init__(api_key, base_url, session or _SESSION, request_counter, timeout)

    def text_search(self, query: str, pagetoken: Optional[str] = None) -> Dict[str, Any]:
        params = {"query": query, "key": self._api_key}
        if pagetoken:
            params["pagetoken"] = pagetoken
        return self._checked(self._get("textsearch/json", params=params), "text_search")

    def place_details(self, place_id: str, fields: str = DETAIL_FIELDS) -> Dict[str, Any]:
        params = {"place_id": place_id, "key": self._api_key, "fields": fields}
        payload = self._checked(self._get("details/json", params=params), "place_details")
        return payload.get("result", {})

    def search_area(
        self, location: str, category: Optional[str] = None, limit: int = 60, offset: int = 0
    ) -> List[Listing]:
        query = f"{category} in {location}" if category else f"restaurants in {location}"
        wanted = min(offset + limit, self.max_results)
        results: List[Dict[str, Any]] = []
        page_token = None

        while len(results) < wanted:
            if page_token:
                time.sleep(PAGE_TOKEN_DELAY_SECONDS)
            response = self.text_search(query, pagetoken=page_token)
            results.extend(response.get("results", []))
            logger.info("Fetched %d Google results for %s", len(results), query)
            page_token = response.get("next_page_token")
            if not page_token:
                break

        return [self._to_listing(result) for result in results[offset:wanted] if result.get("place_id")]

    def search_by_name(self, name: str, location: Optional[str] = None, limit: int = 10) -> List[Listing]:
        query = f"{name} in {location}" if location else name
        response = self.text_search(query)
        return [self._to_listing(result) for result in response.get("results", [])[:limit]]

    def get_detail(self, provider_id: str) -> Listing:
        return self._to_listing(self.place_details(self.strip_prefix(provider_id)))

    def get_reviews(self, provider_id: str) -> List[ReviewSnippet]:
        result = self.place_details(self.strip_prefix(provider_id), fields="reviews")
        return [google_review_to_snippet(review) for review in result.get("reviews") or []]

    def _to_listing(self, result: Dict[str, Any]) -> Listing:
        return google_place_to_listing(result, base_url=self._base_url, api_key=self._api_key)

    def _checked(self, payload: Dict[str, Any], operation: str) -> Dict[str, Any]:
        # Places reports most failures with HTTP 200 and a status field.
        status = payload.get("status")
        if status not in {"OK", "ZERO_RESULTS"}:
            logger.error("%s failed: status=%s, error_message=%s", operation, status, payload.get("error_message"))
            http_status = 429 if status == "OVER_QUERY_LIMIT" else None
            raise AdapterAPIError(
                f"google API error: {payload.get('error_message') or status}", status=http_status, body=payload
            )
        return payload

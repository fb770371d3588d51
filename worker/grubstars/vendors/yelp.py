"""Client for the Yelp Fusion API."""

import logging
from typing import Any, Dict, List, Optional

import requests

from grubstars.domain.models import Listing, ReviewSnippet
from grubstars.etl.transform import yelp_business_to_listing, yelp_review_to_snippet
from grubstars.vendors.base import ProviderAdapter

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://api.yelp.com/v3"


class YelpAdapter(ProviderAdapter):
    source_name = "yelp"
    page_size = 50
    # Yelp refuses offset + limit beyond 240 on the search endpoint.
    max_results = 240
    REQUEST_LIMIT = 5000

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
        self, location: str, category: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> List[Listing]:
        params: Dict[str, Any] = {
            "location": location,
            "limit": min(limit, self.page_size),
            "offset": offset,
        }
        if category:
            # term handles free text such as "bubble tea"; categories only
            # accepts Yelp aliases and silently ignores anything else.
            params["term"] = category
            params["categories"] = category
        payload = self._get("businesses/search", params=params, headers=self._headers())
        return [yelp_business_to_listing(biz) for biz in payload.get("businesses", [])]

    def search_by_name(self, name: str, location: Optional[str] = None, limit: int = 10) -> List[Listing]:
        params: Dict[str, Any] = {"term": name, "limit": min(limit, self.page_size)}
        if location:
            params["location"] = location
        payload = self._get("businesses/search", params=params, headers=self._headers())
        return [yelp_business_to_listing(biz) for biz in payload.get("businesses", [])]

    def get_detail(self, provider_id: str) -> Listing:
        payload = self._get(f"businesses/{self.strip_prefix(provider_id)}", headers=self._headers())
        return yelp_business_to_listing(payload)

    def get_reviews(self, provider_id: str) -> List[ReviewSnippet]:
        payload = self._get(f"businesses/{self.strip_prefix(provider_id)}/reviews", headers=self._headers())
        return [yelp_review_to_snippet(review) for review in payload.get("reviews", [])]

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}", "Accept": "application/json"}

"""Index provider listings into the deduplicated restaurant catalog."""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from grubstars.core.config import Settings, get_settings
from grubstars.domain.matcher import Matcher
from grubstars.domain.models import Listing, Restaurant, ReviewSnippet
from grubstars.vendors.base import (
    AdapterAPIError,
    AdapterConfigurationError,
    AdapterError,
    ProviderAdapter,
)

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
DESCRIPTION_LENGTH = 200
CROSS_LINK_LIMIT = 5
LOCK_CELL_DEGREES = 0.01


class NoAdaptersConfigured(RuntimeError):
    """Raised before any work starts when no provider has credentials."""


class RestaurantNotFound(LookupError):
    pass


class UnknownSource(ValueError):
    pass


class IncompleteListing(ValueError):
    """Raised when a listing still has no name after its provider detail is merged in."""


def build_description(reviews: Iterable[ReviewSnippet]) -> Optional[str]:
    """First non-empty review text, cut to ``DESCRIPTION_LENGTH`` characters."""
    for review in reviews:
        text = (review.text or "").strip()
        if not text:
            continue
        if len(text) <= DESCRIPTION_LENGTH:
            return text
        return text[:DESCRIPTION_LENGTH].rstrip() + "..."
    return None


def normalize_area(area: Optional[str]) -> str:
    return re.sub(r"\s+", " ", (area or "").lower()).strip()


def match_lock_keys(item: Any, area: Optional[str]) -> List[str]:
    """Lock keys covering every candidate ``item`` could be matched against.

    Candidates come from a 0.01 degree box around the listing, so taking the
    3x3 block of 0.01 degree cells guarantees two listings that could see each
    other as candidates share at least one key. Coordinate-less listings fall
    back to the area label, which every listing also locks.
    """
    keys = [f"area:{normalize_area(area)}"]
    if item.latitude is not None and item.longitude is not None:
        lat_cell = math.floor(item.latitude / LOCK_CELL_DEGREES)
        lng_cell = math.floor(item.longitude / LOCK_CELL_DEGREES)
        for d_lat in (-1, 0, 1):
            for d_lng in (-1, 0, 1):
                keys.append(f"cell:{lat_cell + d_lat}:{lng_cell + d_lng}")
    return keys


def default_adapters(settings: Optional[Settings] = None) -> List[ProviderAdapter]:
    """Adapters in the order they run; later providers win field overwrites."""
    from grubstars.core.request_counter import RequestCounter
    from grubstars.vendors.google_places import GooglePlacesAdapter
    from grubstars.vendors.tripadvisor import TripAdvisorAdapter
    from grubstars.vendors.yelp import YelpAdapter

    settings = settings or get_settings()
    counter = RequestCounter()
    timeout = settings.provider_timeout_seconds
    return [
        YelpAdapter(settings.yelp_api_key, settings.yelp_api_base_url, request_counter=counter, timeout=timeout),
        GooglePlacesAdapter(
            settings.google_api_key, settings.google_api_base_url, request_counter=counter, timeout=timeout
        ),
        TripAdvisorAdapter(
            settings.tripadvisor_api_key, settings.tripadvisor_api_base_url, request_counter=counter, timeout=timeout
        ),
    ]


def build_indexer(settings: Optional[Settings] = None) -> "Indexer":
    from grubstars.core.catalog_store import CatalogStore

    settings = settings or get_settings()
    return Indexer(
        store=CatalogStore(),
        adapters=default_adapters(settings),
        matcher=Matcher(threshold=settings.match_threshold),
        limit=settings.index_limit,
    )


class Indexer:
    """Fetches listings from every configured provider and resolves them.

    Each listing is matched and written while holding the store's
    ``match_lock`` so concurrent jobs over overlapping areas cannot both decide
    "no match" and create the same restaurant twice.
    """

    def __init__(self, store, adapters: List[ProviderAdapter], matcher: Optional[Matcher] = None, limit: int = DEFAULT_LIMIT):
        self._store = store
        self._adapters = list(adapters)
        self._matcher = matcher or Matcher()
        self._limit = limit

    def configured_adapters(self) -> List[ProviderAdapter]:
        return [adapter for adapter in self._adapters if adapter.is_configured()]

    def require_configured_adapters(self) -> List[ProviderAdapter]:
        adapters = self.configured_adapters()
        if not adapters:
            raise NoAdaptersConfigured("No adapters configured. Set provider API keys in the environment.")
        return adapters

    def api_usage(self) -> List[Dict[str, Any]]:
        return [adapter.usage() for adapter in self._adapters]

    # ---------- Area indexing ----------

    def index_area(self, location: str, category: Optional[str] = None, limit: Optional[int] = None) -> Dict[str, Any]:
        adapters = self.require_configured_adapters()
        limit = self._limit if limit is None else limit

        stats = {"total": 0, "created": 0, "merged": 0}
        for adapter in adapters:
            remaining = limit - stats["total"]
            if remaining <= 0:
                break
            adapter_stats = self._index_with_adapter(adapter, location, category, remaining)
            for key in stats:
                stats[key] += adapter_stats[key]

        stats["limit"] = limit
        stats["limit_reached"] = stats["total"] >= limit
        logger.info(
            "Indexed %s (category=%s): total=%d created=%d merged=%d",
            location,
            category,
            stats["total"],
            stats["created"],
            stats["merged"],
        )
        return stats

    def _index_with_adapter(
        self, adapter: ProviderAdapter, location: str, category: Optional[str], limit: int
    ) -> Dict[str, int]:
        stats = {"total": 0, "created": 0, "merged": 0}
        offset = 0

        while stats["total"] < limit and offset < adapter.max_results:
            page_limit = min(adapter.page_size, limit - stats["total"], adapter.max_results - offset)
            page = adapter.search_area(location, category, limit=page_limit, offset=offset)
            logger.info("Fetched %d %s listings at offset %d", len(page), adapter.source_name, offset)

            for listing in page[:page_limit]:
                if not listing.name:
                    logger.debug("Skipping %s listing without a name: %s", adapter.source_name, listing.external_id)
                    continue
                outcome, _ = self._index_listing(adapter, listing, location)
                stats["total"] += 1
                stats[outcome] += 1

            if len(page) < page_limit:
                break
            offset += len(page)

        return stats

    def _index_listing(self, adapter: ProviderAdapter, listing: Listing, location: Optional[str]) -> Tuple[str, int]:
        # Search results often omit phone numbers and photos.
        detail = listing
        if listing.external_id:
            detail = listing.enrich(adapter.get_detail(listing.external_id))
        if not detail.name:
            raise IncompleteListing(f"{adapter.source_name} listing {listing.external_id} has no name")
        detail.reviews = self._fetch_reviews(adapter, detail)
        return self._store_listing(detail, adapter.source_name, location)

    def _fetch_reviews(self, adapter: ProviderAdapter, listing: Listing) -> List[ReviewSnippet]:
        if not listing.external_id:
            return []
        try:
            return adapter.get_reviews(listing.external_id)
        except AdapterAPIError as exc:
            # Some plans do not include reviews; that is not worth failing a job over.
            if exc.status is not None and 400 <= exc.status < 500 and exc.status != 429:
                logger.warning("Reviews unavailable from %s for %s: %s", adapter.source_name, listing.external_id, exc)
                return []
            raise

    def _store_listing(self, listing: Listing, source: str, location: Optional[str]) -> Tuple[str, int]:
        description = build_description(listing.reviews)
        with self._store.match_lock(match_lock_keys(listing, location)):
            existing = self._store.find_by_external_id(source, listing.external_id)
            if existing is None:
                candidates = self._store.find_match_candidates(location, listing)
                existing = self._matcher.best_match(listing, candidates)

            if existing is not None:
                self._store.merge_into_restaurant(
                    existing.id, listing, source, location=location, description=description
                )
                return "merged", existing.id

            restaurant_id = self._store.create_restaurant(listing, source, location=location, description=description)
            return "created", restaurant_id

    # ---------- Single listing ----------

    def index_single_listing(self, listing: Listing, source: str, location: Optional[str] = None) -> Dict[str, Any]:
        """Index one hand-picked listing, then try to link it to the other providers."""
        adapter = self._adapter_for(source)
        if adapter is None:
            raise UnknownSource(f"No adapter registered for source '{source}'")
        if not adapter.is_configured():
            raise AdapterConfigurationError(f"{source} API key is not configured")

        outcome, restaurant_id = self._index_listing(adapter, listing, location)
        sources = [source]

        for other in self.configured_adapters():
            if other.source_name == source:
                continue
            try:
                if self._link_other_provider(other, restaurant_id, location):
                    sources.append(other.source_name)
            except AdapterError as exc:
                logger.warning("Linking %s to restaurant %s failed: %s", other.source_name, restaurant_id, exc)

        logger.info("Indexed single %s listing into restaurant %s (sources=%s)", source, restaurant_id, sources)
        return {"restaurant_id": restaurant_id, "sources_indexed": sources, "status": outcome}

    def _link_other_provider(self, adapter: ProviderAdapter, restaurant_id: int, location: Optional[str]) -> bool:
        restaurant = self._store.get_restaurant(restaurant_id)
        if restaurant is None:
            return False
        if adapter.source_name in restaurant.sources:
            return True

        results = adapter.search_by_name(restaurant.name, location=location, limit=CROSS_LINK_LIMIT)
        hit = self._best_cross_link_hit(results, restaurant)
        if hit is None:
            logger.debug("No %s match for '%s'", adapter.source_name, restaurant.name)
            return False

        detail = hit.enrich(adapter.get_detail(hit.external_id)) if hit.external_id else hit
        detail.reviews = self._fetch_reviews(adapter, detail)
        keys = match_lock_keys(restaurant, location) + match_lock_keys(detail, location)
        with self._store.match_lock(keys):
            owner = self._store.find_by_external_id(adapter.source_name, hit.external_id)
            if owner is not None and owner.id != restaurant_id:
                logger.info(
                    "%s listing %s already belongs to restaurant %s; not relinking",
                    adapter.source_name,
                    hit.external_id,
                    owner.id,
                )
                return False
            self._store.merge_into_restaurant(
                restaurant_id,
                detail,
                adapter.source_name,
                location=location,
                description=build_description(detail.reviews),
            )
        return True

    def _best_cross_link_hit(self, results: List[Listing], restaurant: Restaurant) -> Optional[Listing]:
        best = None
        best_score = -1
        for result in results:
            score = self._matcher.score(result, restaurant)
            if score > best_score:
                best, best_score = result, score
        if best is None or best_score <= self._matcher.threshold:
            return None
        return best

    # ---------- Reindex ----------

    def reindex(self, restaurant_id: int) -> Dict[str, Any]:
        """Refresh every provider linked to a restaurant, tolerating per-source failures."""
        restaurant = self._store.get_restaurant(restaurant_id)
        if restaurant is None:
            raise RestaurantNotFound(f"Restaurant with ID {restaurant_id} not found")

        if not restaurant.external_ids:
            return {
                "sources_updated": [],
                "sources_failed": [],
                "changes": {},
                "message": "No external sources to refresh",
            }

        before = _capture_state(restaurant)
        sources_updated: List[str] = []
        sources_failed: List[Dict[str, str]] = []

        for ext in restaurant.external_ids:
            adapter = self._adapter_for(ext.source)
            if adapter is None:
                sources_failed.append({"source": ext.source, "error": f"No adapter registered for source '{ext.source}'"})
                continue
            try:
                detail = adapter.get_detail(ext.provider_id)
                detail.reviews = self._fetch_reviews(adapter, detail)
            except AdapterError as exc:
                logger.warning("Failed to refresh restaurant %s from %s: %s", restaurant_id, ext.source, exc)
                sources_failed.append({"source": ext.source, "error": str(exc)})
                continue
            except Exception as exc:  # noqa: BLE001
                logger.exception("Unexpected error refreshing restaurant %s from %s", restaurant_id, ext.source)
                sources_failed.append({"source": ext.source, "error": str(exc)})
                continue

            with self._store.match_lock(match_lock_keys(restaurant, restaurant.location)):
                self._store.merge_into_restaurant(
                    restaurant_id, detail, ext.source, description=build_description(detail.reviews)
                )
            sources_updated.append(ext.source)

        after = _capture_state(self._store.get_restaurant(restaurant_id))
        changes = _calculate_changes(before, after)
        return {
            "sources_updated": sources_updated,
            "sources_failed": sources_failed,
            "changes": changes,
            "message": _build_reindex_message(sources_updated, sources_failed, changes),
        }

    def _adapter_for(self, source: str) -> Optional[ProviderAdapter]:
        for adapter in self._adapters:
            if adapter.source_name == source:
                return adapter
        return None


def _capture_state(restaurant: Restaurant) -> Dict[str, Any]:
    return {
        "name": restaurant.name,
        "address": restaurant.address,
        "phone": restaurant.phone,
        "ratings": {r.source: (r.score, r.review_count) for r in restaurant.ratings},
        "photos": restaurant.photo_count,
    }


def _calculate_changes(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    changes: Dict[str, Dict[str, Any]] = {}
    for field in ("name", "address", "phone", "photos"):
        if before[field] != after[field]:
            changes[field] = {"old": before[field], "new": after[field]}

    for source, (new_score, new_count) in after["ratings"].items():
        old_score, old_count = before["ratings"].get(source, (None, None))
        if old_score != new_score:
            changes[f"{source}_rating"] = {"old": old_score, "new": new_score}
        if old_count != new_count:
            changes[f"{source}_review_count"] = {"old": old_count, "new": new_count}
    return changes


def _build_reindex_message(updated: List[str], failed: List[Dict[str, str]], changes: Dict[str, Any]) -> str:
    parts = []
    if updated:
        suffix = "" if changes else " (no changes detected)"
        parts.append(f"Updated from {', '.join(updated)}{suffix}")
    if failed:
        parts.append(f"Failed: {', '.join(item['source'] for item in failed)}")
    if changes:
        parts.append(f"Changed: {', '.join(sorted(changes))}")
    return ". ".join(parts)

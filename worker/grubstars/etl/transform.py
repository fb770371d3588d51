"""Utilities for transforming provider responses into listings."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from grubstars.domain.models import Listing, ReviewSnippet

logger = logging.getLogger(__name__)

_IGNORE_TYPES = {"point_of_interest", "establishment", "political", "premise", "food"}
GOOGLE_MAX_PHOTOS = 5


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        digits = "".join(ch for ch in value if ch.isdigit())
        if digits:
            return int(digits)
    return None


def _unique(values: Iterable[Optional[str]]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


def join_address(parts: Iterable[Any]) -> Optional[str]:
    cleaned = [p for p in (_strip_or_none(part) for part in parts) if p]
    return ", ".join(cleaned) or None


def qualify(source: str, provider_id: Any) -> Optional[str]:
    provider_id = _strip_or_none(provider_id)
    if not provider_id:
        return None
    return f"{source}:{provider_id}"


# ---------- Yelp ----------


def yelp_business_to_listing(data: Dict[str, Any]) -> Listing:
    location = data.get("location") or {}
    coordinates = data.get("coordinates") or {}
    photos = data.get("photos") or ([data["image_url"]] if data.get("image_url") else [])

    return Listing(
        name=_strip_or_none(data.get("name")),
        source="yelp",
        external_id=qualify("yelp", data.get("id")),
        address=join_address(
            location.get(key)
            for key in ("address1", "address2", "address3", "city", "state", "zip_code", "country")
        ),
        latitude=_safe_float(coordinates.get("latitude")),
        longitude=_safe_float(coordinates.get("longitude")),
        phone=_strip_or_none(data.get("phone")),
        rating=_safe_float(data.get("rating")),
        review_count=_safe_int(data.get("review_count")),
        categories=_unique(cat.get("alias") for cat in data.get("categories") or []),
        photos=_unique(photos),
    )


def yelp_review_to_snippet(data: Dict[str, Any]) -> ReviewSnippet:
    return ReviewSnippet(
        source="yelp",
        text=(data.get("text") or "").strip(),
        rating=_safe_float(data.get("rating")),
        url=_strip_or_none(data.get("url")),
        author=_strip_or_none((data.get("user") or {}).get("name")),
        created_at=_strip_or_none(data.get("time_created")),
    )


# ---------- Google Places ----------


def _extract_types(types: Iterable[str]) -> List[str]:
    return _unique(t for t in types or [] if t not in _IGNORE_TYPES)


def google_photo_urls(result: Dict[str, Any], base_url: str, api_key: str) -> List[str]:
    urls = []
    for photo in (result.get("photos") or [])[:GOOGLE_MAX_PHOTOS]:
        if photo.get("url"):
            urls.append(photo["url"])
        elif photo.get("photo_reference"):
            urls.append(
                f"{base_url}/photo?maxwidth=400&photoreference={photo['photo_reference']}&key={api_key}"
            )
    return urls


def google_place_to_listing(result: Dict[str, Any], base_url: str = "", api_key: str = "") -> Listing:
    geometry = (result.get("geometry") or {}).get("location") or {}

    return Listing(
        name=_strip_or_none(result.get("name")),
        source="google",
        external_id=qualify("google", result.get("place_id")),
        address=_strip_or_none(result.get("formatted_address") or result.get("vicinity")),
        latitude=_safe_float(geometry.get("lat")),
        longitude=_safe_float(geometry.get("lng")),
        phone=_strip_or_none(result.get("formatted_phone_number")),
        rating=_safe_float(result.get("rating")),
        review_count=_safe_int(result.get("user_ratings_total")),
        categories=_extract_types(result.get("types", [])),
        photos=google_photo_urls(result, base_url, api_key),
    )


def google_review_to_snippet(data: Dict[str, Any]) -> ReviewSnippet:
    created_at = None
    if data.get("time"):
        created_at = datetime.fromtimestamp(int(data["time"]), tz=timezone.utc).isoformat()
    return ReviewSnippet(
        source="google",
        text=(data.get("text") or "").strip(),
        rating=_safe_float(data.get("rating")),
        url=_strip_or_none(data.get("author_url")),
        author=_strip_or_none(data.get("author_name")),
        created_at=created_at,
    )


# ---------- TripAdvisor ----------


def tripadvisor_location_to_listing(data: Dict[str, Any]) -> Listing:
    address_obj = data.get("address_obj") or {}
    categories = []
    if (data.get("category") or {}).get("name"):
        categories.append(data["category"]["name"])
    categories.extend(sub.get("name") for sub in data.get("subcategory") or [])

    return Listing(
        name=_strip_or_none(data.get("name")),
        source="tripadvisor",
        external_id=qualify("tripadvisor", data.get("location_id")),
        address=_strip_or_none(address_obj.get("address_string"))
        or join_address(
            address_obj.get(key) for key in ("street1", "street2", "city", "state", "postalcode", "country")
        ),
        latitude=_safe_float(data.get("latitude") or address_obj.get("latitude")),
        longitude=_safe_float(data.get("longitude") or address_obj.get("longitude")),
        phone=_strip_or_none(data.get("phone")),
        rating=_safe_float(data.get("rating")),
        review_count=_safe_int(data.get("num_reviews")),
        categories=_unique(categories),
    )


def tripadvisor_review_to_snippet(data: Dict[str, Any]) -> ReviewSnippet:
    return ReviewSnippet(
        source="tripadvisor",
        text=(data.get("text") or "").strip(),
        rating=_safe_float(data.get("rating")),
        url=_strip_or_none(data.get("url")),
        author=_strip_or_none((data.get("user") or {}).get("username")),
        created_at=_strip_or_none(data.get("published_date")),
    )


def tripadvisor_photo_urls(photos: Iterable[Dict[str, Any]]) -> List[str]:
    urls = []
    for photo in photos or []:
        images = photo.get("images") or {}
        for size in ("large", "medium", "original"):
            url = (images.get(size) or {}).get("url")
            if url:
                urls.append(url)
                break
    return _unique(urls)

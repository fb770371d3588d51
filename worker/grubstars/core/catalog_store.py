"""Postgres-backed catalog of canonical restaurants and their provider data."""

import hashlib
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional

from psycopg2 import extras

from grubstars.core.db import get_connection, transaction
from grubstars.domain.models import ExternalId, Listing, Rating, Restaurant

logger = logging.getLogger(__name__)

# Roughly 1 km around the listing; the matcher gives zero GPS credit past 200 m.
CANDIDATE_DELTA_DEGREES = 0.01


class LocationNotIndexed(LookupError):
    """Raised when a search names an area that has never been indexed."""


_RESTAURANT_COLUMNS = (
    "id, name, address, latitude, longitude, phone, location, description, created_at, updated_at"
)

_CANDIDATES_BY_BOX = f"""
SELECT {_RESTAURANT_COLUMNS} FROM restaurants
WHERE latitude BETWEEN %(min_lat)s AND %(max_lat)s
  AND longitude BETWEEN %(min_lng)s AND %(max_lng)s
ORDER BY id;
"""

_CANDIDATES_BY_LOCATION = f"""
SELECT {_RESTAURANT_COLUMNS} FROM restaurants
WHERE LOWER(location) = LOWER(%(location)s)
ORDER BY id;
"""

_FIND_BY_EXTERNAL_ID = """
SELECT r.id, r.name, r.address, r.latitude, r.longitude, r.phone, r.location, r.description,
       r.created_at, r.updated_at
FROM restaurants r
JOIN external_ids e ON e.restaurant_id = r.id
WHERE e.source = %(source)s AND e.provider_id = %(provider_id)s
ORDER BY r.id
LIMIT 1;
"""

_INSERT_RESTAURANT = """
INSERT INTO restaurants (name, address, latitude, longitude, phone, location, description, created_at, updated_at)
VALUES (%(name)s, %(address)s, %(latitude)s, %(longitude)s, %(phone)s, %(location)s, %(description)s, NOW(), NOW())
RETURNING id;
"""

# Newest provider data wins for core fields; nulls never erase what we have.
_MERGE_RESTAURANT = """
UPDATE restaurants SET
    name = COALESCE(%(name)s, name),
    address = COALESCE(%(address)s, address),
    latitude = COALESCE(%(latitude)s, latitude),
    longitude = COALESCE(%(longitude)s, longitude),
    phone = COALESCE(%(phone)s, phone),
    location = COALESCE(location, %(location)s),
    description = COALESCE(description, %(description)s),
    updated_at = NOW()
WHERE id = %(id)s;
"""

_UPSERT_EXTERNAL_ID = """
INSERT INTO external_ids (restaurant_id, source, provider_id)
VALUES (%(restaurant_id)s, %(source)s, %(provider_id)s)
ON CONFLICT (restaurant_id, source) DO NOTHING;
"""

_UPSERT_RATING = """
INSERT INTO ratings (restaurant_id, source, score, review_count, fetched_at)
VALUES (%(restaurant_id)s, %(source)s, %(score)s, %(review_count)s, NOW())
ON CONFLICT (restaurant_id, source) DO UPDATE SET
    score = EXCLUDED.score,
    review_count = EXCLUDED.review_count,
    fetched_at = NOW();
"""

_INSERT_CATEGORY = """
INSERT INTO categories (name) VALUES (%(name)s)
ON CONFLICT (name) DO UPDATE SET name = EXCLUDED.name
RETURNING id;
"""

_LINK_CATEGORY = """
INSERT INTO restaurant_categories (restaurant_id, category_id)
VALUES (%(restaurant_id)s, %(category_id)s)
ON CONFLICT DO NOTHING;
"""

_ADD_MEDIA = """
INSERT INTO media (restaurant_id, source, media_type, url, fetched_at)
SELECT %(restaurant_id)s, %(source)s, 'photo', %(url)s, NOW()
WHERE NOT EXISTS (
    SELECT 1 FROM media
    WHERE restaurant_id = %(restaurant_id)s AND source = %(source)s AND url = %(url)s
);
"""

_ADD_REVIEW = """
INSERT INTO reviews (restaurant_id, source, snippet, rating, url, author, fetched_at)
SELECT %(restaurant_id)s, %(source)s, %(snippet)s, %(rating)s, %(url)s, %(author)s, NOW()
WHERE NOT EXISTS (
    SELECT 1 FROM reviews
    WHERE restaurant_id = %(restaurant_id)s AND source = %(source)s AND snippet = %(snippet)s
);
"""


_LIST_CATEGORIES = "SELECT name FROM categories ORDER BY name;"

_LIST_LOCATIONS = """
SELECT DISTINCT location FROM restaurants
WHERE location IS NOT NULL AND location <> ''
ORDER BY location;
"""

_RESTAURANT_STATS = """
SELECT
    (SELECT COUNT(*) FROM restaurants) AS total,
    (SELECT COUNT(DISTINCT restaurant_id) FROM media) AS with_photos,
    (SELECT COUNT(DISTINCT restaurant_id) FROM reviews) AS with_reviews,
    (SELECT COUNT(DISTINCT restaurant_id) FROM ratings) AS with_ratings,
    (SELECT COUNT(DISTINCT restaurant_id) FROM external_ids) AS with_external_ids,
    (SELECT COUNT(*) FROM (
        SELECT restaurant_id FROM external_ids GROUP BY restaurant_id HAVING COUNT(source) = 1
    ) single_source) AS single_source_only;
"""

_PROVIDER_COVERAGE = """
SELECT source, COUNT(restaurant_id) AS count FROM external_ids
GROUP BY source
ORDER BY source;
"""

def lock_id(key: str) -> int:
    """Stable signed 64-bit advisory lock id for ``key``."""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def _to_restaurant(row: Dict[str, Any]) -> Restaurant:
    return Restaurant(
        id=row["id"],
        name=row["name"],
        address=row.get("address"),
        latitude=row.get("latitude"),
        longitude=row.get("longitude"),
        phone=row.get("phone"),
        location=row.get("location"),
        description=row.get("description"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _listing_params(listing: Listing) -> Dict[str, Any]:
    return {
        "name": listing.name,
        "address": listing.address,
        "latitude": listing.latitude,
        "longitude": listing.longitude,
        "phone": listing.phone,
    }


class CatalogStore:
    """Reads and writes the canonical catalog.

    Every create/merge runs in a single transaction so a restaurant never
    exists without the external id that produced it.
    """

    @contextmanager
    def match_lock(self, keys: Iterable[str]) -> Iterator[None]:
        """Hold transaction-level advisory locks for ``keys`` until the block exits.

        Locks are taken in sorted order on a dedicated connection, so two
        indexers touching overlapping keys can never deadlock each other.
        """
        ids = sorted({lock_id(key) for key in keys})
        with get_connection() as conn:
            try:
                with conn.cursor() as cur:
                    for advisory_id in ids:
                        cur.execute("SELECT pg_advisory_xact_lock(%(id)s);", {"id": advisory_id})
                yield
            finally:
                # Ending the transaction releases every xact-level lock.
                conn.rollback()

    def find_match_candidates(self, area: Optional[str], listing: Listing) -> List[Restaurant]:
        if listing.has_coordinates:
            params = {
                "min_lat": listing.latitude - CANDIDATE_DELTA_DEGREES,
                "max_lat": listing.latitude + CANDIDATE_DELTA_DEGREES,
                "min_lng": listing.longitude - CANDIDATE_DELTA_DEGREES,
                "max_lng": listing.longitude + CANDIDATE_DELTA_DEGREES,
            }
            rows = self._fetchall(_CANDIDATES_BY_BOX, params)
        elif area:
            rows = self._fetchall(_CANDIDATES_BY_LOCATION, {"location": area})
        else:
            rows = []
        return [_to_restaurant(row) for row in rows]

    def find_by_external_id(self, source: str, provider_id: Optional[str]) -> Optional[Restaurant]:
        if not provider_id:
            return None
        rows = self._fetchall(_FIND_BY_EXTERNAL_ID, {"source": source, "provider_id": provider_id})
        return _to_restaurant(rows[0]) if rows else None

    def create_restaurant(
        self,
        listing: Listing,
        source: str,
        location: Optional[str] = None,
        description: Optional[str] = None,
    ) -> int:
        if not listing.name:
            raise ValueError("name is required to create a restaurant")

        params = _listing_params(listing)
        params.update(location=location, description=description)
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(_INSERT_RESTAURANT, params)
                restaurant_id = cur.fetchone()[0]
                self._write_satellites(cur, restaurant_id, listing, source)
        logger.debug("Created restaurant %s (%s) from %s", restaurant_id, listing.name, source)
        return restaurant_id

    def merge_into_restaurant(
        self,
        restaurant_id: int,
        listing: Listing,
        source: str,
        location: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        params = _listing_params(listing)
        params.update(id=restaurant_id, location=location, description=description)
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(_MERGE_RESTAURANT, params)
                self._write_satellites(cur, restaurant_id, listing, source)
        logger.debug("Merged %s data into restaurant %s", source, restaurant_id)

    def get_external_ids(self, restaurant_id: int) -> List[ExternalId]:
        rows = self._fetchall(
            "SELECT restaurant_id, source, provider_id FROM external_ids WHERE restaurant_id = %(id)s ORDER BY id;",
            {"id": restaurant_id},
        )
        return [ExternalId(row["restaurant_id"], row["source"], row["provider_id"]) for row in rows]

    def get_restaurant(self, restaurant_id: int) -> Optional[Restaurant]:
        rows = self._fetchall(f"SELECT {_RESTAURANT_COLUMNS} FROM restaurants WHERE id = %(id)s;", {"id": restaurant_id})
        if not rows:
            return None
        restaurant = _to_restaurant(rows[0])
        restaurant.external_ids = self.get_external_ids(restaurant_id)
        restaurant.ratings = [
            Rating(row["restaurant_id"], row["source"], row["score"], row["review_count"], row["fetched_at"])
            for row in self._fetchall(
                "SELECT restaurant_id, source, score, review_count, fetched_at FROM ratings "
                "WHERE restaurant_id = %(id)s ORDER BY source;",
                {"id": restaurant_id},
            )
        ]
        restaurant.categories = [
            row["name"]
            for row in self._fetchall(
                "SELECT c.name FROM categories c JOIN restaurant_categories rc ON rc.category_id = c.id "
                "WHERE rc.restaurant_id = %(id)s ORDER BY c.name;",
                {"id": restaurant_id},
            )
        ]
        counts = self._fetchall(
            "SELECT (SELECT COUNT(*) FROM media WHERE restaurant_id = %(id)s AND media_type = 'photo') AS photos, "
            "(SELECT COUNT(*) FROM reviews WHERE restaurant_id = %(id)s) AS reviews;",
            {"id": restaurant_id},
        )[0]
        restaurant.photo_count = counts["photos"]
        restaurant.review_count = counts["reviews"]
        return restaurant

    def is_location_indexed(self, location: str) -> bool:
        rows = self._fetchall(
            "SELECT EXISTS (SELECT 1 FROM restaurants WHERE LOWER(location) = LOWER(%(location)s)) AS indexed;",
            {"location": location},
        )
        return bool(rows and rows[0]["indexed"])

    def search_by_name(self, name: str, location: Optional[str] = None) -> List[Restaurant]:
        if location and not self.is_location_indexed(location):
            raise LocationNotIndexed(f"Location '{location}' has not been indexed yet")

        sql = f"SELECT {_RESTAURANT_COLUMNS} FROM restaurants WHERE name ILIKE %(pattern)s"
        params: Dict[str, Any] = {"pattern": f"%{name}%"}
        if location:
            sql += " AND LOWER(location) = LOWER(%(location)s)"
            params["location"] = location
        return [_to_restaurant(row) for row in self._fetchall(sql + " ORDER BY name;", params)]

    def list_categories(self) -> List[str]:
        return [row["name"] for row in self._fetchall(_LIST_CATEGORIES)]

    def list_locations(self) -> List[str]:
        return [row["location"] for row in self._fetchall(_LIST_LOCATIONS)]

    def stats(self) -> Dict[str, Any]:
        """Catalog size, satellite coverage and per-provider link counts."""
        restaurants = dict(self._fetchall(_RESTAURANT_STATS)[0])
        restaurants["multi_source"] = restaurants["with_external_ids"] - restaurants["single_source_only"]
        coverage = {row["source"]: row["count"] for row in self._fetchall(_PROVIDER_COVERAGE)}
        return {
            "restaurants": restaurants,
            "provider_coverage": coverage,
            "locations": self.list_locations(),
        }

    # ---------- Internals ----------

    def _fetchall(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        with transaction() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
        return rows

    def _write_satellites(self, cur, restaurant_id: int, listing: Listing, source: str) -> None:
        if listing.external_id:
            cur.execute(
                _UPSERT_EXTERNAL_ID,
                {"restaurant_id": restaurant_id, "source": source, "provider_id": listing.external_id},
            )
        if listing.rating is not None:
            cur.execute(
                _UPSERT_RATING,
                {
                    "restaurant_id": restaurant_id,
                    "source": source,
                    "score": listing.rating,
                    "review_count": listing.review_count,
                },
            )
        for category in listing.categories:
            cur.execute(_INSERT_CATEGORY, {"name": category})
            category_id = cur.fetchone()[0]
            cur.execute(_LINK_CATEGORY, {"restaurant_id": restaurant_id, "category_id": category_id})
        for url in listing.photos:
            cur.execute(_ADD_MEDIA, {"restaurant_id": restaurant_id, "source": source, "url": url})
        for review in listing.reviews:
            if not review.text:
                continue
            cur.execute(
                _ADD_REVIEW,
                {
                    "restaurant_id": restaurant_id,
                    "source": source,
                    "snippet": review.text,
                    "rating": review.rating,
                    "url": review.url,
                    "author": review.author,
                },
            )

"""Core data models shared by the indexing pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(slots=True)
class ReviewSnippet:
    """A single provider review, reduced to what the catalog stores."""

    source: str
    text: str
    rating: Optional[float] = None
    url: Optional[str] = None
    author: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(slots=True)
class Listing:
    """Normalized snapshot of a restaurant as one provider describes it.

    Listings never reach the database as-is; the indexer consumes them
    immediately and either creates or merges into a canonical restaurant.
    """

    name: Optional[str]
    source: str
    external_id: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    categories: List[str] = field(default_factory=list)
    photos: List[str] = field(default_factory=list)
    reviews: List[ReviewSnippet] = field(default_factory=list)

    def enrich(self, other: Optional["Listing"]) -> "Listing":
        """Return a copy where non-empty values from ``other`` win."""
        if other is None:
            return replace(self)
        updates = {}
        for item in fields(self):
            value = getattr(other, item.name)
            if value is None or value == [] or value == "":
                continue
            updates[item.name] = value
        return replace(self, **updates)

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(slots=True)
class ExternalId:
    restaurant_id: int
    source: str
    provider_id: str


@dataclass(slots=True)
class Rating:
    restaurant_id: int
    source: str
    score: float
    review_count: Optional[int] = None
    fetched_at: Optional[datetime] = None


@dataclass(slots=True)
class Restaurant:
    """Canonical, deduplicated record for one real-world restaurant."""

    id: Optional[int]
    name: str
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    external_ids: List[ExternalId] = field(default_factory=list)
    ratings: List[Rating] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    photo_count: int = 0
    review_count: int = 0

    @property
    def sources(self) -> List[str]:
        return [ext.source for ext in self.external_ids]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "phone": self.phone,
            "location": self.location,
            "description": self.description,
            "ratings": [
                {"source": r.source, "score": r.score, "review_count": r.review_count}
                for r in self.ratings
            ],
            "categories": list(self.categories),
            "sources": self.sources,
            "photo_count": self.photo_count,
            "review_count": self.review_count,
        }

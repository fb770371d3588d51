"""Confidence scoring used to decide whether two listings are the same restaurant."""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6_371_000

NAME_WEIGHT = 35
ADDRESS_WEIGHT = 20
GPS_WEIGHT = 25
PHONE_WEIGHT = 20
MATCH_THRESHOLD = 50
MAX_GPS_DISTANCE_METERS = 200.0

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")
_STREET_TOKENS = re.compile(r"\b(street|st|avenue|ave|road|rd|drive|dr|boulevard|blvd|lane|ln)\b")
_NON_DIGIT = re.compile(r"\D")

C = TypeVar("C")


def normalize_name(value: str) -> str:
    value = _NON_ALNUM.sub("", value.lower())
    return _WHITESPACE.sub(" ", value).strip()


def normalize_address(value: str) -> str:
    value = _STREET_TOKENS.sub("", _NON_ALNUM.sub("", value.lower()))
    return _WHITESPACE.sub(" ", value).strip()


def normalize_phone(value: str) -> str:
    return _NON_DIGIT.sub("", value)


def longest_common_subsequence(a: str, b: str) -> int:
    """Length of the LCS of ``a`` and ``b`` using two rolling rows."""
    if not a or not b:
        return 0
    previous = [0] * (len(b) + 1)
    for char_a in a:
        current = [0] * (len(b) + 1)
        for j, char_b in enumerate(b, start=1):
            if char_a == char_b:
                current[j] = previous[j - 1] + 1
            else:
                current[j] = max(previous[j], current[j - 1])
        previous = current
    return previous[-1]


def string_similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return longest_common_subsequence(a, b) / max(len(a), len(b))


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = math.sin(delta_lat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _round_half_up(value: float) -> int:
    # round() in Python is half-to-even; 12.5 must give 13 here.
    return int(math.floor(value + 0.5))


class Matcher:
    """Scores a listing against canonical candidates.

    Weights and the threshold were calibrated by hand. Genuine duplicates have
    been seen scoring just under the threshold, so keep it configurable rather
    than treating 50 as meaningful.
    """

    def __init__(
        self,
        threshold: int = MATCH_THRESHOLD,
        name_weight: int = NAME_WEIGHT,
        address_weight: int = ADDRESS_WEIGHT,
        gps_weight: int = GPS_WEIGHT,
        phone_weight: int = PHONE_WEIGHT,
        max_gps_distance: float = MAX_GPS_DISTANCE_METERS,
    ) -> None:
        self.threshold = threshold
        self.name_weight = name_weight
        self.address_weight = address_weight
        self.gps_weight = gps_weight
        self.phone_weight = phone_weight
        self.max_gps_distance = max_gps_distance

    def score(self, listing: Any, candidate: Any) -> int:
        return sum(self.component_scores(listing, candidate).values())

    def component_scores(self, listing: Any, candidate: Any) -> Dict[str, int]:
        return {
            "name": self._name_score(listing.name, candidate.name),
            "address": self._address_score(listing.address, candidate.address),
            "gps": self._gps_score(listing, candidate),
            "phone": self._phone_score(listing.phone, candidate.phone),
        }

    def is_match(self, listing: Any, candidate: Any) -> bool:
        return self.score(listing, candidate) > self.threshold

    def best_match(self, listing: Any, candidates: Sequence[C]) -> Optional[C]:
        """Return the highest-scoring candidate above the threshold, or None."""
        if not candidates:
            logger.debug("No candidates for '%s'", listing.name)
            return None

        best: Optional[C] = None
        best_score = -1
        for candidate in candidates:
            scores = self.component_scores(listing, candidate)
            total = sum(scores.values())
            logger.debug(
                "Compared '%s' with '%s' (id=%s): %s total=%d",
                listing.name,
                getattr(candidate, "name", None),
                getattr(candidate, "id", None),
                scores,
                total,
            )
            if total > best_score:
                best_score = total
                best = candidate

        if best_score <= self.threshold:
            logger.debug("No match for '%s': best score %d <= threshold %d", listing.name, best_score, self.threshold)
            return None

        logger.debug("Matched '%s' to id=%s with score %d", listing.name, getattr(best, "id", None), best_score)
        return best

    def _name_score(self, first: Optional[str], second: Optional[str]) -> int:
        if not first or not second:
            return 0
        similarity = string_similarity(normalize_name(first), normalize_name(second))
        return _round_half_up(similarity * self.name_weight)

    def _address_score(self, first: Optional[str], second: Optional[str]) -> int:
        if not first or not second:
            return 0
        similarity = string_similarity(normalize_address(first), normalize_address(second))
        return _round_half_up(similarity * self.address_weight)

    def _gps_score(self, listing: Any, candidate: Any) -> int:
        coords = (listing.latitude, listing.longitude, candidate.latitude, candidate.longitude)
        if any(value is None for value in coords):
            return 0

        distance = haversine_distance(*coords)
        if distance >= self.max_gps_distance:
            return 0
        return _round_half_up((1.0 - distance / self.max_gps_distance) * self.gps_weight)

    def _phone_score(self, first: Optional[str], second: Optional[str]) -> int:
        if not first or not second:
            return 0
        normalized_first = normalize_phone(first)
        normalized_second = normalize_phone(second)
        if not normalized_first or normalized_first != normalized_second:
            return 0
        return self.phone_weight

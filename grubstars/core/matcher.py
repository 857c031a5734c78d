"""Similarity scoring used to decide whether two records describe the same place.

The score is additive across four independent signals (name, address, GPS
proximity and phone) and compared against a fixed threshold. A perfect match
scores 100; anything at or above ``MATCH_THRESHOLD`` is treated as the same
restaurant. The matcher performs no I/O and keeps no state between calls.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Dict, Optional, Sequence

from rapidfuzz.distance import LCSseq

from grubstars.core.models import BusinessRecord, MatchResult, Restaurant

logger = logging.getLogger(__name__)

NAME_WEIGHT = 35
ADDRESS_WEIGHT = 20
GPS_WEIGHT = 25
PHONE_WEIGHT = 20

MATCH_THRESHOLD = 50

# Metres; beyond this the GPS signal contributes nothing.
MAX_GPS_DISTANCE = 200

EARTH_RADIUS_M = 6_371_000

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")
_NON_DIGIT = re.compile(r"\D")
_STREET_SUFFIXES = re.compile(r"\b(street|st|avenue|ave|road|rd|drive|dr|boulevard|blvd|lane|ln)\b")


def normalize_name(name: str) -> str:
    lowered = _NON_ALNUM.sub(" ", name.lower())
    return _WHITESPACE.sub(" ", lowered).strip()


def normalize_address(address: str) -> str:
    lowered = _NON_ALNUM.sub("", address.lower())
    stripped = _STREET_SUFFIXES.sub("", lowered)
    return _WHITESPACE.sub(" ", stripped).strip()


def normalize_phone(phone: str) -> str:
    return _NON_DIGIT.sub("", phone)


def string_similarity(left: str, right: str) -> float:
    """Longest-common-subsequence length over the longer string's length (0.0-1.0)."""
    if left == right:
        return 1.0
    if not left or not right:
        return 0.0
    return LCSseq.normalized_similarity(left, right)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two coordinates, in metres."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = math.sin(delta_lat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def name_score(left: Optional[str], right: Optional[str]) -> int:
    if left is None or right is None:
        return 0
    return round_half_up(string_similarity(normalize_name(left), normalize_name(right)) * NAME_WEIGHT)


def address_score(left: Optional[str], right: Optional[str]) -> int:
    if left is None or right is None:
        return 0
    return round_half_up(string_similarity(normalize_address(left), normalize_address(right)) * ADDRESS_WEIGHT)


def gps_score(observed: BusinessRecord, restaurant: Restaurant) -> int:
    if not observed.has_coordinates or not restaurant.has_coordinates:
        return 0

    distance = haversine_distance(observed.latitude, observed.longitude, restaurant.latitude, restaurant.longitude)
    if distance > MAX_GPS_DISTANCE:
        return 0
    return round_half_up((1.0 - distance / MAX_GPS_DISTANCE) * GPS_WEIGHT)


def phone_score(left: Optional[str], right: Optional[str]) -> int:
    if left is None or right is None:
        return 0
    left_digits = normalize_phone(left)
    right_digits = normalize_phone(right)
    if not left_digits or not right_digits:
        return 0
    return PHONE_WEIGHT if left_digits == right_digits else 0


class Matcher:
    """Scores a directory record against stored restaurants."""

    threshold = MATCH_THRESHOLD

    def component_scores(self, observed: BusinessRecord, restaurant: Restaurant) -> Dict[str, int]:
        return {
            "name": name_score(observed.name, restaurant.name),
            "address": address_score(observed.address, restaurant.address),
            "gps": gps_score(observed, restaurant),
            "phone": phone_score(observed.phone, restaurant.phone),
        }

    def score(self, observed: BusinessRecord, restaurant: Restaurant) -> int:
        return sum(self.component_scores(observed, restaurant).values())

    def find_match(self, observed: BusinessRecord, candidates: Sequence[Restaurant]) -> Optional[MatchResult]:
        """Return the best-scoring candidate if it clears the threshold.

        Ties keep the earliest candidate, so callers should pass candidates
        nearest-first.
        """
        if not candidates:
            logger.debug("No candidates for %r; a new restaurant will be created", observed.name)
            return None

        best: Optional[Restaurant] = None
        best_score = 0
        for candidate in candidates:
            scores = self.component_scores(observed, candidate)
            total = sum(scores.values())
            logger.debug(
                "Scored %r against %r (id=%s): %s total=%d",
                observed.name,
                candidate.name,
                candidate.id,
                scores,
                total,
            )
            if total > best_score:
                best_score = total
                best = candidate

        if best is None or best_score < self.threshold:
            logger.debug("No match for %r: best score %d below threshold %d", observed.name, best_score, self.threshold)
            return None

        logger.debug("Matched %r to %r (id=%s) with score %d", observed.name, best.name, best.id, best_score)
        return MatchResult(restaurant=best, score=best_score)

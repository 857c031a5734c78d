"""Core data models shared by the indexer, the matcher and the repositories."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(slots=True)
class Restaurant:
    """Canonical, deduplicated record of one physical place."""

    name: str
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(slots=True)
class ExternalId:
    restaurant_id: int
    source: str
    external_id: str
    id: Optional[int] = None


@dataclass(slots=True)
class Category:
    id: int
    name: str


@dataclass(slots=True)
class BusinessRecord:
    """Normalized snapshot of a business as returned by one directory."""

    external_id: Optional[str]
    name: str
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    categories: List[str] = field(default_factory=list)
    photos: List[str] = field(default_factory=list)
    url: Optional[str] = None
    is_closed: Optional[bool] = None
    raw_snapshot: Optional[Dict[str, Any]] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        # Coordinates travel as a pair.
        if self.latitude is None or self.longitude is None:
            self.latitude = None
            self.longitude = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class Progress:
    current: int
    total: int
    percent: float

    @classmethod
    def of(cls, current: int, total: int) -> "Progress":
        total = max(total, current)
        percent = round(current / total * 100, 1) if total else 100.0
        return cls(current=current, total=total, percent=percent)


class Outcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    MERGED = "merged"


@dataclass(frozen=True)
class MatchResult:
    restaurant: Restaurant
    score: int


@dataclass
class IndexStats:
    """Counters for one indexing run; `total` counts businesses, not restaurants."""

    total: int = 0
    created: int = 0
    updated: int = 0
    merged: int = 0
    backfilled: int = 0
    limit: Optional[int] = None
    errors: Dict[str, str] = field(default_factory=dict)

    def record(self, outcome: Outcome) -> None:
        self.total += 1
        if outcome is Outcome.CREATED:
            self.created += 1
        elif outcome is Outcome.UPDATED:
            self.updated += 1
        else:
            self.merged += 1

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "created": self.created,
            "updated": self.updated,
            "merged": self.merged,
            "backfilled": self.backfilled,
            "limit": self.limit,
            "errors": dict(self.errors),
        }

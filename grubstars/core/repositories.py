"""PostgreSQL repositories implementing the indexer's persistence contract.

Each public method runs in its own transaction (see ``db.transaction``).
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from psycopg2 import extras

from grubstars.core.db import transaction
from grubstars.core.models import Category, ExternalId, Restaurant

logger = logging.getLogger(__name__)

_RESTAURANT_COLUMNS = "id, name, address, latitude, longitude, phone, location, created_at, updated_at"

# Columns a merge or update may touch through update_fields.
_UPDATABLE_FIELDS = ("name", "address", "latitude", "longitude", "phone", "location")


def _dict_cursor(conn):
    return conn.cursor(cursor_factory=extras.RealDictCursor)


def _to_restaurant(row: Dict[str, Any]) -> Restaurant:
    return Restaurant(
        id=row["id"],
        name=row["name"],
        address=row.get("address"),
        latitude=row.get("latitude"),
        longitude=row.get("longitude"),
        phone=row.get("phone"),
        location=row.get("location"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


class RestaurantRepository:
    def create(self, restaurant: Restaurant) -> Restaurant:
        with transaction() as conn:
            with _dict_cursor(conn) as cur:
                cur.execute(
                    """
                    INSERT INTO restaurants (name, address, latitude, longitude, phone, location)
                    VALUES (%(name)s, %(address)s, %(latitude)s, %(longitude)s, %(phone)s, %(location)s)
                    RETURNING id, created_at, updated_at
                    """,
                    {
                        "name": restaurant.name,
                        "address": restaurant.address,
                        "latitude": restaurant.latitude,
                        "longitude": restaurant.longitude,
                        "phone": restaurant.phone,
                        "location": restaurant.location,
                    },
                )
                row = cur.fetchone()
        restaurant.id = row["id"]
        restaurant.created_at = row["created_at"]
        restaurant.updated_at = row["updated_at"]
        logger.debug("Created restaurant %s (%s)", restaurant.id, restaurant.name)
        return restaurant

    def update(self, restaurant: Restaurant) -> Restaurant:
        if restaurant.id is None:
            raise ValueError("restaurant must have an id to be updated")
        self.update_fields(restaurant.id, {field: getattr(restaurant, field) for field in _UPDATABLE_FIELDS})
        return restaurant

    def update_fields(self, restaurant_id: int, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"cannot update restaurant fields: {', '.join(sorted(unknown))}")
        if not fields:
            return

        assignments = ", ".join(f"{field} = %({field})s" for field in fields)
        params = dict(fields, id=restaurant_id)
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(f"UPDATE restaurants SET {assignments}, updated_at = NOW() WHERE id = %(id)s", params)

    def find_by_id(self, restaurant_id: int) -> Optional[Restaurant]:
        with transaction() as conn:
            with _dict_cursor(conn) as cur:
                cur.execute(f"SELECT {_RESTAURANT_COLUMNS} FROM restaurants WHERE id = %s", (restaurant_id,))
                row = cur.fetchone()
        return _to_restaurant(row) if row else None

    def find_by_external_id(self, source: str, external_id: str) -> Optional[Restaurant]:
        with transaction() as conn:
            with _dict_cursor(conn) as cur:
                cur.execute(
                    """
                    SELECT r.id, r.name, r.address, r.latitude, r.longitude, r.phone, r.location,
                           r.created_at, r.updated_at
                    FROM restaurants r
                    JOIN external_ids e ON e.restaurant_id = r.id
                    WHERE e.source = %s AND e.external_id = %s
                    """,
                    (source, external_id),
                )
                row = cur.fetchone()
        return _to_restaurant(row) if row else None

    def find_candidates(self, latitude: float, longitude: float, delta: float) -> List[Restaurant]:
        """Restaurants inside a lat/lng bounding box, nearest first."""
        with transaction() as conn:
            with _dict_cursor(conn) as cur:
                cur.execute(
                    f"""
                    SELECT {_RESTAURANT_COLUMNS}
                    FROM restaurants
                    WHERE latitude BETWEEN %(lat_min)s AND %(lat_max)s
                      AND longitude BETWEEN %(lng_min)s AND %(lng_max)s
                    ORDER BY (latitude - %(lat)s) ^ 2 + (longitude - %(lng)s) ^ 2, id
                    """,
                    {
                        "lat": latitude,
                        "lng": longitude,
                        "lat_min": latitude - delta,
                        "lat_max": latitude + delta,
                        "lng_min": longitude - delta,
                        "lng_max": longitude + delta,
                    },
                )
                rows = cur.fetchall()
        return [_to_restaurant(row) for row in rows]


class ExternalIdRepository:
    def find(self, source: str, external_id: str) -> Optional[ExternalId]:
        with transaction() as conn:
            with _dict_cursor(conn) as cur:
                cur.execute(
                    "SELECT id, restaurant_id, source, external_id FROM external_ids WHERE source = %s AND external_id = %s",
                    (source, external_id),
                )
                row = cur.fetchone()
        return ExternalId(**row) if row else None

    def find_by_restaurant(self, restaurant_id: int) -> List[ExternalId]:
        with transaction() as conn:
            with _dict_cursor(conn) as cur:
                cur.execute(
                    "SELECT id, restaurant_id, source, external_id FROM external_ids WHERE restaurant_id = %s ORDER BY id",
                    (restaurant_id,),
                )
                rows = cur.fetchall()
        return [ExternalId(**row) for row in rows]

    def insert_if_absent(self, external_id: ExternalId) -> bool:
        """Insert the link unless the source id or the restaurant/source pair already exists."""
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO external_ids (restaurant_id, source, external_id)
                    VALUES (%s, %s, %s)
                    ON CONFLICT DO NOTHING
                    RETURNING id
                    """,
                    (external_id.restaurant_id, external_id.source, external_id.external_id),
                )
                row = cur.fetchone()
        if row is None:
            return False
        external_id.id = row[0]
        return True


class RatingRepository:
    def upsert(self, restaurant_id: int, source: str, score: Optional[float], review_count: Optional[int]) -> None:
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO ratings (restaurant_id, source, score, review_count, fetched_at)
                    VALUES (%s, %s, %s, %s, NOW())
                    ON CONFLICT (restaurant_id, source) DO UPDATE SET
                        score = EXCLUDED.score,
                        review_count = EXCLUDED.review_count,
                        fetched_at = EXCLUDED.fetched_at
                    """,
                    (restaurant_id, source, score, review_count),
                )


class MediaRepository:
    def replace_media(self, restaurant_id: int, source: str, media_type: str, urls: Iterable[str]) -> int:
        urls = list(dict.fromkeys(urls))
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM media WHERE restaurant_id = %s AND source = %s AND media_type = %s",
                    (restaurant_id, source, media_type),
                )
                for url in urls:
                    cur.execute(
                        "INSERT INTO media (restaurant_id, source, media_type, url) VALUES (%s, %s, %s, %s)",
                        (restaurant_id, source, media_type, url),
                    )
        return len(urls)

    def add_media(self, restaurant_id: int, source: str, media_type: str, urls: Iterable[str]) -> int:
        """Append URLs not yet stored for this restaurant, source and media type."""
        urls = list(dict.fromkeys(urls))
        if not urls:
            return 0
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT url FROM media WHERE restaurant_id = %s AND source = %s AND media_type = %s",
                    (restaurant_id, source, media_type),
                )
                existing = {row[0] for row in cur.fetchall()}
                new_urls = [url for url in urls if url not in existing]
                for url in new_urls:
                    cur.execute(
                        "INSERT INTO media (restaurant_id, source, media_type, url) VALUES (%s, %s, %s, %s)",
                        (restaurant_id, source, media_type, url),
                    )
        return len(new_urls)


class CategoryRepository:
    def find_or_create(self, name: str) -> Category:
        with transaction() as conn:
            with _dict_cursor(conn) as cur:
                cur.execute(
                    """
                    INSERT INTO categories (name) VALUES (%s)
                    ON CONFLICT (name) DO UPDATE SET name = EXCLUDED.name
                    RETURNING id, name
                    """,
                    (name,),
                )
                row = cur.fetchone()
        return Category(id=row["id"], name=row["name"])

    def link(self, restaurant_id: int, category_id: int) -> None:
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "INSERT INTO restaurant_categories (restaurant_id, category_id) VALUES (%s, %s) ON CONFLICT DO NOTHING",
                    (restaurant_id, category_id),
                )

    def link_names(self, restaurant_id: int, names: Iterable[str]) -> None:
        for name in dict.fromkeys(n.strip() for n in names if n and n.strip()):
            category = self.find_or_create(name)
            self.link(restaurant_id, category.id)

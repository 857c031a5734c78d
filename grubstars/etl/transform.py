"""Utilities for transforming directory responses into BusinessRecord objects."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from grubstars.core.models import BusinessRecord

logger = logging.getLogger(__name__)

_IGNORE_TYPES = {"point_of_interest", "establishment", "food"}
MAX_GOOGLE_PHOTOS = 5


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug("Unable to parse float from %r", value)
        return None


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.debug("Unable to parse int from %r", value)
        return None


def format_address(parts: Iterable[Optional[str]]) -> Optional[str]:
    cleaned = [part.strip() for part in parts if part and part.strip()]
    return ", ".join(cleaned) or None


def _relevant_types(types: Iterable[str]) -> List[str]:
    return [type_name for type_name in types or [] if type_name not in _IGNORE_TYPES]


def yelp_business_to_record(data: Dict[str, Any]) -> BusinessRecord:
    location = data.get("location") or {}
    coordinates = data.get("coordinates") or {}
    photos = data.get("photos") or ([data["image_url"]] if data.get("image_url") else [])

    return BusinessRecord(
        external_id=f"yelp:{data['id']}" if data.get("id") else None,
        name=data.get("name") or "",
        address=format_address(
            location.get(key)
            for key in ("address1", "address2", "address3", "city", "state", "zip_code", "country")
        ),
        latitude=_to_float(coordinates.get("latitude")),
        longitude=_to_float(coordinates.get("longitude")),
        phone=data.get("phone") or data.get("display_phone") or None,
        rating=_to_float(data.get("rating")),
        review_count=_to_int(data.get("review_count")),
        categories=[cat["alias"] for cat in data.get("categories") or [] if cat.get("alias")],
        photos=list(photos),
        url=data.get("url"),
        is_closed=data.get("is_closed"),
        raw_snapshot=data,
    )


def google_photo_urls(photos: Iterable[Dict[str, Any]], base_url: str, api_key: str) -> List[str]:
    urls = []
    for photo in list(photos or [])[:MAX_GOOGLE_PHOTOS]:
        if photo.get("url"):
            urls.append(photo["url"])
        elif photo.get("photo_reference"):
            urls.append(f"{base_url}/photo?maxwidth=400&photoreference={photo['photo_reference']}&key={api_key}")
    return urls


def google_place_to_record(place: Dict[str, Any], base_url: str, api_key: str) -> BusinessRecord:
    location = (place.get("geometry") or {}).get("location") or {}

    return BusinessRecord(
        external_id=f"google:{place['place_id']}" if place.get("place_id") else None,
        name=place.get("name") or "",
        address=place.get("formatted_address") or place.get("vicinity"),
        latitude=_to_float(location.get("lat")),
        longitude=_to_float(location.get("lng")),
        phone=place.get("formatted_phone_number"),
        rating=_to_float(place.get("rating")),
        review_count=_to_int(place.get("user_ratings_total")),
        categories=_relevant_types(place.get("types", [])),
        photos=google_photo_urls(place.get("photos", []), base_url, api_key),
        url=place.get("url"),
        is_closed=place.get("permanently_closed"),
        raw_snapshot=place,
    )


def _tripadvisor_categories(data: Dict[str, Any]) -> List[str]:
    categories = []
    category = data.get("category") or {}
    if category.get("name"):
        categories.append(category["name"])
    for subcategory in data.get("subcategory") or []:
        if subcategory.get("name"):
            categories.append(subcategory["name"])
    return list(dict.fromkeys(categories))


def tripadvisor_location_to_record(
    data: Dict[str, Any], photos: Optional[List[str]] = None, detailed: bool = False
) -> BusinessRecord:
    address = data.get("address_obj") or {}

    return BusinessRecord(
        external_id=f"tripadvisor:{data['location_id']}" if data.get("location_id") else None,
        name=data.get("name") or "",
        address=format_address(
            address.get(key) for key in ("street1", "street2", "city", "state", "postalcode", "country")
        ),
        latitude=_to_float(data.get("latitude") or address.get("latitude")),
        longitude=_to_float(data.get("longitude") or address.get("longitude")),
        phone=data.get("phone") if detailed else None,
        rating=_to_float(data.get("rating")),
        review_count=_to_int(data.get("num_reviews")),
        categories=_tripadvisor_categories(data) if detailed else [],
        photos=photos or [],
        url=data.get("web_url"),
        is_closed=data.get("is_closed") if detailed else None,
        raw_snapshot=data,
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
    return urls

import logging
from dataclasses import dataclass
from typing import Optional

import requests
from django.conf import settings

logger = logging.getLogger(__name__)


@dataclass
class Place:
    address: Optional[str]
    city: Optional[str]


def reverse_geocode(lat: float, lng: float) -> Place:
    """Resolve coordinates to a display address and city (Nominatim format)."""
    if not settings.GEOCODER_ENABLE:
        raise RuntimeError('Reverse geocoding not enabled on server')
    r = requests.get(
        settings.GEOCODER_URL,
        params={'lat': lat, 'lon': lng, 'format': 'json'},
        headers={'User-Agent': settings.GEOCODER_USER_AGENT},
        timeout=settings.GEOCODER_TIMEOUT,
    )
    r.raise_for_status()
    data = r.json()
    addr = data.get('address') or {}
    return Place(
        address=data.get('display_name'),
        city=addr.get('city') or addr.get('town') or addr.get('village'),
    )


def try_reverse_geocode(lat: float, lng: float) -> Optional[Place]:
    if not settings.GEOCODER_ENABLE:
        return None
    try:
        return reverse_geocode(lat, lng)
    except (requests.RequestException, ValueError, RuntimeError) as e:
        logger.warning("reverse geocoding failed for %.5f,%.5f: %s", lat, lng, e)
        return None

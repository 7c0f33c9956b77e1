import json
import logging
import math
import re
import urllib.error
import urllib.parse
import urllib.request
from collections import namedtuple

from django.conf import settings
from django.core.cache import cache

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3959
CACHE_KEY_PREFIX = "geocode:"

GeocodeResult = namedtuple("GeocodeResult", ["postcode", "latitude", "longitude", "district", "ward", "country"])


def get_geocoder_base_url():
    return str(getattr(settings, "GEOCODER_BASE_URL", "https://api.postcodes.io")).rstrip("/")


def get_geocoder_cache_seconds():
    try:
        configured = int(getattr(settings, "GEOCODER_CACHE_SECONDS", 30 * 24 * 60 * 60))
    except (TypeError, ValueError):
        configured = 30 * 24 * 60 * 60
    return max(60, configured)


def get_geocoder_timeout_seconds():
    try:
        configured = int(getattr(settings, "GEOCODER_TIMEOUT_SECONDS", 8))
    except (TypeError, ValueError):
        configured = 8
    return max(1, configured)


def normalize_postcode(value):
    return re.sub(r"\s+", "", str(value or "")).upper()


def haversine_miles(lat1, lon1, lat2, lon2):
    d_lat = math.radians(float(lat2) - float(lat1))
    d_lon = math.radians(float(lon2) - float(lon1))
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(float(lat1))) * math.cos(math.radians(float(lat2))) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS_MILES * c, 1)


class PostcodeGeocoder:
    """Resolve UK postcodes or outcodes through postcodes.io, caching hits for 30 days."""

    def __init__(self, base_url=None, timeout=None, cache_seconds=None):
        self.base_url = (base_url or get_geocoder_base_url()).rstrip("/")
        self.timeout = timeout or get_geocoder_timeout_seconds()
        self.cache_seconds = cache_seconds or get_geocoder_cache_seconds()

    def resolve(self, postcode_or_outcode):
        clean = normalize_postcode(postcode_or_outcode)
        if not clean:
            return None

        cache_key = f"{CACHE_KEY_PREFIX}{clean}"
        cached = cache.get(cache_key)
        if cached is not None:
            return GeocodeResult(*cached)

        try:
            result = self._lookup_full(clean) or self._lookup_outcode(clean)
        except (urllib.error.URLError, TimeoutError, ValueError) as error:
            logger.warning("Geocoding lookup for %s failed: %s", clean, error)
            return None

        if result is None:
            logger.warning("Geocoding lookup failed for %r (both full postcode and outcode).", postcode_or_outcode)
            return None

        cache.set(cache_key, tuple(result), self.cache_seconds)
        return result

    def _lookup_full(self, clean):
        payload = self._fetch(f"/postcodes/{urllib.parse.quote(clean)}")
        if payload is None:
            return None
        return GeocodeResult(
            postcode=payload.get("postcode") or clean,
            latitude=payload.get("latitude"),
            longitude=payload.get("longitude"),
            district=payload.get("admin_district") or "Unknown",
            ward=payload.get("admin_ward") or "Unknown",
            country=payload.get("country") or "UK",
        )

    def _lookup_outcode(self, clean):
        payload = self._fetch(f"/outcodes/{urllib.parse.quote(clean)}")
        if payload is None:
            return None
        district = payload.get("admin_district") or "Unknown"
        ward = payload.get("admin_ward") or "Unknown"
        # Outcode responses list every district/ward the outcode spans.
        if isinstance(district, list):
            district = district[0] if district else "Unknown"
        if isinstance(ward, list):
            ward = ward[0] if ward else "Unknown"
        country = payload.get("country") or "UK"
        if isinstance(country, list):
            country = country[0] if country else "UK"
        latitude = payload.get("latitude")
        longitude = payload.get("longitude")
        return GeocodeResult(
            postcode=payload.get("outcode") or clean,
            latitude=latitude if latitude is not None else payload.get("lat"),
            longitude=longitude if longitude is not None else payload.get("lng"),
            district=district,
            ward=ward,
            country=country,
        )

    def _fetch(self, path):
        request = urllib.request.Request(
            f"{self.base_url}{path}",
            headers={"Accept": "application/json"},
            method="GET",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                body = response.read().decode("utf-8")
        except urllib.error.HTTPError as error:
            if error.code == 404:
                return None
            raise
        data = json.loads(body or "{}")
        if data.get("status") == 200 and data.get("result"):
            result = data["result"]
            if result.get("latitude") is None and result.get("lat") is None:
                return None
            return result
        return None

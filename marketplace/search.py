import logging
import math
import re
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from .constants import CITIES, POPULAR_SERVICES, SORT_KEYS, URGENCY_ORDER, service_name_from_slug
from .geocoding import haversine_miles
from .keywords import to_slug
from .mappers import (
    job_from_hit,
    provider_from_hit,
    serialize_job,
    serialize_provider,
    to_datetime,
    to_decimal,
    to_epoch_ms,
    to_number,
)
from .models import Profile

logger = logging.getLogger(__name__)

METRES_PER_MILE = 1609.34
MAX_PAGE_SIZE = 50
COORDINATES_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*$")


def get_default_page_size():
    try:
        configured = int(getattr(settings, "SEARCH_DEFAULT_PAGE_SIZE", 6))
    except (TypeError, ValueError):
        configured = 6
    return min(MAX_PAGE_SIZE, max(1, configured))


def get_providers_index_name():
    return str(getattr(settings, "SEARCH_INDEX_PROVIDERS", "plumbers") or "plumbers")


def _quoted(value):
    return '"' + str(value).replace('"', '\\"') + '"'


def _positive_int(value, default):
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def radius_to_metres(miles):
    return max(int(math.floor(float(miles) * METRES_PER_MILE)), 1)


def numeric_literal(value):
    """Plain decimal text for index filters: no exponent, no rounding."""
    number = to_decimal(value).normalize()
    return format(number, "f")


class JobSearchParams:
    """Caller-supplied job search criteria. Only the criteria (not paging or sort) count as filters."""

    def __init__(
        self,
        query="",
        location="",
        radius=None,
        service_type="",
        skills=None,
        min_budget=None,
        max_budget=None,
        urgency="",
        no_quotes=False,
        date_posted=None,
        sort_by="newest",
        page=1,
        limit=None,
    ):
        self.query = (query or "").strip()
        self.location = (location or "").strip()
        self.radius = to_number(radius)
        self.service_type = (service_type or "").strip()
        self.skills = [str(item).strip() for item in skills or [] if str(item).strip()]
        self.min_budget = to_number(min_budget)
        self.max_budget = to_number(max_budget)
        self.urgency = (urgency or "").strip()
        self.no_quotes = bool(no_quotes)
        self.date_posted = _positive_int(date_posted, None)
        self.sort_by = sort_by if sort_by in SORT_KEYS else "newest"
        self.page = _positive_int(page, 1)
        self.limit = min(MAX_PAGE_SIZE, _positive_int(limit, get_default_page_size()))

    @classmethod
    def from_query_params(cls, params):
        skills = params.getlist("skills") if hasattr(params, "getlist") else params.get("skills")
        if isinstance(skills, str):
            skills = skills.split(",")
        if skills and len(skills) == 1 and "," in skills[0]:
            skills = skills[0].split(",")
        return cls(
            query=params.get("q") or params.get("query"),
            location=params.get("location"),
            radius=params.get("radius"),
            service_type=params.get("service_type"),
            skills=skills,
            min_budget=params.get("min_budget"),
            max_budget=params.get("max_budget"),
            urgency=params.get("urgency"),
            no_quotes=str(params.get("no_quotes") or "").lower() in ("1", "true", "yes", "on"),
            date_posted=params.get("date_posted"),
            sort_by=params.get("sort_by") or "newest",
            page=params.get("page"),
            limit=params.get("limit"),
        )

    @property
    def has_active_filters(self):
        return bool(
            self.query
            or self.location
            or self.service_type
            or self.skills
            or self.min_budget is not None
            or self.max_budget is not None
            or self.urgency
            or self.no_quotes
            or self.date_posted
        )

    def summary(self):
        return {
            "query": self.query,
            "location": self.location,
            "radius": self.radius,
            "service_type": self.service_type,
            "skills": list(self.skills),
            "min_budget": self.min_budget,
            "max_budget": self.max_budget,
            "urgency": self.urgency,
            "no_quotes": self.no_quotes,
            "date_posted": self.date_posted,
            "sort_by": self.sort_by,
            "has_active_filters": self.has_active_filters,
        }


def _budget(item):
    return item.get("budget") or 0


def _created(item):
    return to_datetime(item.get("created_at")) or timezone.now()


def sort_jobs(items, sort_by):
    items = sorted(items, key=_created, reverse=True)
    if sort_by == "budget_high":
        items.sort(key=_budget, reverse=True)
    elif sort_by == "budget_low":
        items.sort(key=_budget)
    elif sort_by == "urgency":
        items.sort(key=lambda item: URGENCY_ORDER.get(item.get("urgency"), len(URGENCY_ORDER)))
    elif sort_by == "distance":
        items.sort(key=lambda item: (item.get("distance") is None, item.get("distance") or 0))
    return items


def job_stats(items):
    budgets = [_budget(item) for item in items]
    return {
        "total": len(items),
        "emergency_jobs": sum(1 for item in items if item.get("urgency") == "emergency"),
        "avg_budget": round(sum(budgets) / len(budgets), 2) if budgets else 0,
    }


def empty_job_result(params):
    return {
        "items": [],
        "pagination": {
            "page": params.page,
            "limit": params.limit,
            "total_items": 0,
            "total_pages": 0,
            "has_next": False,
            "has_prev": params.page > 1,
        },
        "filters": params.summary(),
        "stats": job_stats([]),
    }


class JobSearch:
    """Open-job search over the index, with a repository scan when an unfiltered search comes back empty."""

    def __init__(self, search_index, job_service, geocoder, index_name=None):
        self.search_index = search_index
        self.job_service = job_service
        self.geocoder = geocoder
        self.index_name = index_name or job_service.index_name

    def search(self, params):
        try:
            origin = self._resolve_origin(params.location)
            if params.location and origin is None:
                logger.info("Search location %r could not be resolved; ignoring it", params.location)

            response, geo_applied = self._query_index(params, origin)
            if response.total == 0 and not params.has_active_filters:
                logger.info("Index returned nothing for an unfiltered search; scanning open jobs")
                return self._fallback(params, origin)

            items = [self._with_distance(job_from_hit(hit), origin) for hit in response.hits]
            if not (params.sort_by == "distance" and geo_applied):
                items = sort_jobs(items, params.sort_by)
            stats = job_stats(items)
            stats["total"] = response.total
            return self._result(params, items, response.total, response.pages, stats)
        except Exception:
            logger.exception("Job search failed")
            return empty_job_result(params)

    def get_filters(self):
        """Facet counts of open jobs by city and specialty, largest first."""
        try:
            response = self.search_index.search(
                self.index_name,
                filters="status:open",
                hits_per_page=0,
                facets=["city_slug", "specialties"],
            )
        except Exception:
            logger.exception("Loading job search filters failed")
            return {"cities": [], "specialties": []}

        def facet(name):
            counts = response.facets.get(name) or {}
            entries = [{"value": value, "count": int(count)} for value, count in counts.items()]
            return sorted(entries, key=lambda entry: entry["count"], reverse=True)

        return {"cities": facet("city_slug"), "specialties": facet("specialties")}

    def _resolve_origin(self, location):
        if not location:
            return None
        match = COORDINATES_RE.match(location)
        if match:
            return float(match.group(1)), float(match.group(2))
        geocoded = self.geocoder.resolve(location)
        if geocoded is None or geocoded.latitude is None or geocoded.longitude is None:
            return None
        return float(geocoded.latitude), float(geocoded.longitude)

    def _index_filters(self, params):
        filters = ["status:open"]
        if params.urgency:
            filters.append(f"urgency:{_quoted(params.urgency)}")
        services = [params.service_type] if params.service_type else [service_name_from_slug(item) for item in params.skills]
        if services:
            clauses = []
            for service in services:
                clauses.append(f"service_type:{_quoted(service)}")
                clauses.append(f"specialties:{_quoted(service)}")
            filters.append("(" + " OR ".join(clauses) + ")")

        numeric = []
        if params.min_budget is not None:
            numeric.append(f"budget>={numeric_literal(params.min_budget)}")
        if params.max_budget is not None:
            numeric.append(f"budget<={numeric_literal(params.max_budget)}")
        if params.no_quotes:
            numeric.append("quote_count=0")
        if params.date_posted:
            since = timezone.now() - timedelta(days=params.date_posted)
            numeric.append(f"created_at_ts>={to_epoch_ms(since)}")
        return " AND ".join(filters), numeric

    def _query_index(self, params, origin):
        filters, numeric = self._index_filters(params)
        query = {
            "query": params.query,
            "filters": filters,
            "numeric_filters": numeric,
            "page": params.page - 1,
            "hits_per_page": params.limit,
        }
        if origin is None:
            return self.search_index.search(self.index_name, **query), False

        geo = {"around_lat_lng": f"{origin[0]},{origin[1]}"}
        if params.radius:
            geo["around_radius"] = radius_to_metres(params.radius)
        response = self.search_index.search(self.index_name, **query, **geo)
        if response.total == 0 and params.radius:
            logger.info("No jobs within %s miles of %s; retrying without the radius", params.radius, params.location)
            return self.search_index.search(self.index_name, **query), False
        return response, True

    def _fallback(self, params, origin):
        jobs = [self._with_distance(serialize_job(job), origin) for job in self.job_service.get_open_jobs()]
        matched = [item for item in jobs if self._matches(item, params, origin)]
        matched = sort_jobs(matched, params.sort_by)
        total = len(matched)
        start = (params.page - 1) * params.limit
        page_items = matched[start : start + params.limit]
        total_pages = math.ceil(total / params.limit) if total else 0
        return self._result(params, page_items, total, total_pages, job_stats(matched))

    def _matches(self, item, params, origin):
        if params.query:
            location = item.get("location") or {}
            haystack = " ".join(
                [
                    item.get("title") or "",
                    item.get("description") or "",
                    f"{location.get('postcode') or ''} {location.get('town') or ''}",
                ]
            ).lower()
            if params.query.lower() not in haystack:
                return False
        if params.service_type or params.skills:
            wanted = [params.service_type] if params.service_type else [service_name_from_slug(s) for s in params.skills]
            offered = [item.get("service_type")] + list(item.get("skills") or [])
            if not any(service in offered for service in wanted):
                return False
        if params.urgency and item.get("urgency") != params.urgency:
            return False
        if params.min_budget is not None and _budget(item) < params.min_budget:
            return False
        if params.max_budget is not None and _budget(item) > params.max_budget:
            return False
        if params.no_quotes and item.get("quote_count"):
            return False
        if params.date_posted and _created(item) < timezone.now() - timedelta(days=params.date_posted):
            return False
        if origin is not None and params.radius:
            distance = item.get("distance")
            if distance is None or distance > params.radius:
                return False
        return True

    @staticmethod
    def _with_distance(item, origin):
        if origin is None:
            return item
        location = item.get("location") or {}
        if location.get("latitude") is None or location.get("longitude") is None:
            item["distance"] = None
        else:
            item["distance"] = haversine_miles(origin[0], origin[1], location["latitude"], location["longitude"])
        return item

    @staticmethod
    def _result(params, items, total, total_pages, stats):
        return {
            "items": items,
            "pagination": {
                "page": params.page,
                "limit": params.limit,
                "total_items": total,
                "total_pages": total_pages,
                "has_next": params.page < total_pages,
                "has_prev": params.page > 1,
            },
            "filters": params.summary(),
            "stats": stats,
        }


def get_static_job_params():
    """Every city and popular service slug pair, for prebuilt landing pages."""
    return [{"city": to_slug(city), "service": to_slug(service)} for city in CITIES for service in POPULAR_SERVICES]


class ProviderSearch:
    def __init__(self, search_index, index_name=None):
        self.search_index = search_index
        self.index_name = index_name or get_providers_index_name()

    def search(self, query="", city=None, service=None, page=1, limit=10):
        page = _positive_int(page, 1)
        limit = min(MAX_PAGE_SIZE, _positive_int(limit, 10))
        city_slug = to_slug(city)
        service_slug = to_slug(service)
        filters = []
        if city_slug:
            filters.append(f"city_slug:{_quoted(city_slug)}")
        if service_slug:
            filters.append(f"service_slugs:{_quoted(service_slug)}")

        try:
            response = self.search_index.search(
                self.index_name,
                query=(query or "").strip(),
                filters=" AND ".join(filters),
                page=page - 1,
                hits_per_page=limit,
            )
            if response.total == 0 and not ((query or "").strip() or filters):
                return self._fallback(page, limit)
            return {"users": [provider_from_hit(hit) for hit in response.hits], "total": response.total}
        except Exception:
            logger.exception("Provider search failed")
            return {"users": [], "total": 0}

    def _fallback(self, page, limit):
        profiles = Profile.objects.filter(role="tradesperson").select_related("user").order_by("id")
        total = profiles.count()
        start = (page - 1) * limit
        return {"users": [serialize_provider(profile) for profile in profiles[start : start + limit]], "total": total}

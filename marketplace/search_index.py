import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from collections import namedtuple

from django.conf import settings

from .exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

SearchResponse = namedtuple("SearchResponse", ["hits", "total", "pages", "facets"])

EMPTY_RESPONSE = SearchResponse(hits=[], total=0, pages=0, facets={})


def get_search_index_timeout_seconds():
    try:
        configured = int(getattr(settings, "SEARCH_INDEX_TIMEOUT_SECONDS", 5))
    except (TypeError, ValueError):
        configured = 5
    return max(1, configured)


def _encode_param(value):
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class SearchIndexClient:
    """Minimal client for an Algolia-compatible REST search index."""

    enabled = True

    def __init__(self, app_id, api_key, timeout=None):
        self.app_id = app_id
        self.api_key = api_key
        self.timeout = timeout or get_search_index_timeout_seconds()
        self.read_host = f"https://{app_id}-dsn.algolia.net"
        self.write_host = f"https://{app_id}.algolia.net"

    def search(
        self,
        index_name,
        *,
        query="",
        filters="",
        numeric_filters=None,
        around_lat_lng=None,
        around_radius=None,
        page=0,
        hits_per_page=20,
        facets=None,
    ):
        params = {"query": query or "", "page": max(0, int(page)), "hitsPerPage": max(0, int(hits_per_page))}
        if filters:
            params["filters"] = filters
        if numeric_filters:
            params["numericFilters"] = list(numeric_filters)
        if around_lat_lng:
            params["aroundLatLng"] = around_lat_lng
            if around_radius is not None:
                params["aroundRadius"] = int(around_radius)
        if facets:
            params["facets"] = list(facets)

        encoded = urllib.parse.urlencode({key: _encode_param(value) for key, value in params.items()})
        data = self._request("POST", self.read_host, f"/1/indexes/{self._index(index_name)}/query", {"params": encoded})
        return SearchResponse(
            hits=list(data.get("hits") or []),
            total=int(data.get("nbHits") or 0),
            pages=int(data.get("nbPages") or 0),
            facets=dict(data.get("facets") or {}),
        )

    def browse_all(self, index_name, query=""):
        hits = []
        body = {"params": urllib.parse.urlencode({"query": query or ""})}
        path = f"/1/indexes/{self._index(index_name)}/browse"
        while True:
            data = self._request("POST", self.read_host, path, body)
            hits.extend(data.get("hits") or [])
            cursor = data.get("cursor")
            if not cursor:
                return hits
            body = {"cursor": cursor}

    def save_object(self, index_name, record):
        object_id = urllib.parse.quote(str(record["objectID"]), safe="")
        self._request("PUT", self.write_host, f"/1/indexes/{self._index(index_name)}/{object_id}", record)

    def delete_object(self, index_name, object_id):
        quoted = urllib.parse.quote(str(object_id), safe="")
        self._request("DELETE", self.write_host, f"/1/indexes/{self._index(index_name)}/{quoted}")

    @staticmethod
    def _index(index_name):
        return urllib.parse.quote(index_name, safe="")

    def _request(self, method, host, path, payload=None):
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        request = urllib.request.Request(
            f"{host}{path}",
            data=data,
            headers={
                "Content-Type": "application/json",
                "X-Algolia-Application-Id": self.app_id,
                "X-Algolia-API-Key": self.api_key,
            },
            method=method,
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                body = response.read().decode("utf-8")
        except (urllib.error.URLError, TimeoutError) as error:
            raise ExternalServiceError(f"Search index request failed: {error}") from error
        try:
            return json.loads(body or "{}")
        except ValueError as error:
            raise ExternalServiceError("Search index returned an unreadable response.") from error


class DisabledSearchIndex:
    """Stand-in used when no index credentials are configured; every query comes back empty."""

    enabled = False

    def search(self, index_name, **params):
        return EMPTY_RESPONSE

    def browse_all(self, index_name, query=""):
        return []

    def save_object(self, index_name, record):
        return None

    def delete_object(self, index_name, object_id):
        return None


def build_search_index():
    app_id = str(getattr(settings, "SEARCH_INDEX_APP_ID", "") or "").strip()
    api_key = str(getattr(settings, "SEARCH_INDEX_API_KEY", "") or "").strip()
    if not app_id or not api_key:
        logger.info("Search index credentials missing; indexed search is disabled.")
        return DisabledSearchIndex()
    return SearchIndexClient(app_id, api_key)

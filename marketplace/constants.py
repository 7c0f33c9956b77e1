from .keywords import to_slug


ALL_SERVICES = [
    "Boiler Repair & Installation",
    "Leak Detection & Repair",
    "Drain Cleaning & Unblocking",
    "Bathroom Plumbing",
    "Kitchen Plumbing",
    "Gas Services",
    "Central Heating Systems",
    "Water Heater Installation",
    "Emergency Plumber",
    "Tiling",
    "Boiler Installation",
    "Blocked Drains",
    "Water Heater Repair",
    "Toilet Repairs",
    "Tap Installation & Repair",
    "Pipe Repairs",
    "General Plumbing",
    "Radiator Installation & Repair",
    "Sewer Line Services",
]

PAID_TIERS = ("pro", "business")

CITIES = [
    "London",
    "Manchester",
    "Birmingham",
    "Leeds",
    "Liverpool",
    "Glasgow",
    "Bristol",
    "Sheffield",
    "Edinburgh",
    "Cardiff",
    "Belfast",
    "Coventry",
    "Nottingham",
]

POPULAR_SERVICES = [
    "Kitchen Plumbing",
    "Boiler Repair & Installation",
    "Leak Detection",
    "Drain Cleaning and Unblocking",
    "Bathroom Plumbing",
    "Emergency Plumber",
]

# Checked in order; the first matching prefix wins, so two-letter areas come first.
METRO_REGION_PREFIXES = (
    ("EC", "central"),
    ("WC", "central"),
    ("W1", "central"),
    ("NW", "north"),
    ("SE", "south"),
    ("SW", "south"),
    ("N", "north"),
    ("E", "east"),
    ("W", "west"),
)

URGENCY_ORDER = {
    "emergency": 0,
    "urgent": 1,
    "soon": 2,
    "flexible": 3,
}

SORT_KEYS = ("newest", "budget_high", "budget_low", "distance", "urgency")

SUGGESTION_LIMIT = 5
SUGGESTION_MIN_QUERY_LENGTH = 2

_service_by_slug = {}


def service_name_from_slug(slug):
    """Map a service slug back to its display name, title-casing unknown slugs."""
    if not _service_by_slug:
        for service in ALL_SERVICES + POPULAR_SERVICES:
            _service_by_slug.setdefault(to_slug(service), service)
    value = (slug or "").strip()
    if value in _service_by_slug:
        return _service_by_slug[value]
    return " ".join(word[:1].upper() + word[1:] for word in value.split("-") if word)

"""Search keyword and slug helpers shared by jobs, profiles and the index records."""

from django.utils.text import slugify


def to_slug(value):
    """Return a URL-safe slug for ``value`` or ``None`` when nothing usable remains."""
    if value is None:
        return None
    text = str(value).strip().replace("_", " ")
    if not text:
        return None
    slug = slugify(text).strip("-")
    return slug or None


def _words(value):
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        words = []
        for item in value:
            words.extend(_words(item))
        return words
    return str(value).lower().split()


def generate_job_keywords(*, title="", description="", service_type="", postcode="", town="", address="", skills=None):
    keywords = []
    seen = set()
    for source in (title, description, service_type, postcode, town, address, skills or []):
        for word in _words(source):
            if word not in seen:
                seen.add(word)
                keywords.append(word)
    return keywords


def keywords_for_job(job):
    return generate_job_keywords(
        title=job.title,
        description=job.description,
        service_type=job.service_type,
        postcode=job.postcode,
        town=job.town,
        address=job.address,
        skills=job.skills,
    )


def normalize_specialties(values):
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    cleaned = []
    seen = set()
    for value in values:
        text = " ".join(str(value or "").split())
        key = text.lower()
        if not text or key in seen:
            continue
        seen.add(key)
        cleaned.append(text)
    return cleaned


def derive_city_slug(explicit=None, town=None, geocoded=None):
    """First non-empty of: explicit value, town, geocoded district, geocoded ward."""
    candidates = [explicit, town]
    if geocoded is not None:
        candidates.extend([geocoded.district, geocoded.ward])
    for candidate in candidates:
        slug = to_slug(candidate)
        if slug and slug != "unknown":
            return slug
    return None

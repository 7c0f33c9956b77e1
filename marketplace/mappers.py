"""Normalizers applied where loosely typed data enters or leaves the app.

Index hits and legacy JSON columns (payments, line items) can carry dates as
datetimes, epoch milliseconds or ISO strings and amounts as numbers or text.
Everything is coerced here so the rest of the code only sees one shape.
"""

from datetime import datetime, timezone as dt_timezone
from decimal import Decimal, InvalidOperation

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

PAYMENT_TYPES = ("deposit", "final")
MISSING_TEXT = "N/A"


def to_datetime(value):
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if timezone.is_aware(value) else timezone.make_aware(value, dt_timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=dt_timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return to_datetime(int(text))
        parsed = parse_datetime(text)
        if parsed is None:
            day = parse_date(text)
            if day is None:
                return None
            parsed = datetime(day.year, day.month, day.day)
        return to_datetime(parsed)
    return None


def to_epoch_ms(value):
    moment = to_datetime(value)
    if moment is None:
        return None
    return int(moment.timestamp() * 1000)


def to_number(value, default=None):
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError):
        return default


def to_decimal(value):
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None


def _isoformat(value):
    moment = to_datetime(value)
    return moment.isoformat() if moment else None


def map_payment_record(record):
    if not isinstance(record, dict):
        return None
    payment_type = record.get("type")
    if payment_type not in PAYMENT_TYPES:
        return None
    reference = record.get("reference") or record.get("paymentIntentId")
    if not isinstance(reference, str) or not reference:
        return None
    paid_at = to_datetime(record.get("paid_at") or record.get("paidAt"))
    if paid_at is None:
        return None
    return {
        "type": payment_type,
        "amount": to_number(record.get("amount"), 0.0),
        "paid_at": paid_at,
        "reference": reference,
    }


def extract_payments(raw):
    if not isinstance(raw, list):
        return []
    return [payment for payment in (map_payment_record(entry) for entry in raw) if payment]


def total_payments(raw):
    total = sum(payment["amount"] for payment in extract_payments(raw))
    return total if total > 0 else None


def serialize_job(job):
    return {
        "id": job.id,
        "customer_id": job.customer_id,
        "title": job.title,
        "description": job.description,
        "service_type": job.service_type,
        "skills": list(job.skills or []),
        "location": job.location,
        "city_slug": job.city_slug or None,
        "urgency": job.urgency,
        "budget": to_number(job.budget),
        "status": job.status,
        "tradesperson_id": job.tradesperson_id,
        "accepted_quote_id": job.accepted_quote_id,
        "quote_count": job.quote_count,
        "payments": [
            dict(payment, paid_at=payment["paid_at"].isoformat()) for payment in extract_payments(job.payments)
        ],
        "scheduled_date": _isoformat(job.scheduled_date),
        "completed_date": _isoformat(job.completed_date),
        "created_at": _isoformat(job.created_at),
        "updated_at": _isoformat(job.updated_at),
    }


def job_index_record(job):
    record = serialize_job(job)
    record.pop("payments")
    record.update(
        {
            "objectID": str(job.id),
            "postcode": job.postcode,
            "town": job.town,
            "specialties": list(job.skills or []),
            "search_keywords": list(job.search_keywords or []),
            "created_at_ts": to_epoch_ms(job.created_at),
        }
    )
    if job.has_coordinates:
        record["_geoloc"] = {"lat": float(job.latitude), "lng": float(job.longitude)}
    return record


def job_from_hit(hit):
    location = hit.get("location") if isinstance(hit.get("location"), dict) else {}
    if isinstance(hit.get("location"), str):
        location = {"postcode": hit["location"]}
    geoloc = hit.get("_geoloc") if isinstance(hit.get("_geoloc"), dict) else {}
    raw_id = hit.get("id") or hit.get("objectID") or ""
    try:
        job_id = int(raw_id)
    except (TypeError, ValueError):
        job_id = raw_id
    created_at = to_datetime(hit.get("created_at_ts")) or to_datetime(hit.get("created_at")) or datetime.fromtimestamp(
        0, tz=dt_timezone.utc
    )
    return {
        "id": job_id,
        "customer_id": hit.get("customer_id"),
        "title": hit.get("title") or "",
        "description": hit.get("description") or "",
        "service_type": hit.get("service_type") or "",
        "skills": list(hit.get("skills") or []),
        "location": {
            "postcode": location.get("postcode") or hit.get("postcode") or "",
            "town": location.get("town") or hit.get("town") or "",
            "address": location.get("address") or "",
            "latitude": to_number(location.get("latitude"), to_number(geoloc.get("lat"))),
            "longitude": to_number(location.get("longitude"), to_number(geoloc.get("lng"))),
        },
        "city_slug": hit.get("city_slug") or None,
        "urgency": hit.get("urgency") or "flexible",
        "budget": to_number(hit.get("budget")),
        "status": hit.get("status") or "open",
        "tradesperson_id": hit.get("tradesperson_id"),
        "accepted_quote_id": hit.get("accepted_quote_id"),
        "quote_count": int(to_number(hit.get("quote_count"), 0)),
        "payments": [],
        "scheduled_date": _isoformat(hit.get("scheduled_date")),
        "completed_date": _isoformat(hit.get("completed_date")),
        "created_at": created_at.isoformat(),
        "updated_at": _isoformat(hit.get("updated_at")) or created_at.isoformat(),
    }


def serialize_quote(quote):
    deposit = to_number(quote.deposit_amount)
    line_items = quote.line_items if isinstance(quote.line_items, list) and quote.line_items else None
    return {
        "id": quote.id,
        "job_id": quote.job_id,
        "tradesperson_id": quote.tradesperson_id,
        "tradesperson_name": quote.tradesperson_name or MISSING_TEXT,
        "tradesperson_phone": quote.tradesperson_phone or MISSING_TEXT,
        "price": to_number(quote.price, 0.0),
        "deposit_amount": deposit if deposit and deposit > 0 else None,
        "description": quote.description or "",
        "estimated_duration": quote.estimated_duration or "",
        "available_date": _isoformat(quote.available_date),
        "line_items": line_items,
        "status": quote.status or "pending",
        "created_at": _isoformat(quote.created_at),
        "updated_at": _isoformat(quote.updated_at),
        "accepted_date": _isoformat(quote.accepted_date),
    }


def serialize_provider(profile):
    return {
        "id": profile.user_id,
        "name": profile.name,
        "city_slug": profile.city_slug or None,
        "service_slugs": list(profile.service_slugs or []),
        "specialties": list(profile.specialties or []),
        "service_areas": profile.service_areas,
        "subscription_tier": profile.subscription_tier,
        "description": profile.description,
    }


def provider_index_record(profile):
    record = serialize_provider(profile)
    record["objectID"] = str(profile.user_id)
    return record


def provider_from_hit(hit):
    raw_id = hit.get("id") or hit.get("objectID")
    try:
        provider_id = int(raw_id)
    except (TypeError, ValueError):
        provider_id = raw_id
    return {
        "id": provider_id,
        "name": hit.get("name") or "",
        "city_slug": hit.get("city_slug") or None,
        "service_slugs": list(hit.get("service_slugs") or []),
        "specialties": list(hit.get("specialties") or []),
        "service_areas": hit.get("service_areas") or "",
        "subscription_tier": hit.get("subscription_tier") or "basic",
        "description": hit.get("description") or "",
    }

import logging
from collections import namedtuple

from django.conf import settings

from .constants import METRO_REGION_PREFIXES
from .exceptions import best_effort
from .models import Profile

logger = logging.getLogger(__name__)

TierMatches = namedtuple("TierMatches", ["business", "pro", "basic"])


def get_metro_slug():
    return str(getattr(settings, "MATCHING_METRO_SLUG", "london") or "").strip().lower()


def normalize_token(value):
    return str(value or "").strip().lower()


def postcode_prefix(postcode):
    text = normalize_token(postcode)
    return text.split(" ")[0] if text else ""


def derive_metro_region(prefix):
    """Coarse compass region for a metro postcode area, e.g. ``SW2`` -> ``south``."""
    code = normalize_token(prefix).upper()
    if not code:
        return None
    for area, region in METRO_REGION_PREFIXES:
        if code.startswith(area):
            return region
    return None


def area_match(service_areas, tokens, region=None, metro=None):
    areas = normalize_token(service_areas)
    if not areas:
        return None
    for token in tokens:
        if token and token in areas:
            return f"token:{token}"
    if region:
        phrases = [region, f"{region} {metro}", f"{region} {metro} area"]
        if any(phrase in areas for phrase in phrases):
            return f"region:{region}"
    return None


def specialty_match(service_type, specialties):
    wanted = normalize_token(service_type)
    if not wanted:
        return False
    normalized = [normalize_token(item) for item in specialties or []]
    normalized = [item for item in normalized if item]
    return wanted in normalized or any(wanted in item for item in normalized)


def find_matching_tradespeople(job):
    """Split opted-in tradespeople who cover the job's area and trade into tier buckets."""
    job_prefix = postcode_prefix(job.postcode)
    job_service_type = normalize_token(job.service_type)
    if not job_prefix or not job_service_type:
        logger.info(
            "Skipping matching for job %s: postcode prefix=%r service type=%r",
            job.id,
            job_prefix,
            job_service_type,
        )
        return TierMatches(business=[], pro=[], basic=[])

    job_town = normalize_token(job.town)
    job_city_slug = normalize_token(job.city_slug)
    tokens = [job_prefix]
    if job_town:
        tokens.append(job_town)
    if job_city_slug and job_city_slug != job_town:
        tokens.append(job_city_slug)

    metro = get_metro_slug()
    region = derive_metro_region(job_prefix) if metro and job_city_slug == metro else None

    candidates = (
        Profile.objects.filter(role="tradesperson", new_job_alerts=True)
        .select_related("user")
        .order_by("id")
    )
    matches = TierMatches(business=[], pro=[], basic=[])
    for profile in candidates:
        reason = area_match(profile.service_areas, tokens, region=region, metro=metro)
        trade_ok = specialty_match(job_service_type, profile.specialties)
        tier = profile.subscription_tier or "basic"
        logger.debug(
            "Candidate %s tier=%s areas=%r area=%s specialty=%s",
            profile.user_id,
            tier,
            profile.service_areas,
            reason,
            trade_ok,
        )
        if not reason or not trade_ok:
            continue
        bucket = getattr(matches, tier, None)
        if bucket is None:
            bucket = matches.basic
        bucket.append(profile)

    logger.info(
        "Matching for job %s: business=%s pro=%s basic=%s",
        job.id,
        len(matches.business),
        len(matches.pro),
        len(matches.basic),
    )
    return matches


def dispatch_job_alerts(job, matches, notifier, mailer):
    """In-app alert for every match, email for every match that has an address."""
    recipients = list(matches.business) + list(matches.pro) + list(matches.basic)
    if not recipients:
        logger.warning("No tradespeople matched job %s; no alerts sent", job.id)
        return 0

    emails_sent = 0
    for profile in recipients:
        with best_effort("New job notification", job_id=job.id, user_id=profile.user_id):
            notifier.create_notification(
                profile.user_id,
                "new_job",
                f'A new job matching your skills has been posted: "{job.title}"',
                {"job_id": job.id},
            )
        email = profile.user.email
        if not email:
            continue
        with best_effort("New job alert email", job_id=job.id, user_id=profile.user_id):
            if mailer.send_new_job_alert(email, job, profile.user.first_name or profile.name):
                emails_sent += 1

    logger.info("Job %s alerts: %s notified, %s emailed", job.id, len(recipients), emails_sent)
    return emails_sent

import logging
from decimal import Decimal

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from .constants import SUGGESTION_LIMIT, SUGGESTION_MIN_QUERY_LENGTH
from .exceptions import InvalidInput, MarketplaceError, NotAuthorized, NotFound, OperationFailed, StateConflict, best_effort
from .keywords import derive_city_slug, keywords_for_job, to_slug
from .mappers import extract_payments, job_index_record, to_datetime, to_decimal
from .matching import dispatch_job_alerts, find_matching_tradespeople
from .models import Conversation, ConversationMessage, Job, Quote

logger = logging.getLogger(__name__)

TEXT_FIELDS = ("title", "description", "service_type")
LOCATION_FIELDS = ("postcode", "town", "address")
KEYWORD_FIELDS = TEXT_FIELDS + LOCATION_FIELDS + ("skills",)
UPDATABLE_FIELDS = TEXT_FIELDS + (
    "skills",
    "urgency",
    "budget",
    "scheduled_date",
    "customer_contact_name",
    "customer_contact_email",
    "customer_contact_phone",
)


def get_jobs_index_name():
    return str(getattr(settings, "SEARCH_INDEX_JOBS", "jobs") or "jobs")


def normalize_location(raw):
    """Accept a bare postcode string or a location mapping."""
    if raw is None:
        return {}
    if isinstance(raw, str):
        return {"postcode": raw.strip()}
    if not isinstance(raw, dict):
        raise InvalidInput("Location must be a postcode or an object.")
    location = {}
    for key in LOCATION_FIELDS:
        if key in raw and raw[key] is not None:
            location[key] = str(raw[key]).strip()
    for key in ("latitude", "longitude"):
        if raw.get(key) is not None:
            value = to_decimal(raw[key])
            if value is None:
                raise InvalidInput(f"Invalid {key}.")
            location[key] = value.quantize(Decimal("0.000001"))
    return location


def _coordinate(value):
    return Decimal(str(value)).quantize(Decimal("0.000001"))


class JobService:
    def __init__(self, geocoder, search_index, notifier, mailer, index_name=None):
        self.geocoder = geocoder
        self.search_index = search_index
        self.notifier = notifier
        self.mailer = mailer
        self.index_name = index_name or get_jobs_index_name()

    # Writes

    def create_job(self, customer_id, data):
        title = (data.get("title") or "").strip()
        if not title:
            raise InvalidInput("A job title is required.")
        urgency = data.get("urgency") or "flexible"
        if urgency not in dict(Job.URGENCY_CHOICES):
            raise InvalidInput("Unknown urgency.")
        budget = to_decimal(data.get("budget"))
        if data.get("budget") not in (None, "") and budget is None:
            raise InvalidInput("Budget must be a number.")

        location = normalize_location(data.get("location"))
        geocoded = None
        if location.get("postcode"):
            with best_effort("Geocoding new job", postcode=location["postcode"]):
                geocoded = self.geocoder.resolve(location["postcode"])
        if geocoded is not None and geocoded.latitude is not None:
            location["latitude"] = _coordinate(geocoded.latitude)
            location["longitude"] = _coordinate(geocoded.longitude)

        job = Job(
            customer_id=customer_id,
            title=title,
            description=(data.get("description") or "").strip(),
            service_type=(data.get("service_type") or "").strip(),
            skills=[str(item).strip() for item in data.get("skills") or [] if str(item).strip()],
            urgency=urgency,
            budget=budget,
            status="open",
            quote_count=0,
            scheduled_date=to_datetime(data.get("scheduled_date")),
            customer_contact_name=(data.get("customer_contact_name") or "").strip(),
            customer_contact_email=(data.get("customer_contact_email") or "").strip(),
            customer_contact_phone=(data.get("customer_contact_phone") or "").strip(),
            **location,
        )
        job.city_slug = derive_city_slug(data.get("city_slug"), job.town, geocoded) or ""
        job.search_keywords = keywords_for_job(job)

        try:
            job.save()
        except DatabaseError:
            logger.exception("Creating job for customer %s failed", customer_id)
            raise OperationFailed("Failed to create job.")

        logger.info('Job %s created ("%s")', job.id, job.title)
        self._index(job)
        with best_effort("Job alerts", job_id=job.id):
            matches = find_matching_tradespeople(job)
            dispatch_job_alerts(job, matches, self.notifier, self.mailer)
        return job

    def update_job(self, job_id, partial):
        job = Job.objects.filter(id=job_id).first()
        if job is None:
            raise NotFound("Job not found.")

        changed = set()
        for field in UPDATABLE_FIELDS:
            if field not in partial:
                continue
            value = partial[field]
            if field == "budget":
                value = to_decimal(value)
            elif field == "scheduled_date":
                value = to_datetime(value)
            elif field == "urgency" and value not in dict(Job.URGENCY_CHOICES):
                raise InvalidInput("Unknown urgency.")
            elif field == "skills":
                value = [str(item).strip() for item in value or [] if str(item).strip()]
            elif isinstance(value, str):
                value = value.strip()
            elif value is None:
                value = ""
            setattr(job, field, value)
            changed.add(field)

        if "location" in partial and partial["location"] is not None:
            location = normalize_location(partial["location"])
            for key, value in location.items():
                setattr(job, key, value)
                changed.add(key)
            if "latitude" not in location or "longitude" not in location:
                job.latitude = location.get("latitude")
                job.longitude = location.get("longitude")
                changed.update({"latitude", "longitude"})

            city_slug = derive_city_slug(partial.get("city_slug"), job.town)
            needs_coordinates = not job.has_coordinates
            if (not city_slug or needs_coordinates) and job.postcode:
                geocoded = None
                with best_effort("Geocoding updated job", job_id=job.id, postcode=job.postcode):
                    geocoded = self.geocoder.resolve(job.postcode)
                if geocoded is not None:
                    if needs_coordinates and geocoded.latitude is not None:
                        job.latitude = _coordinate(geocoded.latitude)
                        job.longitude = _coordinate(geocoded.longitude)
                    if not city_slug:
                        city_slug = derive_city_slug(partial.get("city_slug"), job.town, geocoded)
            if city_slug:
                job.city_slug = city_slug
                changed.add("city_slug")
        elif partial.get("city_slug"):
            city_slug = to_slug(partial["city_slug"])
            if city_slug:
                job.city_slug = city_slug
                changed.add("city_slug")

        if changed & set(KEYWORD_FIELDS):
            job.search_keywords = keywords_for_job(job)
            changed.add("search_keywords")

        if not changed:
            return job
        try:
            job.save(update_fields=sorted(changed) + ["updated_at"])
        except DatabaseError:
            logger.exception("Updating job %s failed", job_id)
            raise OperationFailed("Failed to update job.")
        self._index(job)
        return job

    def update_job_status(self, job_id, status):
        if status not in dict(Job.STATUS_CHOICES):
            raise InvalidInput("Unknown status.")
        try:
            updated = Job.objects.filter(id=job_id).update(status=status, updated_at=timezone.now())
        except DatabaseError:
            logger.exception("Updating status of job %s failed", job_id)
            raise OperationFailed("Failed to update job status.")
        if not updated:
            raise NotFound("Job not found.")
        job = Job.objects.get(id=job_id)
        self._index(job)
        return job

    def cancel_job(self, job_id, actor, reason=""):
        try:
            with transaction.atomic():
                job = Job.objects.select_for_update().filter(id=job_id).first()
                if job is None:
                    raise NotFound("Job not found.")
                profile = getattr(actor, "profile", None)
                is_admin = actor.is_staff or (profile is not None and profile.is_admin)
                if job.customer_id != actor.id and not is_admin:
                    raise NotAuthorized("Only the job owner can cancel this job.")
                if job.status == "cancelled":
                    raise StateConflict("This job has already been cancelled.")
                if job.status == "completed":
                    raise StateConflict("Completed jobs cannot be cancelled.")
                job.status = "cancelled"
                job.tradesperson = None
                job.cancelled_at = timezone.now()
                job.cancellation_reason = (reason or "").strip()[:240]
                job.save(update_fields=["status", "tradesperson", "cancelled_at", "cancellation_reason", "updated_at"])
        except MarketplaceError:
            raise
        except DatabaseError:
            logger.exception("Cancelling job %s failed", job_id)
            raise OperationFailed("Failed to cancel job.")

        logger.info("Job %s cancelled by %s", job.id, actor.id)
        self._unindex(job.id)
        return job

    def admin_delete_job(self, job_id, actor="admin"):
        """Soft-delete a job with its quotes and conversation. Returns False when already deleted."""
        job = Job.all_objects.filter(id=job_id).first()
        if job is None:
            raise NotFound("Job not found.")
        if job.is_deleted:
            return False

        now = timezone.now()
        actor_label = str(actor)[:64]
        try:
            with transaction.atomic():
                claimed = Job.objects.filter(id=job.id).update(
                    deleted_at=now,
                    deleted_by=actor_label,
                    deletion_reason="admin_removed",
                    quote_count=0,
                    updated_at=now,
                )
                if not claimed:
                    return False
                Quote.objects.filter(job_id=job.id).update(deleted_at=now, deleted_by=actor_label, updated_at=now)
                Conversation.objects.filter(job_id=job.id, deleted_at__isnull=True).update(
                    deleted_at=now, deleted_by=actor_label, updated_at=now
                )
                ConversationMessage.objects.filter(conversation__job_id=job.id, deleted_at__isnull=True).update(
                    deleted_at=now
                )
        except DatabaseError:
            logger.exception("Soft-deleting job %s failed", job_id)
            raise OperationFailed("Failed to delete job.")

        logger.info("Job %s removed by %s", job.id, actor_label)
        self._unindex(job.id)
        message = f'The job "{job.title}" has been removed by an administrator.'
        for user_id in (job.customer_id, job.tradesperson_id):
            if not user_id:
                continue
            with best_effort("Job removed notification", job_id=job.id, user_id=user_id):
                self.notifier.create_notification(
                    user_id,
                    "job_removed",
                    message,
                    {"job_id": job.id},
                    title="Job Removed by Admin",
                )
        return True

    def record_payment(self, job_id, payment_type, amount, reference, paid_at=None):
        if payment_type not in ("deposit", "final"):
            raise InvalidInput("Unknown payment type.")
        if not reference:
            raise InvalidInput("A payment reference is required.")
        amount_value = to_decimal(amount)
        if amount_value is None or amount_value <= 0:
            raise InvalidInput("Payment amount must be positive.")

        try:
            with transaction.atomic():
                job = Job.objects.select_for_update().filter(id=job_id).first()
                if job is None:
                    raise NotFound("Job not found.")
                payments = list(job.payments or [])
                if any(entry.get("reference") == reference for entry in extract_payments(payments)):
                    return job
                payments.append(
                    {
                        "type": payment_type,
                        "amount": float(amount_value),
                        "paid_at": (to_datetime(paid_at) or timezone.now()).isoformat(),
                        "reference": reference,
                    }
                )
                job.payments = payments
                job.save(update_fields=["payments", "updated_at"])
        except MarketplaceError:
            raise
        except DatabaseError:
            logger.exception("Recording payment on job %s failed", job_id)
            raise OperationFailed("Failed to record payment.")
        return job

    # Reads

    def get_job(self, job_id):
        return Job.objects.filter(id=job_id).first()

    def get_jobs_by_customer(self, customer_id):
        return list(Job.objects.filter(customer_id=customer_id).order_by("-created_at", "-id"))

    def get_open_jobs(self):
        return list(Job.objects.filter(status="open").order_by("-created_at", "-id"))

    def get_recent_open_jobs(self, limit=6):
        try:
            return list(Job.objects.filter(status="open").order_by("-created_at", "-id")[: max(0, int(limit))])
        except DatabaseError:
            logger.exception("Loading recent open jobs failed")
            return []

    def get_all_jobs(self):
        return list(Job.objects.order_by("-created_at", "-id"))

    def get_paginated_jobs(self, limit=6, after_id=None):
        """Cursor pagination by id; ``next_cursor`` is None on the last page."""
        limit = max(1, int(limit))
        queryset = Job.objects.order_by("id")
        if after_id:
            queryset = queryset.filter(id__gt=after_id)
        jobs = list(queryset[:limit])
        next_cursor = jobs[-1].id if len(jobs) == limit else None
        return {"jobs": jobs, "next_cursor": next_cursor, "total": self.get_total_job_count()}

    def get_total_job_count(self):
        return Job.objects.count()

    def get_job_count_by_status(self, status):
        return Job.objects.filter(status=status).count()

    def get_jobs_for_suggestions(self, limit=100):
        return list(
            Job.objects.filter(status="open")
            .exclude(service_type="")
            .exclude(postcode="")
            .only("id", "title", "service_type", "postcode", "town")
            .order_by("-created_at", "-id")[:limit]
        )

    def suggest(self, query, limit=SUGGESTION_LIMIT):
        text = (query or "").strip().lower()
        if len(text) < SUGGESTION_MIN_QUERY_LENGTH:
            return []
        suggestions = []
        for job in self.get_jobs_for_suggestions():
            for value in (job.title, job.service_type, job.postcode):
                if value and text in value.lower() and value not in suggestions:
                    suggestions.append(value)
                    if len(suggestions) >= limit:
                        return suggestions
        return suggestions

    # Index upkeep

    def _index(self, job):
        if job.is_deleted or job.status == "cancelled":
            self._unindex(job.id)
            return
        with best_effort("Indexing job", job_id=job.id):
            self.search_index.save_object(self.index_name, job_index_record(job))

    def _unindex(self, job_id):
        with best_effort("Removing job from index", job_id=job_id):
            self.search_index.delete_object(self.index_name, str(job_id))

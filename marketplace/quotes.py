import logging
from datetime import datetime

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from .crm import sync_business_customer_from_job
from .exceptions import (
    InvalidInput,
    MarketplaceError,
    NotAuthorized,
    NotFound,
    OperationFailed,
    QuotaExceeded,
    StateConflict,
    best_effort,
)
from .mappers import serialize_quote, to_datetime, to_decimal
from .models import Conversation, Job, Profile, Quote

logger = logging.getLogger(__name__)


def get_basic_tier_monthly_quotes():
    try:
        configured = int(getattr(settings, "BASIC_TIER_MONTHLY_QUOTES", 5))
    except (TypeError, ValueError):
        configured = 5
    return max(1, configured)


def first_of_next_month(moment):
    local = timezone.localtime(moment)
    year, month = (local.year + 1, 1) if local.month == 12 else (local.year, local.month + 1)
    return timezone.make_aware(datetime(year, month, 1), timezone.get_current_timezone())


class QuoteQuota:
    """Monthly quote allowance for basic-tier tradespeople.

    The window is ``[quote_reset_date - 1 month, quote_reset_date)``. It is rolled
    lazily when a quote is submitted, so no scheduled reset job is needed. Pro and
    business tiers are never limited.
    """

    def __init__(self, limit=None):
        self.limit = limit or get_basic_tier_monthly_quotes()

    def roll_window(self, profile, now):
        reset_at = profile.quote_reset_date
        if reset_at is None:
            profile.monthly_quotes_used = 0
            profile.quote_reset_date = first_of_next_month(now)
            return True
        if now < reset_at:
            return False
        while reset_at <= now:
            reset_at = first_of_next_month(reset_at)
        profile.monthly_quotes_used = 0
        profile.quote_reset_date = reset_at
        return True

    def is_limited(self, profile):
        return (profile.subscription_tier or "basic") == "basic"

    def remaining(self, profile):
        if not self.is_limited(profile):
            return None
        return max(0, self.limit - profile.monthly_quotes_used)

    def consume(self, profile, now=None):
        """Roll the window, reject when the allowance is spent, otherwise count one quote.

        The caller must hold a row lock on ``profile``.
        """
        now = now or timezone.now()
        self.roll_window(profile, now)
        if self.is_limited(profile):
            if profile.monthly_quotes_used >= self.limit:
                raise QuotaExceeded(
                    f"quote limit: You've reached your monthly quote limit ({self.limit}/{self.limit}). "
                    "Upgrade to Pro for unlimited quotes."
                )
            profile.monthly_quotes_used += 1
        profile.has_submitted_quote = True
        profile.save(update_fields=["monthly_quotes_used", "quote_reset_date", "has_submitted_quote", "updated_at"])


class QuoteService:
    def __init__(self, notifier, mailer, crm, quota=None):
        self.notifier = notifier
        self.mailer = mailer
        self.crm = crm
        self.quota = quota or QuoteQuota()

    def create_quote(self, tradesperson_id, data):
        job_id = data.get("job_id")
        price = to_decimal(data.get("price"))
        if not job_id:
            raise InvalidInput("A job is required.")
        if price is None or price < 0:
            raise InvalidInput("A valid price is required.")
        deposit = to_decimal(data.get("deposit_amount"))
        if deposit is not None and deposit <= 0:
            deposit = None
        line_items = data.get("line_items")
        line_items = list(line_items) if isinstance(line_items, (list, tuple)) and line_items else []

        now = timezone.now()
        try:
            with transaction.atomic():
                profile = (
                    Profile.objects.select_for_update()
                    .select_related("user")
                    .filter(user_id=tradesperson_id)
                    .first()
                )
                if profile is None:
                    raise NotFound("Tradesperson not found.")
                if not profile.is_tradesperson:
                    raise NotAuthorized("Only tradespeople can submit quotes.")

                job = Job.objects.select_related("customer").filter(id=job_id).first()
                if job is None:
                    raise NotFound("Job not found.")
                if job.status not in Job.ACTIVE_STATUSES:
                    raise StateConflict("This job is no longer open for quotes.")

                self.quota.consume(profile, now)

                quote = Quote.objects.create(
                    job=job,
                    tradesperson_id=tradesperson_id,
                    tradesperson_name=profile.name,
                    tradesperson_phone=profile.phone,
                    price=price,
                    deposit_amount=deposit,
                    description=(data.get("description") or "").strip(),
                    estimated_duration=(data.get("estimated_duration") or "").strip(),
                    available_date=to_datetime(data.get("available_date")),
                    line_items=line_items,
                    created_at=now,
                )
                Job.objects.filter(id=job.id).update(quote_count=F("quote_count") + 1, updated_at=now)
                Conversation.objects.get_or_create(
                    job=job,
                    tradesperson_id=tradesperson_id,
                    defaults={"customer_id": job.customer_id},
                )
        except MarketplaceError:
            raise
        except DatabaseError:
            logger.exception("Creating quote on job %s by %s failed", job_id, tradesperson_id)
            raise OperationFailed()

        logger.info("Quote %s created on job %s by tradesperson %s", quote.id, job.id, tradesperson_id)
        self._notify_new_quote(job, quote)
        return quote

    def _notify_new_quote(self, job, quote):
        with best_effort("New quote notification", job_id=job.id, quote_id=quote.id):
            self.notifier.create_notification(
                job.customer_id,
                "new_quote",
                "New quote received",
                {"job_id": job.id, "quote_id": quote.id},
            )
        customer = job.customer
        if customer.email:
            with best_effort("New quote email", job_id=job.id, quote_id=quote.id):
                self.mailer.send_new_quote(customer.email, job.id, quote.id, customer.first_name or None)

    def get_quotes_by_job(self, job_id):
        return [serialize_quote(item) for item in Quote.objects.filter(job_id=job_id).order_by("-created_at", "-id")]

    def get_quotes_by_tradesperson(self, tradesperson_id):
        queryset = Quote.objects.filter(tradesperson_id=tradesperson_id, job__deleted_at__isnull=True)
        return [serialize_quote(item) for item in queryset.order_by("-created_at", "-id")]

    def get_all_quotes(self):
        return [serialize_quote(item) for item in Quote.objects.order_by("-created_at", "-id")]

    def accept_quote(self, job_id, quote_id, customer_id):
        try:
            with transaction.atomic():
                job = Job.objects.select_for_update().filter(id=job_id).first()
                quote = Quote.objects.select_for_update().filter(id=quote_id, job_id=job_id).first()
                if job is None or quote is None:
                    raise NotFound("Job or quote not found.")
                if job.customer_id != customer_id:
                    raise NotAuthorized("Forbidden: You can only accept quotes for your own jobs.")
                if job.status not in Job.ACTIVE_STATUSES:
                    raise StateConflict("This job is no longer open for quotes.")

                now = timezone.now()
                job.status = "assigned"
                job.tradesperson_id = quote.tradesperson_id
                job.accepted_quote = quote
                job.save(update_fields=["status", "tradesperson", "accepted_quote", "updated_at"])
                quote.status = "accepted"
                quote.accepted_date = now
                quote.save(update_fields=["status", "accepted_date", "updated_at"])
        except MarketplaceError:
            raise
        except IntegrityError:
            logger.warning("Concurrent acceptance rejected for job %s quote %s", job_id, quote_id)
            raise StateConflict("This job is no longer open for quotes.")
        except DatabaseError:
            logger.exception("Accepting quote %s on job %s failed", quote_id, job_id)
            raise OperationFailed("Failed to accept the quote. Please try again.")

        logger.info("Quote %s accepted on job %s", quote.id, job.id)
        self._after_acceptance(job, quote)
        return job

    def _after_acceptance(self, job, quote):
        tradesperson = quote.tradesperson
        customer = job.customer

        with best_effort("Quote accepted notification", job_id=job.id):
            self.notifier.create_notification(
                tradesperson.id,
                "quote_accepted",
                f'Your quote for "{job.title}" was accepted!',
                {"job_id": job.id},
            )
        if tradesperson.email:
            with best_effort("Quote accepted email", job_id=job.id):
                self.mailer.send_quote_accepted(tradesperson.email, job.id, quote.id, tradesperson.first_name or None)

        with best_effort("Acceptance confirmation notification", job_id=job.id):
            self.notifier.create_notification(
                customer.id,
                "action_success",
                f'You have accepted a quote for "{job.title}".',
                {"job_id": job.id},
            )
        if customer.email:
            with best_effort("Job accepted email", job_id=job.id):
                self.mailer.send_job_accepted(customer.email, job.id, customer.first_name or None)

        with best_effort("CRM sync after acceptance", job_id=job.id):
            sync_business_customer_from_job(self.crm, job, tradesperson, event="accepted", occurred_at=quote.accepted_date)

    def mark_job_complete(self, job_id, tradesperson_id):
        try:
            with transaction.atomic():
                job = Job.objects.select_for_update().filter(id=job_id).first()
                if job is None:
                    raise NotFound("Job not found.")
                if job.tradesperson_id != tradesperson_id:
                    raise NotAuthorized("Only the assigned tradesperson can complete this job.")
                if job.status != "assigned":
                    raise StateConflict("Only assigned jobs can be marked complete.")
                now = timezone.now()
                job.status = "completed"
                job.completed_date = now
                job.save(update_fields=["status", "completed_date", "updated_at"])
        except MarketplaceError:
            raise
        except DatabaseError:
            logger.exception("Completing job %s failed", job_id)
            raise OperationFailed("Failed to complete job.")

        logger.info("Job %s marked complete by %s", job.id, tradesperson_id)
        customer = job.customer
        with best_effort("Final payment notification", job_id=job.id):
            self.notifier.create_notification(
                customer.id,
                "job_completed",
                "Action Required: Pay Final Balance",
                {"job_id": job.id},
            )
        if customer.email:
            with best_effort("Final payment email", job_id=job.id):
                self.mailer.send_final_payment_request(customer.email, job.id, customer.first_name or None)
        with best_effort("CRM sync after completion", job_id=job.id):
            sync_business_customer_from_job(self.crm, job, job.tradesperson, event="completed", occurred_at=now)
        return job

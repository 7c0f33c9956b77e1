import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .exceptions import NotAuthorized, NotFound
from .mappers import total_payments
from .models import BusinessCustomer, CustomerInteraction

logger = logging.getLogger(__name__)


class CustomerRelationshipSync:
    """Keeps the customer book of business-tier tradespeople in step with their jobs."""

    def find_or_create_customer(self, owner_id, contact):
        name = (contact.get("name") or "").strip() or "Customer"
        email = (contact.get("email") or "").strip()
        phone = (contact.get("phone") or "").strip()

        existing = None
        if email:
            existing = BusinessCustomer.objects.filter(owner_id=owner_id, email=email).first()
        if existing is None and phone:
            existing = BusinessCustomer.objects.filter(owner_id=owner_id, phone=phone).first()

        if existing is None:
            return BusinessCustomer.objects.create(owner_id=owner_id, name=name, email=email, phone=phone)

        changed = []
        if not existing.email and email:
            existing.email = email
            changed.append("email")
        if not existing.phone and phone:
            existing.phone = phone
            changed.append("phone")
        if changed:
            existing.save(update_fields=changed + ["updated_at"])
        return existing

    def record_interaction(self, owner_id, customer_id, *, note, created_by, job_id=None, amount=None, follow_up_date=None):
        customer = BusinessCustomer.objects.filter(id=customer_id).first()
        if customer is None:
            raise NotFound("Customer record not found.")
        if customer.owner_id != owner_id:
            raise NotAuthorized("You do not have permission to update this customer.")

        amount_value = Decimal(str(amount)) if amount else None
        with transaction.atomic():
            interaction = CustomerInteraction.objects.create(
                owner_id=owner_id,
                customer=customer,
                job_id=job_id,
                note=note[:240],
                amount=amount_value,
                follow_up_date=follow_up_date,
                created_by=created_by[:120],
            )
            updates = {"updated_at": timezone.now()}
            if job_id:
                updates["total_jobs"] = F("total_jobs") + 1
            if amount_value:
                updates["total_spend"] = F("total_spend") + amount_value
            if follow_up_date:
                updates["last_service_date"] = follow_up_date
            BusinessCustomer.objects.filter(id=customer.id).update(**updates)
        return interaction


def is_business_account(profile):
    return profile is not None and profile.subscription_tier == "business"


def sync_business_customer_from_job(crm, job, tradesperson, *, event, occurred_at=None):
    """Acceptance registers the customer; completion also logs an interaction with the job's takings."""
    if tradesperson is None:
        return None
    profile = getattr(tradesperson, "profile", None)
    if not is_business_account(profile):
        return None

    contact = {
        "name": job.customer_contact_name,
        "email": job.customer_contact_email or job.customer.email,
        "phone": job.customer_contact_phone,
    }
    customer = crm.find_or_create_customer(tradesperson.id, contact)

    if event == "completed":
        crm.record_interaction(
            tradesperson.id,
            customer.id,
            note=f'Job "{job.title}" marked complete.',
            job_id=job.id,
            amount=total_payments(job.payments),
            follow_up_date=occurred_at or job.completed_date or timezone.now(),
            created_by=profile.name or tradesperson.email or "Business",
        )
    logger.info("CRM sync (%s) for job %s owner %s customer %s", event, job.id, tradesperson.id, customer.id)
    return customer

import logging

from django.conf import settings
from django.db import DatabaseError, transaction

from .constants import PAID_TIERS
from .exceptions import (
    InvalidInput,
    MarketplaceError,
    NotAuthorized,
    NotFound,
    OperationFailed,
    TemplateLimitReached,
)
from .mappers import to_decimal
from .models import Profile, QuoteTemplate

logger = logging.getLogger(__name__)

CATEGORIES = tuple(value for value, _ in QuoteTemplate.CATEGORY_CHOICES)
UNITS = tuple(value for value, _ in QuoteTemplate.UNIT_CHOICES)
TEXT_FIELDS = ("label", "description", "warranty_text")

SYSTEM_TEMPLATES = (
    {
        "id": "system-labour-hour",
        "scope": "system",
        "label": "Labour (hourly)",
        "category": "labour",
        "description": "Standard labour charge per hour",
        "unit": "hour",
        "default_quantity": 1.0,
        "unit_price": 80.0,
        "vat_rate": 20.0,
        "warranty_text": "",
    },
    {
        "id": "system-callout",
        "scope": "system",
        "label": "Call-out fee",
        "category": "callout",
        "description": "Emergency call-out fee",
        "unit": "job",
        "default_quantity": 1.0,
        "unit_price": 60.0,
        "vat_rate": 20.0,
        "warranty_text": "",
    },
    {
        "id": "system-warranty",
        "scope": "system",
        "label": "12-month workmanship warranty",
        "category": "warranty",
        "description": "Coverage for workmanship defects",
        "unit": "job",
        "default_quantity": 1.0,
        "unit_price": 0.0,
        "vat_rate": None,
        "warranty_text": "12-month warranty on workmanship for this job.",
    },
)
SYSTEM_TEMPLATES_BY_ID = {template["id"]: template for template in SYSTEM_TEMPLATES}


def get_basic_tier_template_limit():
    try:
        configured = int(getattr(settings, "BASIC_TIER_QUOTE_TEMPLATES", 5))
    except (TypeError, ValueError):
        configured = 5
    return max(1, configured)


def _personal_id(template_id):
    text = str(template_id).strip()
    if not text.isdigit():
        raise NotFound("Template not found.")
    return int(text)


def serialize_template(template):
    return {
        "id": template.id,
        "scope": "personal",
        "label": template.label,
        "category": template.category,
        "description": template.description,
        "unit": template.unit,
        "default_quantity": float(template.default_quantity),
        "unit_price": float(template.unit_price),
        "vat_rate": float(template.vat_rate) if template.vat_rate is not None else None,
        "warranty_text": template.warranty_text,
        "is_archived": template.is_archived,
        "created_at": template.created_at.isoformat() if template.created_at else None,
        "updated_at": template.updated_at.isoformat() if template.updated_at else None,
    }


def clean_template_fields(data, *, partial=False):
    """Validate template input. Unknown categories and units fall back to ``other`` and ``item``."""
    cleaned = {}
    for field in TEXT_FIELDS:
        if field in data:
            cleaned[field] = (data.get(field) or "").strip()
    if not partial or "label" in data:
        if not cleaned.get("label"):
            raise InvalidInput("A template label is required.")
    if "category" in data:
        cleaned["category"] = data["category"] if data["category"] in CATEGORIES else "other"
    if "unit" in data:
        cleaned["unit"] = data["unit"] if data["unit"] in UNITS else "item"
    if "default_quantity" in data:
        quantity = to_decimal(data["default_quantity"])
        if quantity is None or quantity <= 0:
            raise InvalidInput("Default quantity must be positive.")
        cleaned["default_quantity"] = quantity
    if "unit_price" in data:
        unit_price = to_decimal(data["unit_price"])
        if unit_price is None or unit_price < 0:
            raise InvalidInput("Unit price cannot be negative.")
        cleaned["unit_price"] = unit_price
    if "vat_rate" in data:
        vat_rate = to_decimal(data["vat_rate"])
        if vat_rate is not None and vat_rate < 0:
            raise InvalidInput("VAT rate cannot be negative.")
        cleaned["vat_rate"] = vat_rate
    if "is_archived" in data:
        cleaned["is_archived"] = bool(data["is_archived"])
    return cleaned


class QuoteTemplateService:
    """Reusable quote line items: built-in system templates plus each tradesperson's own."""

    def _require_tradesperson(self, user_id):
        profile = Profile.objects.filter(user_id=user_id).first()
        if profile is None or not profile.is_tradesperson:
            raise NotAuthorized("Only tradespeople have quote templates.")
        return profile

    def _check_limit(self, profile):
        if profile.subscription_tier in PAID_TIERS:
            return
        Profile.objects.select_for_update().filter(id=profile.id).first()
        limit = get_basic_tier_template_limit()
        used = QuoteTemplate.objects.filter(owner_id=profile.user_id, is_archived=False).count()
        if used >= limit:
            raise TemplateLimitReached(
                f"You have reached the Basic plan limit of {limit} saved templates ({used}/{limit}). "
                "Upgrade to Pro for unlimited templates."
            )

    def _owned(self, user_id, template_id):
        if template_id in SYSTEM_TEMPLATES_BY_ID:
            raise NotAuthorized("System templates cannot be changed.")
        template = QuoteTemplate.objects.filter(id=_personal_id(template_id)).first()
        if template is None:
            raise NotFound("Template not found.")
        if template.owner_id != user_id:
            raise NotAuthorized("You do not have permission to modify this template.")
        return template

    def get_templates(self, user_id):
        self._require_tradesperson(user_id)
        personal = QuoteTemplate.objects.filter(owner_id=user_id, is_archived=False)
        return [dict(template) for template in SYSTEM_TEMPLATES] + [serialize_template(item) for item in personal]

    def create_template(self, user_id, data):
        profile = self._require_tradesperson(user_id)
        fields = clean_template_fields(data)
        fields["tier_at_creation"] = profile.subscription_tier
        try:
            with transaction.atomic():
                self._check_limit(profile)
                template = QuoteTemplate.objects.create(owner_id=user_id, **fields)
        except MarketplaceError:
            raise
        except DatabaseError:
            logger.exception("Creating quote template for %s failed", user_id)
            raise OperationFailed("Failed to create template.")
        logger.info("Quote template %s created by %s", template.id, user_id)
        return template

    def update_template(self, user_id, template_id, changes):
        profile = self._require_tradesperson(user_id)
        fields = clean_template_fields(changes, partial=True)
        try:
            with transaction.atomic():
                template = self._owned(user_id, template_id)
                if template.is_archived and fields.get("is_archived") is False:
                    self._check_limit(profile)
                for field, value in fields.items():
                    setattr(template, field, value)
                if fields:
                    template.save(update_fields=list(fields) + ["updated_at"])
        except MarketplaceError:
            raise
        except DatabaseError:
            logger.exception("Updating quote template %s failed", template_id)
            raise OperationFailed("Failed to update template.")
        return template

    def archive_template(self, user_id, template_id):
        return self.update_template(user_id, template_id, {"is_archived": True})

    def line_item_from_template(self, user_id, template_id, quantity=None):
        """Copy a template into a quote line item; ``quantity`` overrides the template default."""
        self._require_tradesperson(user_id)
        if template_id in SYSTEM_TEMPLATES_BY_ID:
            source = SYSTEM_TEMPLATES_BY_ID[template_id]
        else:
            template = QuoteTemplate.objects.filter(
                id=_personal_id(template_id), owner_id=user_id, is_archived=False
            ).first()
            if template is None:
                raise NotFound("Template not found.")
            source = serialize_template(template)

        amount = source["default_quantity"]
        if quantity is not None:
            override = to_decimal(quantity)
            if override is None or override <= 0:
                raise InvalidInput("Quantity must be positive.")
            amount = float(override)
        return {
            "template_id": source["id"],
            "label": source["label"],
            "description": source["description"],
            "category": source["category"],
            "unit": source["unit"],
            "quantity": amount,
            "unit_price": source["unit_price"],
            "vat_rate": source["vat_rate"],
            "warranty_text": source["warranty_text"],
        }

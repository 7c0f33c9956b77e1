from django.contrib.auth.models import User
from django.db import models
from django.db.models import Q
from django.utils import timezone

from .keywords import normalize_specialties, to_slug


class LiveManager(models.Manager):
    """Hides soft-deleted rows; use ``all_objects`` for audit lookups."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class Profile(models.Model):
    ROLE_CHOICES = (
        ("customer", "Customer"),
        ("tradesperson", "Tradesperson"),
        ("admin", "Admin"),
    )
    TIER_CHOICES = (
        ("basic", "Basic"),
        ("pro", "Pro"),
        ("business", "Business"),
    )

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name="profile")
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default="customer")
    display_name = models.CharField(max_length=120, blank=True)
    phone = models.CharField(max_length=20, blank=True)
    subscription_tier = models.CharField(max_length=20, choices=TIER_CHOICES, default="basic")
    service_areas = models.CharField(max_length=255, blank=True)
    specialties = models.JSONField(default=list, blank=True)
    service_slugs = models.JSONField(default=list, blank=True)
    city_slug = models.CharField(max_length=80, blank=True)
    description = models.TextField(blank=True)
    new_job_alerts = models.BooleanField(default=True)
    monthly_quotes_used = models.PositiveIntegerField(default=0)
    quote_reset_date = models.DateTimeField(null=True, blank=True)
    has_submitted_quote = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]
        indexes = [
            models.Index(fields=["role", "new_job_alerts"], name="profile_role_alerts_idx"),
        ]

    def __str__(self):
        return f"{self.name} ({self.role})"

    @property
    def name(self):
        return self.display_name or self.user.get_full_name() or self.user.username

    @property
    def is_tradesperson(self):
        return self.role == "tradesperson"

    @property
    def is_admin(self):
        return self.role == "admin" or self.user.is_staff

    def save(self, *args, **kwargs):
        self.specialties = normalize_specialties(self.specialties)
        self.service_slugs = [slug for slug in (to_slug(item) for item in self.specialties) if slug]
        if self.city_slug:
            self.city_slug = to_slug(self.city_slug) or ""
        super().save(*args, **kwargs)


class Job(models.Model):
    URGENCY_CHOICES = (
        ("flexible", "Flexible"),
        ("soon", "Soon"),
        ("urgent", "Urgent"),
        ("emergency", "Emergency"),
    )
    STATUS_CHOICES = (
        ("open", "Open"),
        ("quoted", "Quoted"),
        ("assigned", "Assigned"),
        ("completed", "Completed"),
        ("cancelled", "Cancelled"),
    )
    ACTIVE_STATUSES = ("open", "quoted")
    ASSIGNED_STATUSES = ("assigned", "completed")

    customer = models.ForeignKey(User, on_delete=models.CASCADE, related_name="posted_jobs")
    tradesperson = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="assigned_jobs",
    )
    accepted_quote = models.ForeignKey(
        "Quote",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    service_type = models.CharField(max_length=120, blank=True)
    skills = models.JSONField(default=list, blank=True)
    postcode = models.CharField(max_length=12, blank=True)
    town = models.CharField(max_length=80, blank=True)
    address = models.CharField(max_length=255, blank=True)
    latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    city_slug = models.CharField(max_length=80, blank=True, db_index=True)
    urgency = models.CharField(max_length=20, choices=URGENCY_CHOICES, default="flexible")
    budget = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="open")
    quote_count = models.PositiveIntegerField(default=0)
    payments = models.JSONField(default=list, blank=True)
    scheduled_date = models.DateTimeField(null=True, blank=True)
    completed_date = models.DateTimeField(null=True, blank=True)
    customer_contact_name = models.CharField(max_length=120, blank=True)
    customer_contact_email = models.EmailField(blank=True)
    customer_contact_phone = models.CharField(max_length=20, blank=True)
    search_keywords = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by = models.CharField(max_length=64, blank=True)
    deletion_reason = models.CharField(max_length=64, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=240, blank=True)

    all_objects = models.Manager()
    objects = LiveManager()

    class Meta:
        ordering = ["-created_at", "-id"]
        default_manager_name = "all_objects"
        indexes = [
            models.Index(fields=["status", "created_at"], name="job_status_created_idx"),
            models.Index(fields=["customer", "created_at"], name="job_customer_created_idx"),
        ]

    def __str__(self):
        return f"Job #{self.id} {self.title} ({self.status})"

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @property
    def location(self):
        return {
            "postcode": self.postcode,
            "town": self.town,
            "address": self.address,
            "latitude": float(self.latitude) if self.latitude is not None else None,
            "longitude": float(self.longitude) if self.longitude is not None else None,
        }

    @property
    def has_coordinates(self):
        return self.latitude is not None and self.longitude is not None


class Quote(models.Model):
    STATUS_CHOICES = (
        ("pending", "Pending"),
        ("accepted", "Accepted"),
    )

    job = models.ForeignKey(Job, on_delete=models.CASCADE, related_name="quotes")
    tradesperson = models.ForeignKey(User, on_delete=models.CASCADE, related_name="submitted_quotes")
    tradesperson_name = models.CharField(max_length=120, blank=True)
    tradesperson_phone = models.CharField(max_length=20, blank=True)
    price = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    deposit_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    description = models.TextField(blank=True)
    estimated_duration = models.CharField(max_length=80, blank=True)
    available_date = models.DateTimeField(null=True, blank=True)
    line_items = models.JSONField(default=list, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="pending")
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)
    accepted_date = models.DateTimeField(null=True, blank=True)
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by = models.CharField(max_length=64, blank=True)

    all_objects = models.Manager()
    objects = LiveManager()

    class Meta:
        ordering = ["-created_at", "-id"]
        default_manager_name = "all_objects"
        constraints = [
            models.UniqueConstraint(
                fields=["job"],
                condition=Q(status="accepted"),
                name="unique_accepted_quote_per_job",
            ),
        ]

    def __str__(self):
        return f"Quote #{self.id} Job {self.job_id} ({self.status})"


class SavedJob(models.Model):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="saved_jobs")
    job = models.ForeignKey(Job, on_delete=models.CASCADE, related_name="saves")
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(fields=["user", "job"], name="unique_saved_job_per_user"),
        ]

    def __str__(self):
        return f"Job {self.job_id} saved by {self.user_id}"


class QuoteTemplate(models.Model):
    CATEGORY_CHOICES = (
        ("labour", "Labour"),
        ("materials", "Materials"),
        ("callout", "Call-out"),
        ("warranty", "Warranty"),
        ("other", "Other"),
    )
    UNIT_CHOICES = (
        ("hour", "Hour"),
        ("day", "Day"),
        ("item", "Item"),
        ("job", "Job"),
    )

    owner = models.ForeignKey(User, on_delete=models.CASCADE, related_name="quote_templates")
    label = models.CharField(max_length=120)
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, default="other")
    description = models.CharField(max_length=500, blank=True)
    unit = models.CharField(max_length=10, choices=UNIT_CHOICES, default="item")
    default_quantity = models.DecimalField(max_digits=8, decimal_places=2, default=1)
    unit_price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    vat_rate = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    warranty_text = models.CharField(max_length=240, blank=True)
    is_archived = models.BooleanField(default=False)
    tier_at_creation = models.CharField(max_length=20, choices=Profile.TIER_CHOICES, default="basic")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["label", "id"]
        indexes = [
            models.Index(fields=["owner", "is_archived"], name="quote_template_owner_idx"),
        ]

    def __str__(self):
        return f"{self.label} ({self.owner_id})"


class Notification(models.Model):
    KIND_CHOICES = (
        ("new_job", "New job"),
        ("new_quote", "New quote"),
        ("quote_accepted", "Quote accepted"),
        ("action_success", "Action success"),
        ("job_completed", "Job completed"),
        ("job_removed", "Job removed"),
        ("job_cancelled", "Job cancelled"),
    )

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="notifications")
    kind = models.CharField(max_length=32, choices=KIND_CHOICES)
    title = models.CharField(max_length=120, blank=True)
    message = models.CharField(max_length=240)
    metadata = models.JSONField(default=dict, blank=True)
    read_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["user", "read_at"], name="notification_user_read_idx"),
        ]

    def __str__(self):
        return f"{self.kind} -> {self.user_id}"


class Conversation(models.Model):
    job = models.ForeignKey(Job, on_delete=models.CASCADE, related_name="conversations")
    customer = models.ForeignKey(User, on_delete=models.CASCADE, related_name="customer_conversations")
    tradesperson = models.ForeignKey(User, on_delete=models.CASCADE, related_name="tradesperson_conversations")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by = models.CharField(max_length=64, blank=True)

    class Meta:
        ordering = ["-updated_at"]
        constraints = [
            models.UniqueConstraint(fields=["job", "tradesperson"], name="unique_conversation_per_quoter"),
        ]

    def __str__(self):
        return f"Conversation for job {self.job_id} with {self.tradesperson_id}"


class ConversationMessage(models.Model):
    conversation = models.ForeignKey(Conversation, on_delete=models.CASCADE, related_name="messages")
    sender = models.ForeignKey(User, on_delete=models.CASCADE, related_name="conversation_messages")
    body = models.TextField(max_length=1000)
    created_at = models.DateTimeField(auto_now_add=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["created_at"]

    def __str__(self):
        return f"Message #{self.id} in conversation {self.conversation_id}"


class BusinessCustomer(models.Model):
    owner = models.ForeignKey(User, on_delete=models.CASCADE, related_name="business_customers")
    name = models.CharField(max_length=120)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=20, blank=True)
    total_jobs = models.PositiveIntegerField(default=0)
    total_spend = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    last_service_date = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.owner_id})"


class CustomerInteraction(models.Model):
    owner = models.ForeignKey(User, on_delete=models.CASCADE, related_name="customer_interactions")
    customer = models.ForeignKey(BusinessCustomer, on_delete=models.CASCADE, related_name="interactions")
    job = models.ForeignKey(Job, on_delete=models.SET_NULL, null=True, blank=True, related_name="interactions")
    note = models.CharField(max_length=240)
    amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    follow_up_date = models.DateTimeField(null=True, blank=True)
    created_by = models.CharField(max_length=120, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.customer.name}: {self.note[:60]}"


class ErrorLog(models.Model):
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    resolved_at = models.DateTimeField(null=True, blank=True)
    path = models.CharField(max_length=300, blank=True)
    method = models.CharField(max_length=10, blank=True)
    status_code = models.PositiveSmallIntegerField(default=500)
    error_code = models.CharField(max_length=40, blank=True)
    message = models.CharField(max_length=500)
    traceback = models.TextField(blank=True)
    request_id = models.CharField(max_length=120, blank=True, db_index=True)
    ip_address = models.CharField(max_length=64, blank=True)
    user_agent = models.CharField(max_length=255, blank=True)
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="error_logs",
    )

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["status_code", "created_at"], name="errorlog_status_created_idx"),
        ]

    def __str__(self):
        return f"{self.status_code} {self.message[:80]}"

    @property
    def is_resolved(self):
        return self.resolved_at is not None

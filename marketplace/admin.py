from django.apps import apps
from django.contrib import admin
from django.contrib import messages
from django.utils import timezone

from .models import (
    BusinessCustomer,
    Conversation,
    CustomerInteraction,
    ErrorLog,
    Job,
    Notification,
    Profile,
    Quote,
    QuoteTemplate,
    SavedJob,
)


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ("user", "display_name", "role", "subscription_tier", "city_slug", "monthly_quotes_used", "new_job_alerts")
    list_filter = ("role", "subscription_tier", "new_job_alerts")
    search_fields = ("user__username", "user__email", "display_name", "service_areas", "city_slug")
    readonly_fields = ("service_slugs", "created_at", "updated_at")


class QuoteInline(admin.TabularInline):
    model = Quote
    extra = 0
    fields = ("tradesperson", "price", "deposit_amount", "status", "created_at", "deleted_at")
    readonly_fields = fields
    can_delete = False


@admin.register(Job)
class JobAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "title",
        "customer",
        "service_type",
        "postcode",
        "city_slug",
        "urgency",
        "budget",
        "status",
        "quote_count",
        "created_at",
        "is_deleted",
    )
    list_filter = ("status", "urgency", "service_type", "deleted_at")
    search_fields = ("title", "description", "postcode", "town", "customer__username", "customer__email")
    readonly_fields = ("search_keywords", "quote_count", "created_at", "updated_at", "deleted_at", "deleted_by")
    inlines = (QuoteInline,)
    ordering = ("-created_at", "-id")
    actions = ("remove_jobs",)
    date_hierarchy = "created_at"

    @admin.display(boolean=True, description="Deleted")
    def is_deleted(self, obj):
        return obj.is_deleted

    @admin.action(description="Remove selected jobs (soft delete and notify)")
    def remove_jobs(self, request, queryset):
        jobs = apps.get_app_config("marketplace").services.jobs
        removed_count = 0
        for job_id in queryset.values_list("id", flat=True):
            if jobs.admin_delete_job(job_id, actor=request.user.get_username() or "admin"):
                removed_count += 1
        self.message_user(request, f"{removed_count} job(s) removed.", level=messages.SUCCESS)

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Quote)
class QuoteAdmin(admin.ModelAdmin):
    list_display = ("id", "job", "tradesperson", "price", "status", "created_at", "deleted_at")
    list_filter = ("status", "deleted_at")
    search_fields = ("job__title", "tradesperson__username", "tradesperson_name")
    ordering = ("-created_at", "-id")


@admin.register(QuoteTemplate)
class QuoteTemplateAdmin(admin.ModelAdmin):
    list_display = ("label", "owner", "category", "unit", "unit_price", "tier_at_creation", "is_archived")
    list_filter = ("category", "unit", "is_archived")
    search_fields = ("label", "description", "owner__username")


@admin.register(SavedJob)
class SavedJobAdmin(admin.ModelAdmin):
    list_display = ("job", "user", "created_at")
    search_fields = ("job__title", "user__username")
    raw_id_fields = ("job", "user")


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("user", "kind", "title", "created_at", "read_at")
    list_filter = ("kind", "read_at")
    search_fields = ("user__username", "title", "message")

    def has_add_permission(self, request):
        return False


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    list_display = ("job", "customer", "tradesperson", "updated_at", "deleted_at")
    search_fields = ("job__title", "customer__username", "tradesperson__username")


class CustomerInteractionInline(admin.TabularInline):
    model = CustomerInteraction
    extra = 0
    fields = ("job", "note", "amount", "follow_up_date", "created_by", "created_at")
    readonly_fields = ("created_at",)


@admin.register(BusinessCustomer)
class BusinessCustomerAdmin(admin.ModelAdmin):
    list_display = ("name", "owner", "email", "phone", "total_jobs", "total_spend", "last_service_date")
    search_fields = ("name", "email", "phone", "owner__username")
    inlines = (CustomerInteractionInline,)


@admin.register(ErrorLog)
class ErrorLogAdmin(admin.ModelAdmin):
    list_display = (
        "created_at",
        "status_code",
        "error_code",
        "method",
        "path",
        "user",
        "request_id",
        "is_resolved",
    )
    list_filter = ("status_code", "error_code", "method", "resolved_at", "created_at")
    search_fields = ("path", "message", "traceback", "request_id", "user__username", "ip_address")
    readonly_fields = (
        "created_at",
        "path",
        "method",
        "status_code",
        "error_code",
        "message",
        "traceback",
        "request_id",
        "ip_address",
        "user_agent",
        "user",
    )
    ordering = ("-created_at", "-id")
    actions = ("mark_resolved", "mark_unresolved")
    date_hierarchy = "created_at"

    @admin.action(description="Mark selected errors as resolved")
    def mark_resolved(self, request, queryset):
        updated_count = queryset.filter(resolved_at__isnull=True).update(resolved_at=timezone.now())
        self.message_user(request, f"{updated_count} error(s) marked resolved.", level=messages.SUCCESS)

    @admin.action(description="Reopen selected errors")
    def mark_unresolved(self, request, queryset):
        updated_count = queryset.filter(resolved_at__isnull=False).update(resolved_at=None)
        self.message_user(request, f"{updated_count} error(s) reopened.", level=messages.SUCCESS)

    def has_add_permission(self, request):
        return False

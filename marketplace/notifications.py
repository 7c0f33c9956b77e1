import logging
from datetime import timedelta

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

from .models import Notification

logger = logging.getLogger(__name__)

NOTIFICATION_TITLES = {
    "new_job": "New job available",
    "new_quote": "New quote received",
    "quote_accepted": "Quote accepted",
    "action_success": "Success",
    "job_completed": "Job completed",
    "job_removed": "Job Removed by Admin",
    "job_cancelled": "Job cancelled",
}


def notifications_group_name(user_id):
    return f"notifications_{int(user_id)}"


def _truncate(text, max_len=240):
    value = str(text or "").strip()
    if len(value) <= max_len:
        return value
    return value[: max_len - 1].rstrip() + "…"


def get_notification_retention_days():
    try:
        configured = int(getattr(settings, "NOTIFICATION_RETENTION_DAYS", 60))
    except (TypeError, ValueError):
        configured = 60
    return max(7, configured)


def get_unread_cache_seconds():
    return max(1, int(getattr(settings, "NOTIFICATION_UNREAD_CACHE_SECONDS", 6)))


def unread_cache_key(user_id):
    return f"notif:unread:{user_id}"


def serialize_notification(notification):
    return {
        "id": notification.id,
        "kind": notification.kind,
        "title": notification.title,
        "message": notification.message,
        "metadata": notification.metadata or {},
        "is_unread": notification.read_at is None,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


class NotificationSink:
    """Stores in-app notifications and pushes them to any open websocket for the user."""

    def create_notification(self, user_id, kind, message, metadata=None, title=None):
        notification = Notification.objects.create(
            user_id=user_id,
            kind=kind,
            title=_truncate(title or NOTIFICATION_TITLES.get(kind, ""), 120),
            message=_truncate(message),
            metadata=metadata or {},
        )
        cache.delete(unread_cache_key(user_id))
        self._publish(notification)
        return notification

    def _publish(self, notification):
        channel_layer = get_channel_layer()
        if channel_layer is None:
            return
        try:
            async_to_sync(channel_layer.group_send)(
                notifications_group_name(notification.user_id),
                {
                    "type": "notification.created",
                    "notification": serialize_notification(notification),
                },
            )
        except Exception:
            logger.exception("Live notification push failed for user %s", notification.user_id)


def get_unread_notifications_count(user):
    if not user or not getattr(user, "is_authenticated", False):
        return 0

    cache_key = unread_cache_key(user.id)
    cached = cache.get(cache_key)
    if cached is not None:
        return int(cached)

    cutoff = timezone.now() - timedelta(days=get_notification_retention_days())
    total_unread = Notification.objects.filter(user=user, read_at__isnull=True, created_at__gte=cutoff).count()
    cache.set(cache_key, total_unread, timeout=get_unread_cache_seconds())
    return total_unread


def mark_all_notifications_read(user):
    if not user or not getattr(user, "is_authenticated", False):
        return 0
    updated = Notification.objects.filter(user=user, read_at__isnull=True).update(read_at=timezone.now())
    cache.set(unread_cache_key(user.id), 0, timeout=get_unread_cache_seconds())
    return updated


def build_notification_entries(user, *, limit=50):
    if not user or not getattr(user, "is_authenticated", False):
        return []
    cutoff = timezone.now() - timedelta(days=get_notification_retention_days())
    items = Notification.objects.filter(user=user, created_at__gte=cutoff).order_by("-created_at", "-id")[:limit]
    return [serialize_notification(item) for item in items]

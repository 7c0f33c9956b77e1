from types import SimpleNamespace
from unittest import mock

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from channels.testing import WebsocketCommunicator
from django.core.cache import cache
from django.test import SimpleTestCase, TestCase

from marketplace.consumers import NotificationsConsumer
from marketplace.models import Notification
from marketplace.notifications import (
    NotificationSink,
    build_notification_entries,
    get_unread_notifications_count,
    mark_all_notifications_read,
    notifications_group_name,
)

from .support import make_user


class RecordingChannelLayer:
    def __init__(self):
        self.events = []

    async def group_send(self, group, message):
        self.events.append((group, message))


class FailingChannelLayer:
    async def group_send(self, group, message):
        raise RuntimeError("layer down")


class NotificationSinkTests(TestCase):
    def setUp(self):
        cache.clear()
        self.user = make_user("customer")
        self.layer = RecordingChannelLayer()
        patcher = mock.patch("marketplace.notifications.get_channel_layer", return_value=self.layer)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_notification_is_stored_and_pushed_to_the_users_group(self):
        notification = NotificationSink().create_notification(self.user.id, "new_quote", "New quote received", {"job_id": 4})

        self.assertEqual(notification.title, "New quote received")
        self.assertEqual(notification.metadata, {"job_id": 4})
        group, message = self.layer.events[0]
        self.assertEqual(group, f"notifications_{self.user.id}")
        self.assertEqual(message["type"], "notification.created")
        self.assertEqual(message["notification"]["id"], notification.id)
        self.assertTrue(message["notification"]["is_unread"])

    def test_explicit_title_and_long_messages_are_trimmed(self):
        notification = NotificationSink().create_notification(self.user.id, "job_removed", "x" * 400, title="Job Removed by Admin")
        self.assertEqual(notification.title, "Job Removed by Admin")
        self.assertEqual(len(notification.message), 240)

    def test_push_failure_keeps_the_stored_notification(self):
        with mock.patch("marketplace.notifications.get_channel_layer", return_value=FailingChannelLayer()), self.assertLogs(
            "marketplace.notifications", level="ERROR"
        ):
            NotificationSink().create_notification(self.user.id, "new_job", "A new job")
        self.assertEqual(Notification.objects.filter(user=self.user).count(), 1)

    def test_unread_count_is_cached_and_invalidated(self):
        sink = NotificationSink()
        sink.create_notification(self.user.id, "new_quote", "one")
        self.assertEqual(get_unread_notifications_count(self.user), 1)

        sink.create_notification(self.user.id, "new_quote", "two")
        self.assertEqual(get_unread_notifications_count(self.user), 2)

        self.assertEqual(mark_all_notifications_read(self.user), 2)
        self.assertEqual(get_unread_notifications_count(self.user), 0)
        entries = build_notification_entries(self.user)
        self.assertEqual([entry["message"] for entry in entries], ["two", "one"])
        self.assertFalse(any(entry["is_unread"] for entry in entries))


class NotificationsConsumerTests(SimpleTestCase):
    def test_authenticated_user_receives_pushes_and_pongs(self):
        async def scenario():
            communicator = WebsocketCommunicator(NotificationsConsumer.as_asgi(), "/ws/notifications/")
            communicator.scope["user"] = SimpleNamespace(id=42, is_authenticated=True)
            connected, _ = await communicator.connect()
            self.assertTrue(connected)

            await communicator.send_json_to({"type": "ping"})
            self.assertEqual(await communicator.receive_json_from(), {"type": "pong"})

            await get_channel_layer().group_send(
                notifications_group_name(42),
                {"type": "notification.created", "notification": {"id": 1, "message": "hello"}},
            )
            self.assertEqual(
                await communicator.receive_json_from(),
                {"type": "notification.created", "notification": {"id": 1, "message": "hello"}},
            )
            await communicator.disconnect()

        async_to_sync(scenario)()

    def test_anonymous_connections_are_refused(self):
        async def scenario():
            communicator = WebsocketCommunicator(NotificationsConsumer.as_asgi(), "/ws/notifications/")
            communicator.scope["user"] = SimpleNamespace(id=None, is_authenticated=False)
            connected, code = await communicator.connect()
            self.assertFalse(connected)
            self.assertEqual(code, 4401)

        async_to_sync(scenario)()

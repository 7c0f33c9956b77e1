from channels.generic.websocket import AsyncJsonWebsocketConsumer

from .notifications import notifications_group_name


class NotificationsConsumer(AsyncJsonWebsocketConsumer):
    """Pushes a user's new in-app notifications as they are created."""

    async def connect(self):
        user = self.scope.get("user")
        if user is None or not getattr(user, "is_authenticated", False):
            await self.close(code=4401)
            return

        self.group_name = notifications_group_name(user.id)
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()

    async def disconnect(self, close_code):
        group_name = getattr(self, "group_name", "")
        if group_name:
            await self.channel_layer.group_discard(group_name, self.channel_name)
        await super().disconnect(close_code)

    async def receive_json(self, content, **kwargs):
        event_type = (content or {}).get("type")
        if event_type == "ping":
            await self.send_json({"type": "pong"})

    async def notification_created(self, event):
        notification = event.get("notification") or {}
        if not notification:
            return
        await self.send_json({"type": "notification.created", "notification": notification})

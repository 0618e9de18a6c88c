from __future__ import annotations

import json
import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from rest_framework.utils.encoders import JSONEncoder

from missions.websocket import GROUP_NAME, build_message

logger = logging.getLogger(__name__)


class MissionsConsumer(AsyncJsonWebsocketConsumer):
    group_name = GROUP_NAME

    @classmethod
    async def encode_json(cls, content):
        return json.dumps(content, cls=JSONEncoder)

    @database_sync_to_async
    def _get_statistics_message(self):
        from missions.use_cases.admission import get_stats

        return build_message(message_type="statistics_updated", payload=get_stats())

    async def connect(self):
        """Accept authenticated clients, join the missions group and send current statistics."""
        user = self.scope.get("user")
        if not user or getattr(user, "is_anonymous", True):
            logger.info("WS connect: rejected anonymous user")
            await self.close(code=4401)
            return
        await self.accept()
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        try:
            await self.send_json(await self._get_statistics_message())
        except Exception:
            logger.exception("WS connect: failed to send initial statistics")

    async def receive_json(self, content, **kwargs):
        if content.get("type") == "ping":
            await self.send_json({"type": "pong"})

    async def disconnect(self, code):
        try:
            await self.channel_layer.group_discard(self.group_name, self.channel_name)
        except Exception:
            logger.exception("WS disconnect: group_discard failed")

    async def broadcast(self, event):
        message = event.get("message")
        if message is not None:
            await self.send_json(message)

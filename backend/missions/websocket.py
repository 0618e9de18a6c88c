from __future__ import annotations

import itertools
import logging
from typing import Any

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.utils import timezone

logger = logging.getLogger(__name__)

GROUP_NAME = "missions"

_sequence = itertools.count(1)


def build_message(*, message_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    """Build the websocket envelope shared by every missions broadcast."""
    return {
        "type": message_type,
        "timestamp": timezone.now().isoformat(),
        "sequence": next(_sequence),
        "payload": payload,
    }


def broadcast(*, message_type: str, payload: dict[str, Any]) -> None:
    """Send a message to the `missions` group. Failures are logged, never retried."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.debug("No channel layer configured, skipping %s broadcast", message_type)
        return

    message = build_message(message_type=message_type, payload=payload)
    try:
        async_to_sync(channel_layer.group_send)(
            GROUP_NAME,
            {
                "type": "broadcast",
                "message": message,
            },
        )
    except Exception:
        logger.exception("Failed to broadcast %s", message_type)

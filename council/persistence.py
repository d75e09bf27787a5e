"""Narrow persistence interface used by the orchestrators, plus best-effort recording.

Saves never interrupt a conversation: every failure is logged and swallowed.
"""

import logging
from typing import Any, Protocol, runtime_checkable

from council.browser.base import AgentChannel

logger = logging.getLogger(__name__)


@runtime_checkable
class RoomPersistence(Protocol):
    def save_message(self, room_id: str, sender: str, content: str, target: str | None = None) -> int: ...

    def save_agent_conversation(self, room_id: str, agent_id: str, url: str) -> None: ...

    def get_room_with_details(self, room_id: str) -> dict[str, Any] | None: ...


def record_message(
    store: RoomPersistence | None,
    room_id: str | None,
    sender: str,
    content: str,
    target: str | None = None,
) -> int | None:
    """Save one message; returns its id, or None when skipped or failed."""
    if store is None or room_id is None:
        return None
    try:
        return store.save_message(room_id, sender, content, target)
    except Exception as exc:
        logger.warning("Failed to save message from %s in room %s: %s", sender, room_id, exc)
        return None


async def record_agent_urls(
    store: RoomPersistence | None,
    room_id: str | None,
    channel: AgentChannel,
    agent_ids: list[str],
) -> None:
    """Save each agent's current conversation URL so the room can be restored later."""
    if store is None or room_id is None:
        return
    for agent_id in agent_ids:
        try:
            url = await channel.current_url(agent_id)
            if url:
                store.save_agent_conversation(room_id, agent_id, url)
        except Exception as exc:
            logger.warning("Failed to save conversation URL for agent %s in room %s: %s", agent_id, room_id, exc)

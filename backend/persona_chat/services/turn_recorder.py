from __future__ import annotations

from persona_chat.memory.history_store import HistoryStore
from persona_chat.memory.types import ConversationKey

USER_PREFIX = "User: "
LINE_TERMINATOR = "\n"


class TurnRecorder:
    """Writes both sides of a chat turn into the history store."""

    def __init__(self, history_store: HistoryStore) -> None:
        self._history_store = history_store

    async def record_user_turn(self, key: ConversationKey, text: str) -> None:
        await self._history_store.append(key, f"{USER_PREFIX}{text}{LINE_TERMINATOR}")

    async def record_reply_turn(self, key: ConversationKey, text: str) -> bool:
        """Append a model reply; empty replies are not recorded."""

        if not text.strip():
            return False
        await self._history_store.append(key, f"{text}{LINE_TERMINATOR}")
        return True

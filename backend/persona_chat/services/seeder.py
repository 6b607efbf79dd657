from __future__ import annotations

import logging

from persona_chat.memory.history_store import HistoryStore
from persona_chat.memory.types import ConversationKey

logger = logging.getLogger(__name__)

DEFAULT_SEED_DELIMITER = "\n\n"


class HistorySeeder:
    """Bootstraps a conversation with the persona's canned opening dialogue."""

    def __init__(self, history_store: HistoryStore) -> None:
        self._history_store = history_store

    async def seed_if_empty(
        self,
        key: ConversationKey,
        seed_block: str,
        delimiter: str = DEFAULT_SEED_DELIMITER,
    ) -> int:
        """Write seed lines with orders 0..n-1 unless the key already has history.

        The existence check and the writes are not atomic; two first turns racing
        on the same key may both seed.
        """

        if await self._history_store.exists(key):
            logger.debug("History already present for %s; seeding skipped", key.storage_key)
            return 0

        segments = split_seed(seed_block, delimiter)
        for counter, segment in enumerate(segments):
            await self._history_store.append(key, segment, order=counter)
        if segments:
            logger.info("Seeded %s history entries for %s", len(segments), key.storage_key)
        return len(segments)


def split_seed(seed_block: str, delimiter: str = DEFAULT_SEED_DELIMITER) -> list[str]:
    if not seed_block:
        return []
    if not delimiter:
        return [seed_block] if seed_block.strip() else []
    return [segment for segment in seed_block.split(delimiter) if segment.strip()]

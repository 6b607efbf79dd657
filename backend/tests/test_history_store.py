from __future__ import annotations

import pytest

from persona_chat.memory.history_store import SQLHistoryStore, StoreUnavailable
from persona_chat.memory.types import ConversationKey


def test_storage_key_normalizes_whitespace():
    key = ConversationKey(persona_id="Ada  Lovelace", user_id="user\t1", model_name="llama2 13b")
    assert key.storage_key == "Ada_Lovelace:llama2_13b:user_1"
    assert key == ConversationKey("Ada  Lovelace", "user\t1", "llama2 13b")
    assert key != ConversationKey("Ada  Lovelace", "user\t2", "llama2 13b")


def test_storage_key_keeps_hyphenated_ids_apart():
    first = ConversationKey(persona_id="a-b", user_id="c", model_name="m")
    second = ConversationKey(persona_id="a", user_id="c", model_name="b-m")
    colon = ConversationKey(persona_id="a:m", user_id="c", model_name="x")
    other = ConversationKey(persona_id="a", user_id="c", model_name="m:x")

    assert first.storage_key != second.storage_key
    assert colon.storage_key != other.storage_key
    assert colon.storage_key == "a%3Am:x:c"


@pytest.mark.anyio
async def test_read_recent_orders_by_score(sessionmaker):
    store = SQLHistoryStore(sessionmaker)
    key = ConversationKey("ada", "u1", "llama2-13b")

    await store.append(key, "later", order=2000.0)
    await store.append(key, "earlier", order=1000.0)
    await store.append(key, "latest", order=3000.0)

    assert await store.read_recent(key) == ["earlier", "later", "latest"]


@pytest.mark.anyio
async def test_equal_scores_keep_arrival_order(sessionmaker):
    store = SQLHistoryStore(sessionmaker)
    key = ConversationKey("ada", "u1", "llama2-13b")

    for text in ("first", "second", "third"):
        await store.append(key, text, order=5.0)

    assert await store.read_recent(key) == ["first", "second", "third"]


@pytest.mark.anyio
async def test_live_writes_sort_after_seeded_entries(sessionmaker):
    store = SQLHistoryStore(sessionmaker)
    key = ConversationKey("ada", "u1", "llama2-13b")

    await store.append(key, "seed 0", order=0)
    await store.append(key, "User: hi\n")
    entries = await store.read_recent_entries(key)

    assert [entry.text for entry in entries] == ["seed 0", "User: hi\n"]
    assert entries[0].order < entries[1].order


@pytest.mark.anyio
async def test_read_recent_is_bounded_to_window(sessionmaker):
    store = SQLHistoryStore(sessionmaker)
    key = ConversationKey("ada", "u1", "llama2-13b")
    for index in range(35):
        await store.append(key, f"line {index}", order=index)

    recent = await store.read_recent(key)
    assert len(recent) == 30
    assert recent[0] == "line 5"
    assert recent[-1] == "line 34"

    assert await store.read_recent(key, limit=100) == recent
    assert await store.read_recent(key, limit=2) == ["line 33", "line 34"]


@pytest.mark.anyio
async def test_missing_key_reads_empty(sessionmaker):
    store = SQLHistoryStore(sessionmaker)
    key = ConversationKey("nobody", "u1", "llama2-13b")

    assert await store.read_recent(key) == []
    assert await store.exists(key) is False


@pytest.mark.anyio
async def test_keys_are_isolated(sessionmaker):
    store = SQLHistoryStore(sessionmaker)
    first = ConversationKey("ada", "u1", "llama2-13b")
    second = ConversationKey("ada", "u2", "llama2-13b")

    await store.append(first, "only for u1")

    assert await store.exists(first) is True
    assert await store.read_recent(second) == []


@pytest.mark.anyio
async def test_backend_failure_raises_store_unavailable(tmp_path):
    from persona_chat.db.base import create_engine, create_sessionmaker

    # Tables were never created, so every statement fails.
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    store = SQLHistoryStore(create_sessionmaker(engine))
    key = ConversationKey("ada", "u1", "llama2-13b")
    try:
        with pytest.raises(StoreUnavailable):
            await store.append(key, "hello")
        with pytest.raises(StoreUnavailable):
            await store.read_recent(key)
    finally:
        await engine.dispose()

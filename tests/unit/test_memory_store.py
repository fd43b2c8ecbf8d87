import json
import threading

from chat_orchestrator.agent.registry import ToolRegistry
from chat_orchestrator.agent.tools import register_orchestration_tools
from chat_orchestrator.commands.catalog import DEFAULT_CATALOG
from chat_orchestrator.memory.store import (
    InMemoryMemoryStore,
    SqliteMemoryStore,
    search_memory,
    summarize_conversation,
)
from chat_orchestrator.types import ConversationMessage


def test_sqlite_store_is_scoped_per_user(tmp_path) -> None:
    store = SqliteMemoryStore(tmp_path / "memory.db")
    store.set("alice", "favorite_color", "blue")
    store.set("alice", "pets", {"dog": "Rex"})
    store.set("bob", "favorite_color", "green")

    assert store.get("alice", "favorite_color") == "blue"
    assert store.get("bob", "favorite_color") == "green"
    assert {entry.key for entry in store.all("alice")} == {"favorite_color", "pets"}
    assert [entry.key for entry in search_memory(store, "alice", "rex")] == ["pets"]

    store.delete("alice", "pets")
    assert store.get("alice", "pets") is None


def test_summary_is_stored_under_dated_key() -> None:
    store = InMemoryMemoryStore()
    history = [ConversationMessage("user", f"topic {index}") for index in range(12)]

    summary = summarize_conversation(store, "alice", history)

    assert summary.startswith("Recent conversation topics: topic 0; topic 1")
    assert "topic 10" not in summary
    (entry,) = store.all("alice")
    assert entry.key.startswith("conversation_summary_")
    assert entry.value["message_count"] == 12


async def test_memory_tools_store_and_query(dispatcher) -> None:
    store = InMemoryMemoryStore()
    registry = ToolRegistry()
    register_orchestration_tools(
        registry,
        dispatcher=dispatcher,
        catalog=DEFAULT_CATALOG,
        memory_store=store,
        user_id="alice",
    )

    stored = await registry.execute("store_memory", {"key": "prefs", "value": '{"theme": "dark"}'})
    assert stored == 'Successfully stored memory with key "prefs"'
    assert store.get("alice", "prefs") == {"theme": "dark"}

    by_key = json.loads(await registry.execute("query_memory", {"key": "prefs"}))
    assert by_key == {"key": "prefs", "value": {"theme": "dark"}}
    assert await registry.execute("query_memory", {"search": "nothing"}) == 'No memories found matching "nothing"'
    assert await registry.execute("query_memory", {"key": "missing"}) == 'No memory found for key "missing"'


async def test_memory_tools_keep_store_calls_off_the_event_loop(dispatcher) -> None:
    class ThreadRecordingStore(InMemoryMemoryStore):
        def __init__(self) -> None:
            super().__init__()
            self.threads: set[int] = set()

        def set(self, user_id, key, value) -> None:
            self.threads.add(threading.get_ident())
            super().set(user_id, key, value)

        def get(self, user_id, key):
            self.threads.add(threading.get_ident())
            return super().get(user_id, key)

    store = ThreadRecordingStore()
    registry = ToolRegistry()
    register_orchestration_tools(
        registry,
        dispatcher=dispatcher,
        catalog=DEFAULT_CATALOG,
        memory_store=store,
        user_id="alice",
    )

    await registry.execute("store_memory", {"key": "city", "value": "Lisbon"})
    answer = json.loads(await registry.execute("query_memory", {"key": "city"}))

    assert answer == {"key": "city", "value": "Lisbon"}
    assert store.threads
    assert threading.get_ident() not in store.threads

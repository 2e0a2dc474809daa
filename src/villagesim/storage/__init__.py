"""持久化协作方。"""

from villagesim.storage.store import (
    InMemoryStore,
    JsonFileStore,
    KeyValueStore,
    active_events_key,
    delayed_effects_key,
    history_key,
    scheduled_key,
    settings_key,
    village_key,
)

__all__ = [
    "InMemoryStore",
    "JsonFileStore",
    "KeyValueStore",
    "active_events_key",
    "delayed_effects_key",
    "history_key",
    "scheduled_key",
    "settings_key",
    "village_key",
]

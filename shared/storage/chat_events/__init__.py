from shared.storage.chat_events.store import ChatEventStore, DEFAULT_RETENTION

__all__ = ["ChatEventStore", "DEFAULT_RETENTION"]

"""Chat feed API service."""

from .server import ChatApiConfig, ChatApiServer, message_payload

__all__ = ["ChatApiConfig", "ChatApiServer", "message_payload"]

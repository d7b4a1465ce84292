"""Shared capability interface for platform adapters."""

from __future__ import annotations

from typing import Any, Optional, Protocol

from shared.logging.logger import get_logger

log = get_logger("shared.platforms.adapter")


class ChatAdapter(Protocol):
    platform: str

    async def connect(self) -> None:
        ...

    async def disconnect(self) -> None:
        ...


def record_error(status: Any, platform: str, error: Any) -> None:
    """Forward an error to a status sink that keeps diagnostics, if it does."""
    recorder = getattr(status, "record_error", None)
    if recorder is None:
        return
    try:
        recorder(platform, error)
    except Exception as e:
        log.warning(f"[{platform}] Error recorder failed: {e}")


__all__ = ["ChatAdapter", "record_error"]

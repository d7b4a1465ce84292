"""Error taxonomy shared by every chat adapter.

Adapters raise these during bootstrap and translate them into status
updates during steady state. `category` is the stable, machine-readable
label recorded alongside the last error for diagnostics.
"""

from __future__ import annotations

from typing import Optional


class ChatIngestError(RuntimeError):
    """Base class for classified ingestion failures."""

    category = "error"
    retryable = False

    def __init__(self, message: str, *, platform: Optional[str] = None):
        super().__init__(message)
        self.platform = platform

    def describe(self) -> str:
        return f"[{self.category}] {self}"


class BootstrapError(ChatIngestError):
    """
    Identity, room, or live content could not be resolved.

    Raised from `connect()` only. The adapter never enters steady state.
    """

    category = "bootstrap"


class NoLiveContentError(BootstrapError):
    """The channel exists but nothing is currently live."""

    category = "no_live_content"


class ProtocolIncompatibleError(ChatIngestError):
    """
    Upstream changed its schema in a way the decoder cannot interpret.

    Never retried: an update is needed, not another attempt.
    """

    category = "protocol_incompatible"


class TransientFetchError(ChatIngestError):
    """Timeout, non-2xx response, or malformed body. Retried with backoff."""

    category = "transient"
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        platform: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, platform=platform)
        self.status_code = status_code


class MissingCursorError(ChatIngestError):
    """No continuation cursor is available; fatal for the session."""

    category = "missing_cursor"


class DecodeError(ChatIngestError):
    """A single record could not be decoded. Skipped, never fatal."""

    category = "decode"


# ----------------------------------------------------------------------
# In-band classification
# ----------------------------------------------------------------------

_INCOMPATIBLE_MARKERS = (
    "parser is out of date",
    "compositevideoprimaryinfo",
    "internal api has changed",
    "parser error",
)

_NO_LIVE_MARKERS = (
    "no live stream",
    "not currently live",
    "does not have live chat",
    "live chat not available",
    "stream may have ended",
)

_UNRESOLVED_MARKERS = (
    "could not find channel",
    "failed to resolve channel",
    "channel not found",
)

_MISSING_CURSOR_MARKERS = (
    "no initial continuation",
    "continuation token",
    "missing continuation",
)


def classify_backend_error(
    text: str,
    *,
    platform: Optional[str] = None,
) -> ChatIngestError:
    """
    Map an in-band error string to a classified error.

    Matching is case-insensitive on known phrases; anything unrecognised is
    treated as transient so it is retried rather than silently dropped.
    """
    lowered = (text or "").lower()

    if any(marker in lowered for marker in _INCOMPATIBLE_MARKERS):
        return ProtocolIncompatibleError(text, platform=platform)
    if any(marker in lowered for marker in _NO_LIVE_MARKERS):
        return NoLiveContentError(text, platform=platform)
    if any(marker in lowered for marker in _UNRESOLVED_MARKERS):
        return BootstrapError(text, platform=platform)
    if any(marker in lowered for marker in _MISSING_CURSOR_MARKERS):
        return MissingCursorError(text, platform=platform)
    return TransientFetchError(text or "unknown backend error", platform=platform)


__all__ = [
    "ChatIngestError",
    "BootstrapError",
    "NoLiveContentError",
    "ProtocolIncompatibleError",
    "TransientFetchError",
    "MissingCursorError",
    "DecodeError",
    "classify_backend_error",
]

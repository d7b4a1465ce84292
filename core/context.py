from dataclasses import dataclass
from typing import List, Optional


@dataclass
class TwitchChannelConfig:
    channel: str
    username: Optional[str] = None
    # Without a token the adapter logs in anonymously (justinfanNNNNN)
    token: Optional[str] = None
    client_id: Optional[str] = None

    @property
    def anonymous(self) -> bool:
        return not self.token


@dataclass
class KickChannelConfig:
    channel: str


@dataclass
class YouTubeChannelConfig:
    channel_name: str
    backend_url: Optional[str] = None


@dataclass
class ChannelContext:
    """
    Which adapters to start, and with what.

    A platform whose entry is None is not started.
    """

    twitch: Optional[TwitchChannelConfig] = None
    kick: Optional[KickChannelConfig] = None
    youtube: Optional[YouTubeChannelConfig] = None

    def platform_enabled(self, name: str) -> bool:
        return getattr(self, name, None) is not None

    def configured_platforms(self) -> List[str]:
        return [
            name for name in ("twitch", "kick", "youtube")
            if self.platform_enabled(name)
        ]

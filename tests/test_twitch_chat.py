import pytest

from services.twitch.api.chat import (
    TWITCH_EMOTE_URL,
    TwitchChatClient,
    community_emotes,
    parse_emote_tag,
    parse_irc_line,
    split_frame,
    unescape_tag_value,
)
from shared.chat.colors import color_for
from shared.chat.events import EmoteToken

PRIVMSG = (
    "@badge-info=;badges=moderator/1,subscriber/12;color=#1E90FF;display-name=Viewer;"
    "emotes=25:0-4,12-16;first-msg=1;id=abc-123;tmi-sent-ts=1714564800000 "
    ":viewer!viewer@viewer.tmi.twitch.tv PRIVMSG #streamer :Kappa hello Kappa"
)


def test_unescape_tag_value():
    assert unescape_tag_value(r"hello\sworld\:\\") == "hello world;\\"
    assert unescape_tag_value("plain") == "plain"


def test_parse_privmsg_line():
    line = parse_irc_line(PRIVMSG)

    assert line.command == "PRIVMSG"
    assert line.params == ("#streamer", "Kappa hello Kappa")
    assert line.tags["display-name"] == "Viewer"
    assert line.prefix.startswith("viewer!")


def test_parse_ping_and_numeric():
    assert parse_irc_line("PING :tmi.twitch.tv").trailing == "tmi.twitch.tv"
    assert parse_irc_line(":tmi.twitch.tv 366 justinfan1 #streamer :End of /NAMES list").command == "366"
    assert parse_irc_line("   ") is None


def test_split_frame_handles_multiple_lines():
    assert split_frame("PING :a\r\nPING :b\r\n") == ["PING :a", "PING :b"]


def test_emote_tag_yields_one_token_per_range():
    emotes = parse_emote_tag("25:0-4,12-16/1902:6-10", "Kappa Keepo Kappa")

    assert [(e.name, e.positions) for e in emotes] == [
        ("Kappa", ((0, 4),)),
        ("Keepo", ((6, 10),)),
        ("Kappa", ((12, 16),)),
    ]
    assert emotes[0].url == TWITCH_EMOTE_URL.format(emote_id="25")


def test_emote_tag_skips_bad_ranges():
    assert parse_emote_tag("25:0-40,x-y,3", "short") == []
    assert parse_emote_tag(None, "text") == []


def test_community_emotes_respect_resolved_ranges_and_provider_order():
    text = "Kappa catJAM OMEGALUL"
    resolved = [EmoteToken("Kappa", "u", ((0, 4),), "twitch")]
    providers = [
        ("7tv", {"catJAM": "https://7tv/cat", "Kappa": "https://7tv/k"}),
        ("bttv", {"catJAM": "https://bttv/cat", "OMEGALUL": "https://bttv/o"}),
    ]

    found = community_emotes(text, resolved, providers)

    assert [(e.name, e.source_platform, e.positions) for e in found] == [
        ("catJAM", "7tv", ((6, 11),)),
        ("OMEGALUL", "bttv", ((13, 20),)),
    ]


def test_build_privmsg():
    client = TwitchChatClient("#Streamer")
    message = client.build_privmsg(parse_irc_line(PRIVMSG))

    assert message.id == "twitch-abc-123"
    assert message.username == "Viewer"
    assert message.message == "Kappa hello Kappa"
    assert message.user_color == "#1E90FF"
    assert message.is_first_time is True
    assert [b.set_id for b in message.badges] == ["moderator", "subscriber"]
    assert len(message.emotes) == 2
    assert message.to_dict()["timestamp"] == "2024-05-01T12:00:00Z"


def test_action_markers_are_stripped_and_missing_color_is_derived():
    raw = ":someone!someone@someone.tmi.twitch.tv PRIVMSG #streamer :\x01ACTION waves\x01"
    message = TwitchChatClient("streamer").build_privmsg(parse_irc_line(raw))

    assert message.message == "waves"
    assert message.username == "someone"
    assert message.user_color == color_for("someone")


def test_usernotice_with_user_text_keeps_it():
    raw = (
        "@msg-id=resub;display-name=Fan;id=n1;system-msg=Fan\\ssubscribed\\sfor\\s3\\smonths "
        ":tmi.twitch.tv USERNOTICE #streamer :still here"
    )
    message = TwitchChatClient("streamer").build_usernotice(parse_irc_line(raw))

    assert message.event_type == "sub"
    assert message.message == "still here"


def test_usernotice_without_text_uses_system_message():
    raw = (
        "@msg-id=subgift;display-name=Giver;id=n2;system-msg=Giver\\sgifted\\sa\\ssub "
        ":tmi.twitch.tv USERNOTICE #streamer"
    )
    message = TwitchChatClient("streamer").build_usernotice(parse_irc_line(raw))

    assert message.event_type == "gift"
    assert message.message == "Giver gifted a sub"
    assert message.emotes == ()


def test_raid_notice_is_synthesized():
    raw = (
        "@msg-id=raid;display-name=Raider;msg-param-displayName=Raider;"
        "msg-param-viewerCount=42;id=n3 :tmi.twitch.tv USERNOTICE #streamer"
    )
    message = TwitchChatClient("streamer").build_usernotice(parse_irc_line(raw))

    assert message.event_type == "raid"
    assert message.message == "Raider is raiding with 42 viewers!"


def test_handshake_anonymous_and_authenticated():
    anonymous = TwitchChatClient("streamer")
    lines = anonymous.handshake_lines()
    assert anonymous.anonymous
    assert lines[0] == "CAP REQ :twitch.tv/tags twitch.tv/commands"
    assert lines[1].startswith("NICK justinfan")
    assert lines[-1] == "JOIN #streamer"

    authed = TwitchChatClient("streamer", nickname="Bot", token="secret")
    assert authed.handshake_lines()[1:3] == ["PASS oauth:secret", "NICK bot"]


def test_auth_failure_detection():
    line = parse_irc_line(":tmi.twitch.tv NOTICE * :Login authentication failed")
    assert TwitchChatClient.is_auth_failure(line)
    assert TwitchChatClient.pong_for(parse_irc_line("PING :tmi.twitch.tv")) == "PONG :tmi.twitch.tv"


def test_channel_is_required():
    with pytest.raises(ValueError):
        TwitchChatClient("#")


def test_minimal_tagged_line():
    line = parse_irc_line("@color=#FF0000;display-name=Bob :bob!bob@x PRIVMSG #c :hi")
    message = TwitchChatClient("c").build_privmsg(line)

    assert (message.username, message.user_color, message.message) == ("Bob", "#FF0000", "hi")

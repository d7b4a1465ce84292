from shared.chat.colors import color_for
from shared.chat.events import EmoteToken
from shared.chat.tokenizer import TokenKind, detect_links, detect_mentions, tokenize


def _kinds(tokens):
    return [(t.kind, t.text) for t in tokens]


def test_plain_text_is_one_token():
    tokens = tokenize("hello world")
    assert _kinds(tokens) == [(TokenKind.TEXT, "hello world")]
    assert (tokens[0].start, tokens[0].end) == (0, 10)


def test_empty_text_has_no_tokens():
    assert tokenize("") == []


def test_emotes_split_text_at_their_ranges():
    kappa = EmoteToken("Kappa", "https://e/kappa", ((0, 4), (10, 14)), "twitch")
    tokens = tokenize("Kappa hey Kappa", [kappa])

    assert _kinds(tokens) == [
        (TokenKind.EMOTE, "Kappa"),
        (TokenKind.TEXT, " hey "),
        (TokenKind.EMOTE, "Kappa"),
    ]
    assert tokens[0].url == "https://e/kappa"


def test_out_of_range_emote_positions_are_ignored():
    emote = EmoteToken("Big", "u", ((3, 40),), "twitch")
    assert _kinds(tokenize("short", [emote])) == [(TokenKind.TEXT, "short")]


def test_links_are_detected_without_trailing_punctuation():
    assert detect_links("see https://example.com/a.") == [
        (4, 24, "https://example.com/a"),
    ]
    assert detect_links("go to www.example.com now") == [
        (6, 20, "https://www.example.com"),
    ]


def test_mentions_need_a_word_boundary():
    assert detect_mentions("hi @alice and bob@example") == [(3, 8, "alice")]


def test_emote_wins_over_overlapping_link():
    text = "https://x.io"
    emote = EmoteToken("X", "u", ((8, 11),), "kick")
    tokens = tokenize(text, [emote])

    assert _kinds(tokens) == [
        (TokenKind.TEXT, "https://"),
        (TokenKind.EMOTE, "x.io"),
    ]


def test_link_wins_over_mention_inside_it():
    tokens = tokenize("https://site.tv/@streamer")
    assert [t.kind for t in tokens] == [TokenKind.LINK]


def test_detection_can_be_turned_off():
    tokens = tokenize("@bob https://x.io", link_detect=False, mention_detect=False)
    assert _kinds(tokens) == [(TokenKind.TEXT, "@bob https://x.io")]


def test_mention_colors():
    tokens = tokenize("@Viewer @other", author="viewer", author_color="#123456")
    mentions = [t for t in tokens if t.kind == TokenKind.MENTION]

    assert mentions[0].color == "#123456"
    assert mentions[1].color == color_for("other")
    assert mentions[1].username == "other"


def test_tokens_cover_text_without_gaps():
    text = "hey @you look at www.a.com Kappa!"
    kappa = EmoteToken("Kappa", "u", ((27, 31),), "twitch")
    tokens = tokenize(text, [kappa])

    assert "".join(t.text for t in tokens) == text
    for previous, current in zip(tokens, tokens[1:]):
        assert current.start == previous.end + 1


def test_token_to_dict_omits_unset_fields():
    token = tokenize("hi")[0]
    assert token.to_dict() == {"kind": "text", "text": "hi", "start": 0, "end": 1}


def test_mention_and_link_with_text_between():
    tokens = tokenize("hello @bob http://x")

    assert _kinds(tokens) == [
        (TokenKind.TEXT, "hello "),
        (TokenKind.MENTION, "@bob"),
        (TokenKind.TEXT, " "),
        (TokenKind.LINK, "http://x"),
    ]
    assert tokens[1].username == "bob"
    assert tokens[3].url == "http://x"


def test_emote_wins_over_overlapping_mention():
    emote = EmoteToken("@pog", "u", ((0, 3),), "7tv")
    tokens = tokenize("@pog hi", [emote])

    assert [t.kind for t in tokens] == [TokenKind.EMOTE, TokenKind.TEXT]

import pytest

from shared.chat.errors import (
    BootstrapError,
    MissingCursorError,
    NoLiveContentError,
    ProtocolIncompatibleError,
    TransientFetchError,
    classify_backend_error,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        (
            "YouTube internal API has changed and the parser is out of date. "
            "(Parser error: CompositeVideoPrimaryInfo not found)",
            ProtocolIncompatibleError,
        ),
        (
            "No live streams found for channel: Foo. Make sure the channel is currently live streaming.",
            NoLiveContentError,
        ),
        (
            "No chat data available. The stream may have ended or chat may be disabled.",
            NoLiveContentError,
        ),
        ("Could not find channel: nobody.", BootstrapError),
        ("Failed to fetch chat messages: No initial continuation token available", MissingCursorError),
        ("Failed to fetch chat messages: socket hang up", TransientFetchError),
    ],
)
def test_backend_errors_are_classified(text, expected):
    error = classify_backend_error(text, platform="youtube")
    assert type(error) is expected
    assert error.platform == "youtube"
    assert str(error) == text


def test_only_transient_errors_are_retryable():
    assert TransientFetchError("x").retryable
    assert not ProtocolIncompatibleError("x").retryable
    assert not NoLiveContentError("x").retryable
    assert not MissingCursorError("x").retryable


def test_describe_includes_category():
    assert NoLiveContentError("offline").describe() == "[no_live_content] offline"

import json

from scripts.validate_config import (
    channel_config_errors,
    main,
    system_config_errors,
)


def test_channel_config_errors_point_at_field():
    assert channel_config_errors({"kick": {"channel": "ok"}}) == []

    errors = channel_config_errors({"twitch": {"channel": 5}})
    assert len(errors) == 1
    assert errors[0].startswith("twitch/channel:")


def test_system_config_errors():
    assert system_config_errors({"retention": 100, "polling": {"min_seconds": 3}}) == []
    assert system_config_errors({"retention": True}) == ["retention: must be an integer"]
    assert system_config_errors({"retention": 0}) == ["retention: must be positive"]
    assert system_config_errors({"polling": {"min_seconds": 9, "max_seconds": 5}}) == [
        "polling: min_seconds exceeds max_seconds"
    ]


def test_main_exit_codes(tmp_path, capsys):
    good = tmp_path / "good.json"
    good.write_text(json.dumps({"youtube": {"channelName": "yt"}}), encoding="utf-8")
    bad = tmp_path / "bad.json"
    bad.write_text("[]", encoding="utf-8")

    assert main([str(good)]) == 0
    assert main([str(bad)]) == 1
    assert main([str(tmp_path / "missing.json")]) == 0
    assert "root JSON value must be an object" in capsys.readouterr().err

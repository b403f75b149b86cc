from __future__ import annotations

from courier.channels.manager import parse_channel_target


def test_parse_channel_target_accepts_shorthand_channel() -> None:
    assert parse_channel_target("telegram") == ("telegram", "")


def test_parse_channel_target_keeps_destination() -> None:
    assert parse_channel_target("Telegram:123456") == ("telegram", "123456")
    assert parse_channel_target("webhook:https://hooks.example/x") == ("webhook", "https://hooks.example/x")


def test_parse_channel_target_rejects_empty() -> None:
    assert parse_channel_target("") is None
    assert parse_channel_target("   ") is None
    assert parse_channel_target(":123") is None

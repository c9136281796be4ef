from __future__ import annotations

from datetime import datetime, timezone

from slashbot.integrations.discord.rendering import (
    avatar_url,
    build_embed,
    build_message_payload,
    format_relative_timestamp,
    guild_icon_url,
    truncate_for_discord,
)


def test_truncate_closes_dangling_code_fence() -> None:
    text = "```python\n" + "x" * 100
    truncated = truncate_for_discord(text, 40)

    assert len(truncated) <= 40
    assert truncated.endswith("```...")
    assert truncate_for_discord("short", 40) == "short"


def test_message_payload_suppresses_mentions_by_default() -> None:
    payload = build_message_payload("hi @everyone", ephemeral=True)

    assert payload == {
        "content": "hi @everyone",
        "flags": 64,
        "allowed_mentions": {"parse": []},
    }


def test_embed_trims_fields_and_skips_empty_parts() -> None:
    embed = build_embed(
        title="Title",
        fields=[("Name", "", True)],
        thumbnail_url=None,
    )

    assert embed["title"] == "Title"
    assert "description" not in embed
    assert "thumbnail" not in embed
    assert embed["fields"] == [{"name": "Name", "value": "\u200b", "inline": True}]


def test_cdn_urls() -> None:
    assert avatar_url("123", "a_abc").endswith("/avatars/123/a_abc.gif?size=1024")
    assert avatar_url("123", "abc").endswith("/avatars/123/abc.png?size=1024")
    assert avatar_url("not-a-snowflake", None).endswith("/embed/avatars/0.png")
    assert guild_icon_url("9", None) is None


def test_relative_timestamp_markup() -> None:
    moment = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert format_relative_timestamp(moment) == "<t:1704067200:R>"

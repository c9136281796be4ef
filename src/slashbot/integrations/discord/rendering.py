from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Iterable, Optional

from .constants import (
    COLOR_BLURPLE,
    DISCORD_CDN_BASE_URL,
    DISCORD_MAX_EMBED_DESCRIPTION_LENGTH,
    DISCORD_MAX_EMBED_FIELD_VALUE_LENGTH,
    DISCORD_MAX_MESSAGE_LENGTH,
    MESSAGE_FLAG_EPHEMERAL,
)

TRUNCATION_SUFFIX = "..."

_DISCORD_ESCAPE_RE = re.compile(r"([*_~`>|\\])")


def escape_discord_markdown(text: str) -> str:
    if not text:
        return ""
    return _DISCORD_ESCAPE_RE.sub(r"\\\1", text)


def format_code_block(code: str, language: str = "") -> str:
    escaped = (code or "").replace("```", "\\`\\`\\`")
    return f"```{language}\n{escaped}\n```"


def truncate_for_discord(text: str, max_len: int = DISCORD_MAX_MESSAGE_LENGTH) -> str:
    """Trim ``text`` to ``max_len``, closing a dangling code fence if needed."""
    if max_len <= 0:
        raise ValueError("max_len must be positive")
    if not text or len(text) <= max_len:
        return text or ""
    budget = max_len - len(TRUNCATION_SUFFIX)
    trimmed = text[:budget]
    if trimmed.count("```") % 2 == 1:
        closing = "\n```"
        trimmed = text[: max(budget - len(closing), 0)] + closing
    return trimmed + TRUNCATION_SUFFIX


def format_relative_timestamp(moment: datetime) -> str:
    return f"<t:{int(moment.timestamp())}:R>"


def build_embed(
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
    color: int = COLOR_BLURPLE,
    url: Optional[str] = None,
    image_url: Optional[str] = None,
    thumbnail_url: Optional[str] = None,
    footer: Optional[str] = None,
    fields: Iterable[tuple[str, str, bool]] = (),
) -> dict[str, Any]:
    embed: dict[str, Any] = {"color": color}
    if title:
        embed["title"] = title[:256]
    if description:
        embed["description"] = truncate_for_discord(
            description, DISCORD_MAX_EMBED_DESCRIPTION_LENGTH
        )
    if url:
        embed["url"] = url
    if image_url:
        embed["image"] = {"url": image_url}
    if thumbnail_url:
        embed["thumbnail"] = {"url": thumbnail_url}
    if footer:
        embed["footer"] = {"text": footer[:2048]}
    rendered_fields = [
        {
            "name": name[:256] or "\u200b",
            "value": truncate_for_discord(value, DISCORD_MAX_EMBED_FIELD_VALUE_LENGTH)
            or "\u200b",
            "inline": inline,
        }
        for name, value, inline in fields
    ]
    if rendered_fields:
        embed["fields"] = rendered_fields[:25]
    return embed


def build_message_payload(
    content: Optional[str] = None,
    *,
    embeds: Optional[list[dict[str, Any]]] = None,
    components: Optional[list[dict[str, Any]]] = None,
    ephemeral: bool = False,
    max_len: int = DISCORD_MAX_MESSAGE_LENGTH,
    allow_mentions: bool = False,
) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if content is not None:
        payload["content"] = truncate_for_discord(content, max_len=max_len)
    if embeds is not None:
        payload["embeds"] = embeds
    if components is not None:
        payload["components"] = components
    if ephemeral:
        payload["flags"] = MESSAGE_FLAG_EPHEMERAL
    if not allow_mentions:
        payload["allowed_mentions"] = {"parse": []}
    return payload


def avatar_url(user_id: str, avatar: Optional[str]) -> str:
    if not avatar:
        # Default avatars are indexed by (id >> 22) % 6 for new usernames.
        try:
            index = (int(user_id) >> 22) % 6
        except ValueError:
            index = 0
        return f"{DISCORD_CDN_BASE_URL}/embed/avatars/{index}.png"
    extension = "gif" if avatar.startswith("a_") else "png"
    return f"{DISCORD_CDN_BASE_URL}/avatars/{user_id}/{avatar}.{extension}?size=1024"


def guild_icon_url(guild_id: str, icon: Optional[str]) -> Optional[str]:
    if not icon:
        return None
    extension = "gif" if icon.startswith("a_") else "png"
    return f"{DISCORD_CDN_BASE_URL}/icons/{guild_id}/{icon}.{extension}?size=1024"

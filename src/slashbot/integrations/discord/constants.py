from __future__ import annotations

DISCORD_API_BASE_URL = "https://discord.com/api/v10"
DISCORD_GATEWAY_URL = "wss://gateway.discord.gg/?v=10&encoding=json"
DISCORD_CDN_BASE_URL = "https://cdn.discordapp.com"

# Discord hard limits.
DISCORD_MAX_MESSAGE_LENGTH = 2000
DISCORD_MAX_EMBED_DESCRIPTION_LENGTH = 4096
DISCORD_MAX_EMBED_FIELD_VALUE_LENGTH = 1024
DISCORD_MAX_CHOICES = 25
DISCORD_MAX_COMMAND_NAME_LENGTH = 32
DISCORD_MAX_DESCRIPTION_LENGTH = 100

# Gateway intents (https://discord.com/developers/docs/topics/gateway#gateway-intents).
DISCORD_INTENT_GUILDS = 1 << 0
DISCORD_INTENT_GUILD_MESSAGES = 1 << 9
DISCORD_INTENT_DIRECT_MESSAGES = 1 << 12
DISCORD_INTENT_MESSAGE_CONTENT = 1 << 15

# Interaction types.
INTERACTION_TYPE_PING = 1
INTERACTION_TYPE_APPLICATION_COMMAND = 2
INTERACTION_TYPE_MESSAGE_COMPONENT = 3
INTERACTION_TYPE_AUTOCOMPLETE = 4

# Interaction callback types.
CALLBACK_CHANNEL_MESSAGE_WITH_SOURCE = 4
CALLBACK_DEFERRED_CHANNEL_MESSAGE_WITH_SOURCE = 5
CALLBACK_AUTOCOMPLETE_RESULT = 8

# Message flags.
MESSAGE_FLAG_EPHEMERAL = 1 << 6

# Embed colors.
COLOR_BLURPLE = 0x5865F2
COLOR_GREEN = 0x57F287
COLOR_RED = 0xED4245

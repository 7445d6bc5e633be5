"""Shrine event command constants."""

import discord

# Colors
COLOR_SUCCESS = discord.Color.from_str("#00FF00")
COLOR_ERROR = discord.Color.from_str("#FF0000")
COLOR_WARNING = discord.Color.from_str("#FF9900")
COLOR_INFO = discord.Color.from_str("#3498DB")
COLOR_MUTED = discord.Color.from_str("#C0C0C0")

EVENT_TITLE = "Shrine Event"

# Seconds to wait for a button press or a sticker message
CONFIRM_TIMEOUT = 60
STICKER_WAIT_TIMEOUT = 60

DISABLED_MESSAGE = (
    "⚠️ This command is disabled because the shrine event has ended.\n"
    "Ask a server administrator if you want to reuse it for another event."
)

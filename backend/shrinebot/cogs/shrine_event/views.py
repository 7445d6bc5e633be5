"""Shrine event UI components."""

import logging
from collections.abc import Awaitable, Callable
from typing import Optional

import discord

from shared.models.shrine_event import ShrineEventConfig

from ...scanner import ScanSession
from ...scanner.report import format_duration
from .constants import COLOR_INFO, COLOR_MUTED, COLOR_SUCCESS, COLOR_WARNING, CONFIRM_TIMEOUT

logger = logging.getLogger(__name__)


def _channel_value(channel_id: Optional[int]) -> str:
    return f"<#{channel_id}>" if channel_id else "Not set"


def _role_value(role_id: Optional[int]) -> str:
    return f"<@&{role_id}>" if role_id else "Not set"


def create_config_embed(
    title: str,
    description: str,
    channel_id: int,
    sticker_id: int,
    role_id: Optional[int],
    footer: str,
) -> discord.Embed:
    """Embed shown after a configuration was saved."""
    embed = discord.Embed(
        title=title,
        description=description,
        color=COLOR_SUCCESS,
        timestamp=discord.utils.utcnow(),
    )
    embed.add_field(name="Channel", value=_channel_value(channel_id), inline=False)
    embed.add_field(name="Sticker ID", value=str(sticker_id), inline=False)
    embed.add_field(name="Role", value=_role_value(role_id), inline=False)
    embed.set_footer(text=footer)
    return embed


def create_override_embed(
    current: ShrineEventConfig, channel_id: int, sticker_id: int, role_id: int
) -> discord.Embed:
    embed = discord.Embed(
        title="Existing Configuration Found",
        description=(
            "⚠️ There is already a shrine event configuration in this server. "
            "Do you want to override it?"
        ),
        color=COLOR_WARNING,
        timestamp=discord.utils.utcnow(),
    )
    embed.add_field(name="Current Channel", value=_channel_value(current.channel_id), inline=False)
    embed.add_field(name="New Channel", value=_channel_value(channel_id), inline=False)
    embed.add_field(name="Current Sticker ID", value=str(current.sticker_id or "Not set"), inline=False)
    embed.add_field(name="New Sticker ID", value=str(sticker_id), inline=False)
    embed.add_field(name="Current Role", value=_role_value(current.role_id), inline=False)
    embed.add_field(name="New Role", value=_role_value(role_id), inline=False)
    embed.set_footer(text="Please confirm if you want to override the existing configuration")
    return embed


def create_status_embed(
    config: ShrineEventConfig, participants: int, granted: int
) -> discord.Embed:
    embed = discord.Embed(
        title="Shrine Event Status",
        color=COLOR_SUCCESS if config.active else discord.Color.red(),
        timestamp=discord.utils.utcnow(),
    )
    status = "✅ Active" if config.active else "❌ Inactive"
    embed.add_field(name="Status", value=status, inline=False)
    embed.add_field(
        name="Channel",
        value=f"<#{config.channel_id}>" if config.channel_id else "⚠️ - Not configured",
        inline=True,
    )
    embed.add_field(
        name="Sticker ID",
        value=str(config.sticker_id) if config.sticker_id else "⚠️ - Not configured",
        inline=True,
    )
    embed.add_field(
        name="Role",
        value=f"<@&{config.role_id}>" if config.role_id else "⚠️ - Not configured",
        inline=True,
    )
    embed.add_field(name="Participants", value=f"{participants} ({granted} with role)", inline=False)

    if not config.is_scannable:
        embed.set_footer(text="Configuration incomplete! Use /shrine-event config to set up the event")
    elif not config.active:
        embed.set_footer(text="Event is configured but not active. Use /shrine-event activate to start the event")
    else:
        embed.set_footer(text="Event is active and running")
    return embed


def create_scan_result_embed(session: ScanSession) -> discord.Embed:
    embed = discord.Embed(
        title="Message Scan Complete",
        description="✅ Finished scanning messages in the configured channel",
        color=COLOR_SUCCESS,
        timestamp=discord.utils.utcnow(),
    )
    if session.aborted:
        embed.description = "⚠️ The scan stopped early because the channel became unavailable"
        embed.color = COLOR_WARNING

    fields = [
        ("Messages Scanned", session.messages_scanned),
        ("Matching Stickers Found", session.matching_stickers),
        ("New Roles Assigned", session.roles_assigned),
        ("Already Processed", session.already_processed),
        ("Errors Encountered", session.errors),
        ("Processing Time", format_duration(session.elapsed_seconds)),
    ]
    for name, value in fields:
        embed.add_field(name=name, value=str(value), inline=True)
    return embed


class ConfirmOverrideView(discord.ui.View):
    """Ask the invoking administrator whether to replace the existing configuration."""

    def __init__(
        self,
        author_id: int,
        on_confirm: Callable[[discord.Interaction], Awaitable[discord.Embed]],
    ):
        super().__init__(timeout=CONFIRM_TIMEOUT)
        self.author_id = author_id
        self._on_confirm = on_confirm
        self.interaction: Optional[discord.Interaction] = None
        self.confirmed: Optional[bool] = None

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.author_id:
            await interaction.response.send_message(
                "Only the user who initiated this command can use these buttons.", ephemeral=True
            )
            return False
        return True

    @discord.ui.button(label="Yes, Override", style=discord.ButtonStyle.danger)
    async def confirm(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.confirmed = True
        embed = await self._on_confirm(interaction)
        await interaction.response.edit_message(embed=embed, view=None)
        self.stop()

    @discord.ui.button(label="No, Keep Current", style=discord.ButtonStyle.secondary)
    async def cancel(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.confirmed = False
        embed = discord.Embed(
            title="Update Cancelled",
            description="✅ Operation cancelled. The existing configuration has been kept.",
            color=COLOR_INFO,
            timestamp=discord.utils.utcnow(),
        )
        await interaction.response.edit_message(embed=embed, view=None)
        self.stop()

    async def on_timeout(self) -> None:
        if self.interaction is None:
            return
        embed = discord.Embed(
            title="Operation Timed Out",
            description="⏱️ The configuration update request has timed out. No changes were made.",
            color=COLOR_MUTED,
            timestamp=discord.utils.utcnow(),
        )
        try:
            await self.interaction.edit_original_response(embed=embed, view=None)
        except discord.HTTPException as e:
            logger.debug(f"Could not mark override prompt as timed out: {e}")


class InteractionProgressSink:
    """Progress sink that rewrites the deferred reply of a scan command."""

    def __init__(self, interaction: discord.Interaction):
        self.interaction = interaction

    async def notify(self, text: str) -> None:
        await self.interaction.edit_original_response(content=text)

"""Shrine event feature cog."""

import asyncio
import logging

import discord
from discord import app_commands
from discord.ext import commands

from shared.models.shrine_event import ShrineEventConfig

from ...config import BotConfig
from ...scanner import ScanNotConfigured
from ...services import ShrineServices
from .constants import (
    COLOR_ERROR,
    COLOR_INFO,
    DISABLED_MESSAGE,
    EVENT_TITLE,
    STICKER_WAIT_TIMEOUT,
)
from .views import (
    ConfirmOverrideView,
    InteractionProgressSink,
    create_config_embed,
    create_override_embed,
    create_scan_result_embed,
    create_status_embed,
)

logger = logging.getLogger(__name__)


class ShrineEventCog(commands.Cog):
    """Configuration and reconciliation commands for the shrine event."""

    def __init__(self, bot: commands.Bot, services: ShrineServices):
        self.bot = bot
        self.services = services
        # Guilds with a scan in flight
        self._scanning: set[int] = set()

    # ==================== Helpers ====================

    async def _gate(self, interaction: discord.Interaction) -> discord.Guild | None:
        """Answer and return None when the command cannot run here."""
        if not BotConfig.SHRINE_COMMANDS_ENABLED:
            embed = discord.Embed(title=EVENT_TITLE, description=DISABLED_MESSAGE, color=COLOR_ERROR)
            await interaction.response.send_message(embed=embed, ephemeral=True)
            return None
        if not self.services.ready:
            await interaction.response.send_message("The shrine event service is not ready yet.", ephemeral=True)
            return None
        if interaction.guild is None:
            await interaction.response.send_message("This command can only be used in a server.", ephemeral=True)
            return None
        return interaction.guild

    @property
    def repo(self):
        return self.services.config_repo

    async def _sticker_thumbnail(self, embed: discord.Embed, sticker_id: int | None) -> None:
        if not sticker_id:
            return
        try:
            sticker = await self.bot.fetch_sticker(sticker_id)
        except discord.HTTPException as e:
            logger.debug(f"Could not fetch sticker {sticker_id}: {e}")
            return
        embed.set_thumbnail(url=sticker.url)

    @staticmethod
    def _parse_sticker_id(raw: str) -> int | None:
        try:
            value = int(raw.strip())
        except ValueError:
            return None
        return value if value > 0 else None

    # ==================== Commands ====================

    shrine_group = app_commands.Group(
        name="shrine-event",
        description="Manage the shrine event settings.",
        default_permissions=discord.Permissions(administrator=True),
        guild_only=True,
    )

    @shrine_group.command(name="config", description="Configure the shrine event.")
    @app_commands.describe(
        channel="The channel where the event takes place.",
        sticker_id="The ID of the sticker used for the event.",
        role="The role assigned to participants.",
    )
    @app_commands.rename(sticker_id="sticker-id")
    async def shrine_config(
        self,
        interaction: discord.Interaction,
        channel: discord.TextChannel,
        sticker_id: str,
        role: discord.Role,
    ) -> None:
        guild = await self._gate(interaction)
        if guild is None:
            return

        parsed_sticker = self._parse_sticker_id(sticker_id)
        if parsed_sticker is None:
            await interaction.response.send_message("❌ The sticker ID must be a number.", ephemeral=True)
            return

        me = guild.me
        permissions = channel.permissions_for(me)
        if not (permissions.view_channel and permissions.send_messages):
            await interaction.response.send_message(
                "❌ I don't have permission to send messages in that channel. "
                "Please choose a channel where I have proper permissions.",
                ephemeral=True,
            )
            return

        if role >= me.top_role:
            await interaction.response.send_message(
                "❌ I cannot assign the specified role because it is positioned higher than or equal "
                "to my highest role. Please choose a lower role or move my role higher in the hierarchy.",
                ephemeral=True,
            )
            return

        existing = await self.repo.get_config(guild.id)

        async def save(button_interaction: discord.Interaction) -> discord.Embed:
            await self.repo.update_config(
                guild.id, channel_id=channel.id, sticker_id=parsed_sticker, role_id=role.id
            )
            logger.info(f"Shrine event configured for guild {guild.id}: channel {channel.id}, sticker {parsed_sticker}")
            embed = create_config_embed(
                "Configuration Updated",
                "✅ The shrine event configuration has been overridden with new values.",
                channel.id,
                parsed_sticker,
                role.id,
                "Use /shrine-event status to view the configuration",
            )
            await self._sticker_thumbnail(embed, parsed_sticker)
            return embed

        if existing is not None:
            embed = create_override_embed(existing, channel.id, parsed_sticker, role.id)
            await self._sticker_thumbnail(embed, existing.sticker_id)
            view = ConfirmOverrideView(interaction.user.id, save)
            view.interaction = interaction
            await interaction.response.send_message(embed=embed, view=view, ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)
        await self.repo.update_config(guild.id, channel_id=channel.id, sticker_id=parsed_sticker, role_id=role.id)
        embed = create_config_embed(
            "Shrine Event Configuration",
            "✅ Event successfully configured!",
            channel.id,
            parsed_sticker,
            role.id,
            "Use /shrine-event activate to start the event",
        )
        await self._sticker_thumbnail(embed, parsed_sticker)
        await interaction.followup.send(embed=embed, ephemeral=True)

    @shrine_group.command(name="status", description="Show the current shrine event configuration.")
    async def shrine_status(self, interaction: discord.Interaction) -> None:
        guild = await self._gate(interaction)
        if guild is None:
            return
        await interaction.response.defer(ephemeral=True)

        config = await self.repo.find_or_create_config(guild.id)
        total, granted = await self.services.ledger.count_for_event(  # type: ignore[union-attr]
            guild.id, config.event_id
        )
        embed = create_status_embed(config, total, granted)
        await self._sticker_thumbnail(embed, config.sticker_id)
        await interaction.followup.send(embed=embed, ephemeral=True)

    @shrine_group.command(name="activate", description="Activate the shrine event.")
    async def shrine_activate(self, interaction: discord.Interaction) -> None:
        guild = await self._gate(interaction)
        if guild is None:
            return

        config = await self.repo.find_or_create_config(guild.id)
        if not config.channel_id:
            await interaction.response.send_message(
                "⚠️ You need to configure a channel first using `/shrine-event config` before activating the event.",
                ephemeral=True,
            )
            return
        if not config.sticker_id:
            await interaction.response.send_message(
                "⚠️ You need to configure a sticker ID first using `/shrine-event config` before activating the event.",
                ephemeral=True,
            )
            return
        if config.active:
            await interaction.response.send_message("ℹ️ The shrine event is already active.", ephemeral=True)
            return

        config = await self.repo.update_config(guild.id, active=True)
        logger.info(f"Shrine event activated in guild {guild.id}")
        embed = create_config_embed(
            "Shrine Event Activated",
            "✅ The event has been successfully activated!",
            config.channel_id,  # type: ignore[arg-type]
            config.sticker_id,  # type: ignore[arg-type]
            config.role_id,
            "Use /shrine-event scan-messages to grant roles",
        )
        await self._sticker_thumbnail(embed, config.sticker_id)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @shrine_group.command(name="deactivate", description="Deactivate the shrine event.")
    async def shrine_deactivate(self, interaction: discord.Interaction) -> None:
        guild = await self._gate(interaction)
        if guild is None:
            return

        config = await self.repo.find_or_create_config(guild.id)
        if not config.active:
            await interaction.response.send_message("ℹ️ The shrine event is already inactive.", ephemeral=True)
            return

        await self.repo.update_config(guild.id, active=False)
        logger.info(f"Shrine event deactivated in guild {guild.id}")
        embed = discord.Embed(
            title="Shrine Event Deactivated",
            description="✅ The event has been deactivated.",
            color=COLOR_ERROR,
            timestamp=discord.utils.utcnow(),
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @shrine_group.command(name="check-sticker-id", description="Check a sticker ID by using it in your message.")
    async def shrine_check_sticker(self, interaction: discord.Interaction) -> None:
        if await self._gate(interaction) is None:
            return
        await interaction.response.send_message(
            "Please send a message with the sticker you want to check in this channel. "
            f"I'll wait for {STICKER_WAIT_TIMEOUT} seconds.",
            ephemeral=True,
        )

        def check(message: discord.Message) -> bool:
            return (
                message.author.id == interaction.user.id
                and message.channel.id == interaction.channel_id
                and bool(message.stickers)
            )

        try:
            message = await self.bot.wait_for("message", check=check, timeout=STICKER_WAIT_TIMEOUT)
        except asyncio.TimeoutError:
            await interaction.followup.send(
                "No sticker received within the time limit. Please try the command again.", ephemeral=True
            )
            return

        sticker = message.stickers[0]
        embed = discord.Embed(title="Sticker Information", color=COLOR_INFO, timestamp=discord.utils.utcnow())
        embed.add_field(name="Sticker Name", value=sticker.name, inline=True)
        embed.add_field(name="Sticker ID", value=str(sticker.id), inline=True)
        embed.add_field(name="Format Type", value=sticker.format.name, inline=True)
        embed.set_image(url=sticker.url)
        embed.set_footer(text="Use this ID in the /shrine-event config command")
        await interaction.followup.send("Here's the information for the sticker you sent:", embed=embed, ephemeral=True)

        try:
            await message.delete()
        except discord.HTTPException as e:
            logger.debug(f"Could not delete sticker message {message.id}: {e}")

    @shrine_group.command(name="scan-messages", description="Scan the configured channel and grant the event role.")
    async def shrine_scan(self, interaction: discord.Interaction) -> None:
        guild = await self._gate(interaction)
        if guild is None:
            return

        config: ShrineEventConfig = await self.repo.find_or_create_config(guild.id)
        if not config.is_scannable:
            await interaction.response.send_message(
                "⚠️ Cannot scan messages: Event is not fully configured. Use `/shrine-event config` first."
            )
            return

        channel = guild.get_channel_or_thread(config.channel_id)  # type: ignore[arg-type]
        if channel is None:
            await interaction.response.send_message(
                "❌ Cannot scan messages: Configured channel not found. It may have been deleted."
            )
            return

        engine = self.services.engine_for(self.bot)
        if guild.id in self._scanning or engine.busy:
            await interaction.response.send_message(
                "⏳ A scan is already running. Please wait for it to finish.", ephemeral=True
            )
            return

        self._scanning.add(guild.id)
        try:
            await interaction.response.defer()
            session, artifact = await engine.run_and_report(
                config, progress=InteractionProgressSink(interaction)
            )
        except ScanNotConfigured as e:
            await interaction.edit_original_response(content=f"⚠️ Cannot scan messages: {e}")
            return
        finally:
            self._scanning.discard(guild.id)

        embed = create_scan_result_embed(session)
        await self._sticker_thumbnail(embed, config.sticker_id)

        if artifact.path is not None:
            file = discord.File(artifact.path, filename=artifact.path.name)
            await interaction.edit_original_response(content=None, embed=embed, attachments=[file])
        else:
            # Nothing reached disk; the summary text goes inline
            await interaction.edit_original_response(content=artifact.content[:2000], embed=embed)

    # ==================== Errors ====================

    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.MissingPermissions):
            message = "You don't have permission to use this command."
        else:
            original = getattr(error, "original", error)
            logger.error(f"Error executing shrine command: {original}", exc_info=original)
            message = f"❌ An error occurred while executing the command: {original}"

        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        logger.info(f"Shrine event cog ready (commands {'enabled' if BotConfig.SHRINE_COMMANDS_ENABLED else 'disabled'})")

import asyncio
import logging
import traceback
from typing import Optional

import discord
from discord.ext import commands
from discord import app_commands

from rps_bot.config import Config
from rps_bot.database.database import Database
from rps_bot.utils.logger import setup_logger, configure_discord_logging

class RpsBot(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        intents.guilds = True

        super().__init__(
            command_prefix=Config.COMMAND_PREFIX,
            intents=intents,
            help_command=None
        )

        # Attach app command error handler
        self.tree.on_error = self.on_app_command_error

        self.db: Optional[Database] = None
        self.logger = setup_logger(__name__)

    async def setup_hook(self):
        """Called when the bot is starting up"""
        self.logger.info("Setting up RPS Arena Bot...")

        self.db = Database()
        await self.db.initialize()

        await self.load_cogs()
        await self._sync_commands()

        self.logger.info("RPS Arena Bot setup complete!")

    async def load_cogs(self):
        """Load all cogs"""
        cogs_to_load = [
            'rps_bot.cogs.sessions',
            'rps_bot.cogs.player',
            'rps_bot.cogs.weekly',
            'rps_bot.cogs.housekeeping',
        ]

        for cog in cogs_to_load:
            try:
                await self.load_extension(cog)
                self.logger.info(f"Loaded cog: {cog}")
            except commands.ExtensionError as e:
                self.logger.error(f"Failed to load cog {cog}: {e}", exc_info=True)

    async def _sync_commands(self):
        """Sync slash commands with Discord"""
        if not self.tree.get_commands():
            self.logger.warning("No application commands found to sync. Check for cog loading errors.")
            return

        guild_ids = Config.get_guild_ids()
        if not guild_ids:
            # Global sync can take up to an hour to propagate
            self.logger.info("Attempting to sync commands globally...")
            try:
                synced = await self.tree.sync()
                self.logger.info(f"Successfully synced {len(synced)} command(s) globally")
            except discord.errors.HTTPException as e:
                self.logger.error(f"Failed to sync commands: {e}", exc_info=True)
            return

        self.logger.info(f"Attempting to sync commands to {len(guild_ids)} guild(s): {guild_ids}...")
        total_synced = 0
        for guild_id in guild_ids:
            guild = discord.Object(id=guild_id)
            try:
                self.tree.copy_global_to(guild=guild)
                synced = await self.tree.sync(guild=guild)
            except discord.errors.Forbidden:
                self.logger.error(
                    f"Permission error syncing to guild {guild_id}. Ensure the bot has the "
                    "'application.commands' scope and is in the guild.",
                    exc_info=True
                )
                continue
            except discord.errors.HTTPException as e:
                self.logger.error(f"HTTP error syncing to guild {guild_id}. Status: {e.status}, Response: {e.text}")
                continue
            self.logger.info(f"Successfully synced {len(synced)} command(s) to guild {guild_id}")
            total_synced += len(synced)

        self.logger.info(f"Multi-guild sync complete: {total_synced} total command instances deployed")

    async def on_ready(self):
        """Called when the bot is ready"""
        self.logger.info(f'{self.user} has connected to Discord!')
        self.logger.info(f'Bot is in {len(self.guilds)} guilds')

        await self.change_presence(
            activity=discord.Game(name="Rock Paper Scissors | /rps-lobby")
        )

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        """Global error handler for slash commands"""
        command_name = interaction.command.name if interaction.command else 'Unknown'
        if isinstance(error, app_commands.CheckFailure):
            self.logger.info(f"Permission denied for command '{command_name}' by user {interaction.user}")
        else:
            self.logger.error(f"Error in app command '{command_name}': {error}", exc_info=error)

        if isinstance(error, app_commands.CommandOnCooldown):
            title = f"❌ Command is on cooldown. Try again in {error.retry_after:.2f} seconds."
        elif isinstance(error, app_commands.CheckFailure):
            title = "❌ Permission Denied"
        elif isinstance(error, app_commands.BotMissingPermissions):
            title = "❌ I don't have the required permissions to execute this command."
        else:
            title = "❌ An unexpected error occurred while processing your command."

        error_embed = discord.Embed(title=title, color=discord.Color.red())
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=error_embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=error_embed, ephemeral=True)
        except discord.errors.HTTPException as e:
            self.logger.error(f"Failed to send error response: {e}")

    async def close(self):
        """Cleanup when bot is shutting down"""
        self.logger.info("Shutting down RPS Arena Bot...")

        if self.db:
            await self.db.close()

        await super().close()

async def main():
    """Main entry point"""
    Config.validate()
    configure_discord_logging()

    bot = RpsBot()

    try:
        await bot.start(Config.DISCORD_TOKEN)
    except KeyboardInterrupt:
        await bot.close()
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        traceback.print_exc()
    finally:
        await bot.close()

def run():
    asyncio.run(main())

if __name__ == "__main__":
    run()

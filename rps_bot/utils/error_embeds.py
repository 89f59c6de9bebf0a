"""
Centralized error embeds for consistent error handling across the bot.
"""

import discord


class ErrorEmbeds:
    """Centralized error embed factory for consistent error handling."""

    @staticmethod
    def operation_failed(user_message: str, title: str = "Action Rejected") -> discord.Embed:
        """Create embed from an operation error's user_message."""
        return discord.Embed(
            title=title,
            description=user_message,
            color=discord.Color.red()
        )

    @staticmethod
    def invalid_input(message: str) -> discord.Embed:
        """Create embed for invalid user input."""
        return discord.Embed(
            title="Invalid Input",
            description=message,
            color=discord.Color.red()
        )

    @staticmethod
    def permission_denied() -> discord.Embed:
        """Create embed for permission errors."""
        return discord.Embed(
            title="Permission Denied",
            description="You don't have permission to perform this action.",
            color=discord.Color.red()
        )

    @staticmethod
    def no_match_history() -> discord.Embed:
        return discord.Embed(
            title="No Match History",
            description="You haven't played any games yet. Use `/rps-lobby` to find one!",
            color=discord.Color.orange()
        )

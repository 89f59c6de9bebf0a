"""
Shared embed utilities for the RPS Escrow Arena bot.

Reusable embed builders so every cog formats games, results and
leaderboards the same way.
"""

import discord
from datetime import datetime, timezone
from typing import Optional, List, Sequence

from rps_bot.constants import UIConstants
from rps_bot.data_models.history import MatchHistoryEntry
from rps_bot.data_models.leaderboard import LeaderboardPage
from rps_bot.data_models.weekly import WeeklyLeaderboard
from rps_bot.database.models import (
    GameSession, SessionStatus, Move, Outcome, Player, BalanceLedger, WeeklyReward
)
from rps_bot.operations.session_operations import SettlementResult
from rps_bot.utils.time_utils import format_week


def format_moves(moves: Optional[Sequence[Move]]) -> str:
    if not moves:
        return "-"
    return " ".join(UIConstants.MOVE_EMOJI[move.value] for move in moves)


def _player_name(player: Optional[Player]) -> str:
    if player is None:
        return "-"
    return player.display_name or player.username


def _timestamp(value: datetime) -> str:
    return discord.utils.format_dt(value.replace(tzinfo=timezone.utc), style="R")


def build_session_embed(game: GameSession, title: Optional[str] = None) -> discord.Embed:
    """Public view of a session: never shows the creator's hidden moves."""
    color = UIConstants.SUCCESS_COLOR if game.status == SessionStatus.OPEN else UIConstants.DEFAULT_EMBED_COLOR
    embed = discord.Embed(
        title=title or f"🎮 Game #{game.id}",
        color=color
    )
    embed.add_field(name="Status", value=game.status.value.replace('_', ' ').title(), inline=True)
    embed.add_field(
        name="Stake",
        value=f"{game.rounds} round(s) × {game.stake_per_round:,} = **{game.total_stake:,}** {UIConstants.COIN_EMOJI}",
        inline=True
    )
    embed.add_field(name="Creator", value=_player_name(game.creator), inline=True)
    if game.challenger_id is not None:
        embed.add_field(name="Challenger", value=_player_name(game.challenger), inline=True)
    if game.status == SessionStatus.AWAITING_REVEAL:
        embed.add_field(name="Reveal deadline", value=_timestamp(game.reveal_deadline), inline=True)
    embed.set_footer(text=f"{UIConstants.LOCK_EMOJI} Commitment {game.commit_hash[:16]}…")
    return embed


def build_settlement_embed(settlement: SettlementResult) -> discord.Embed:
    game = settlement.session
    result = settlement.result

    if result.overall == Outcome.DRAW:
        title, color = "🤝 Draw! Stakes refunded", UIConstants.DRAW_COLOR
    elif result.by_forfeit:
        title, color = f"{UIConstants.TROPHY_EMOJI} {_player_name(game.challenger)} wins by forfeit", UIConstants.SUCCESS_COLOR
    else:
        winner = game.creator if result.overall == Outcome.CREATOR else game.challenger
        title, color = f"{UIConstants.TROPHY_EMOJI} {_player_name(winner)} wins!", UIConstants.GOLD_RANK_COLOR

    embed = discord.Embed(title=f"Game #{game.id}: {title}", color=color)

    if result.rounds_outcome:
        lines = []
        for outcome in result.rounds_outcome:
            a = UIConstants.MOVE_EMOJI[outcome['creator_move']]
            b = UIConstants.MOVE_EMOJI[outcome['challenger_move']]
            lines.append(f"Round {outcome['round']}: {a} vs {b} ({outcome['winner']})")
        embed.add_field(name="Rounds", value="\n".join(lines), inline=False)
        embed.add_field(
            name="Score",
            value=f"{_player_name(game.creator)} {result.creator_wins} - {result.challenger_wins} {_player_name(game.challenger)}",
            inline=False
        )

    embed.add_field(name="Pot", value=f"{result.pot:,}", inline=True)
    embed.add_field(name="Payout", value=f"{result.payout_winner:,}", inline=True)
    embed.add_field(name="Fees", value=f"{result.fees_treasury:,} treasury / {result.fees_burn:,} burn", inline=True)
    return embed


def build_lobby_embed(games: List[GameSession]) -> discord.Embed:
    embed = discord.Embed(title="🎮 Open Games", color=UIConstants.DEFAULT_EMBED_COLOR)
    if not games:
        embed.description = "No open games right now. Start one with `/rps-create`!"
        return embed
    embed.description = "\n".join(
        f"**#{game.id}** · {_player_name(game.creator)} · {game.rounds} round(s) × {game.stake_per_round:,}"
        for game in games
    )
    embed.set_footer(text="Join with /rps-join <game> <moves>")
    return embed


def build_history_embed(entries: List[MatchHistoryEntry], display_name: str) -> discord.Embed:
    embed = discord.Embed(title=f"📜 Recent games: {display_name}", color=UIConstants.DEFAULT_EMBED_COLOR)
    for entry in entries:
        if entry.status in (SessionStatus.RESOLVED, SessionStatus.FORFEITED):
            headline = entry.result_label.upper()
            if entry.by_forfeit:
                headline += " (forfeit)"
        else:
            headline = entry.status.value.replace('_', ' ')
        value = (
            f"vs {entry.opponent_name or 'nobody yet'} · {entry.rounds} × {entry.stake_per_round:,}\n"
            f"You: {format_moves(entry.my_moves)} · Them: {format_moves(entry.opponent_moves)}"
        )
        if entry.payout:
            value += f"\nWon {entry.payout:,} {UIConstants.COIN_EMOJI}"
        embed.add_field(name=f"#{entry.session_id} · {headline}", value=value, inline=False)
    return embed


def build_leaderboard_embed(page: LeaderboardPage) -> discord.Embed:
    titles = {'week': "This Week", 'month': "This Month", 'all': "All Time"}
    embed = discord.Embed(
        title=f"{UIConstants.TROPHY_EMOJI} Top Winners · {titles.get(page.timeframe, page.timeframe)}",
        color=UIConstants.GOLD_RANK_COLOR
    )
    if not page.entries:
        embed.description = "No finished games in this timeframe."
        return embed
    embed.description = "\n".join(
        f"**{entry.rank}.** {entry.display_name}: {entry.total_winnings:,} {UIConstants.COIN_EMOJI} "
        f"({entry.wins}W/{entry.losses}L/{entry.draws}D, {entry.win_rate:.0f}%)"
        for entry in page.entries
    )
    return embed


def build_weekly_embed(leaderboard: WeeklyLeaderboard, pool: int) -> discord.Embed:
    embed = discord.Embed(
        title=f"📅 Weekly Leaderboard · {format_week(leaderboard.week_start)}",
        description=f"Reward pool: **{pool:,}** {UIConstants.COIN_EMOJI} · {leaderboard.total_matches} game(s) played",
        color=UIConstants.DEFAULT_EMBED_COLOR
    )
    if leaderboard.ranked:
        embed.add_field(
            name="Eligible",
            value="\n".join(
                f"**{s.rank}.** {s.display_name}: {s.points} pts ({s.matches_won} wins, {s.total_winnings:,} won)"
                for s in leaderboard.ranked[:10]
            ),
            inline=False
        )
    else:
        embed.add_field(name="Eligible", value="Nobody qualifies yet.", inline=False)
    if leaderboard.ineligible:
        embed.add_field(
            name="Not yet eligible",
            value="\n".join(
                f"{s.display_name}: {s.ineligible_reason}" for s in leaderboard.ineligible[:10]
            ),
            inline=False
        )
    return embed


def build_balance_embed(player: Player, recent: List[BalanceLedger],
                        claimable: Optional[List[WeeklyReward]] = None) -> discord.Embed:
    embed = discord.Embed(
        title=f"{UIConstants.COIN_EMOJI} {_player_name(player)}",
        description=f"Balance: **{player.balance:,}**",
        color=UIConstants.DEFAULT_EMBED_COLOR
    )
    embed.add_field(
        name="Record",
        value=f"{player.wins}W / {player.losses}L / {player.draws}D ({player.win_rate:.0f}% win rate)",
        inline=False
    )
    if recent:
        embed.add_field(
            name="Recent activity",
            value="\n".join(
                f"{entry.change_amount:+,} · {entry.reason.value.replace('_', ' ')}" for entry in recent
            ),
            inline=False
        )
    if claimable:
        embed.add_field(
            name="Unclaimed weekly rewards",
            value="\n".join(
                f"Reward #{reward.id}: {reward.reward_amount:,} (rank {reward.rank})" for reward in claimable
            ),
            inline=False
        )
    return embed

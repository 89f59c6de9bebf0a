"""
Bot-wide constants for the RPS Escrow Arena bot.

Values that are part of the game rules but not meant to be tuned per
deployment live here; tunable values live in Config.
"""

class GameConstants:
    """Constants for the commit-reveal wager protocol."""

    # Preimage layout: moves joined by MOVE_SEPARATOR, then SALT_SEPARATOR, then salt
    MOVE_SEPARATOR = ","
    SALT_SEPARATOR = "|"

    # SHA-256 hex digest length
    COMMIT_HASH_LENGTH = 64

    # Random bytes used for bot-generated salts (128 bits)
    SALT_BYTES = 16

    # Basis point denominator for fee rates
    BPS_DENOMINATOR = 10000

class WeeklyConstants:
    """Constants for weekly leaderboard rewards."""

    # Percent of the weekly pool per rank (1st..10th). Sums to 100.
    REWARD_DISTRIBUTION = (50, 20, 10, 5, 5, 2, 2, 2, 2, 2)

    # Leaderboard points: flat per win plus one point per POINTS_PAYOUT_DIVISOR of payout
    POINTS_PER_WIN = 10
    POINTS_PAYOUT_DIVISOR = 100

class HistoryConstants:
    """Constants for match history displays."""

    RECENT_MATCH_LIMIT = 9
    LOBBY_PAGE_SIZE = 10
    LEADERBOARD_PAGE_SIZE = 10

class UIConstants:
    """Constants for Discord UI elements."""

    # Embed colors
    DEFAULT_EMBED_COLOR = 0x3498db  # Blue
    GOLD_RANK_COLOR = 0xffd700     # Gold for #1 ranked players
    ERROR_COLOR = 0xe74c3c         # Red for errors
    SUCCESS_COLOR = 0x2ecc71       # Green for success
    DRAW_COLOR = 0x95a5a6          # Grey for draws

    MOVE_EMOJI = {"R": "🪨", "P": "📄", "S": "✂️"}
    TROPHY_EMOJI = "🏆"
    COIN_EMOJI = "🪙"
    LOCK_EMOJI = "🔒"

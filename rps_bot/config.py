import os
from dotenv import load_dotenv

load_dotenv()

def _int_list(value: str, default: str):
    raw = value if value else default
    return tuple(int(part.strip()) for part in raw.split(',') if part.strip())

class Config:
    """Bot configuration settings"""

    # Discord settings
    DISCORD_TOKEN = os.getenv('DISCORD_TOKEN')
    DISCORD_GUILD_ID = int(os.getenv('DISCORD_GUILD_ID', 0))
    DISCORD_GUILD_IDS = os.getenv('DISCORD_GUILD_IDS', '')  # Comma-separated for multi-guild support
    OWNER_DISCORD_ID = int(os.getenv('OWNER_DISCORD_ID', 0))

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///rps_arena.db')

    # Bot settings
    COMMAND_PREFIX = os.getenv('COMMAND_PREFIX', '!')
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')

    # Wager settings
    ROUND_OPTIONS = _int_list(os.getenv('ROUND_OPTIONS', ''), '1,3,5')
    STAKE_TIERS = _int_list(os.getenv('STAKE_TIERS', ''), '100,500,1000')
    STARTING_BALANCE = int(os.getenv('STARTING_BALANCE', 10000))
    REVEAL_DEADLINE_SECONDS = int(os.getenv('REVEAL_DEADLINE_SECONDS', 600))

    # Fee schedule in basis points of the pot. Burn is the remainder of the total.
    TOTAL_FEE_BPS = int(os.getenv('TOTAL_FEE_BPS', 1000))     # 10%
    TREASURY_FEE_BPS = int(os.getenv('TREASURY_FEE_BPS', 500))  # 5%, funds weekly rewards

    # Housekeeping
    OPEN_SESSION_TTL_HOURS = int(os.getenv('OPEN_SESSION_TTL_HOURS', 24))
    FORFEIT_GRACE_MINUTES = int(os.getenv('FORFEIT_GRACE_MINUTES', 60))
    HOUSEKEEPING_INTERVAL_MINUTES = int(os.getenv('HOUSEKEEPING_INTERVAL_MINUTES', 10))

    # Weekly rewards eligibility (anti-collusion)
    WEEKLY_MIN_UNIQUE_OPPONENTS = int(os.getenv('WEEKLY_MIN_UNIQUE_OPPONENTS', 3))
    WEEKLY_MAX_OPPONENT_WIN_SHARE = float(os.getenv('WEEKLY_MAX_OPPONENT_WIN_SHARE', 0.5))
    WEEKLY_MIN_WINS = int(os.getenv('WEEKLY_MIN_WINS', 3))

    @classmethod
    def get_guild_ids(cls):
        """Get list of guild IDs for command syncing"""
        if cls.DISCORD_GUILD_IDS:
            # Multi-guild support: comma-separated IDs
            try:
                return [int(guild_id.strip()) for guild_id in cls.DISCORD_GUILD_IDS.split(',') if guild_id.strip()]
            except ValueError:
                raise ValueError("DISCORD_GUILD_IDS must be comma-separated integers")
        elif cls.DISCORD_GUILD_ID:
            return [cls.DISCORD_GUILD_ID]
        else:
            # Global sync
            return []

    @classmethod
    def validate_fee_schedule(cls, total_bps: int = None, treasury_bps: int = None):
        """Validate that the fee split can never create or destroy currency"""
        total_bps = cls.TOTAL_FEE_BPS if total_bps is None else total_bps
        treasury_bps = cls.TREASURY_FEE_BPS if treasury_bps is None else treasury_bps
        if not 0 <= total_bps <= 10000:
            raise ValueError(f"TOTAL_FEE_BPS must be between 0 and 10000, got {total_bps}")
        if not 0 <= treasury_bps <= total_bps:
            raise ValueError(
                f"TREASURY_FEE_BPS ({treasury_bps}) must be between 0 and TOTAL_FEE_BPS ({total_bps})"
            )

    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.DISCORD_TOKEN:
            raise ValueError("DISCORD_TOKEN is required")
        if not cls.DISCORD_GUILD_ID and not cls.DISCORD_GUILD_IDS:
            raise ValueError("Either DISCORD_GUILD_ID or DISCORD_GUILD_IDS is required")
        if not cls.OWNER_DISCORD_ID:
            raise ValueError("OWNER_DISCORD_ID is required")
        if cls.REVEAL_DEADLINE_SECONDS <= 0:
            raise ValueError("REVEAL_DEADLINE_SECONDS must be positive")
        cls.validate_fee_schedule()

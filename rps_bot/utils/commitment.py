"""
Commitment codec for the creator's hidden moves.

The creator publishes sha256("R,P,S|<salt>") when the session is created
and reveals the moves and salt after the challenger has played. The move
space is tiny (3^rounds), so hiding relies entirely on the salt's entropy.
"""

import hashlib
import re
import secrets
from typing import Iterable, List, Sequence, Union

from rps_bot.constants import GameConstants
from rps_bot.database.models import Move

_COMMIT_HASH_RE = re.compile(r"^[0-9a-f]{64}$")

_MOVE_ALIASES = {
    "r": Move.ROCK, "rock": Move.ROCK,
    "p": Move.PAPER, "paper": Move.PAPER,
    "s": Move.SCISSORS, "scissors": Move.SCISSORS,
}


def parse_moves(raw: Union[str, Iterable[Union[str, Move]]]) -> List[Move]:
    """
    Parse moves from user input.

    Accepts 'RPS', 'R,P,S', 'rock paper scissors' or a list of letters/Move
    members. Anything else raises ValueError.
    """
    if isinstance(raw, str):
        text = raw.strip()
        if re.fullmatch(r"[RPSrps]+", text):
            tokens = list(text)
        else:
            tokens = [t for t in re.split(r"[\s,]+", text) if t]
    else:
        tokens = list(raw)

    moves = []
    for token in tokens:
        if isinstance(token, Move):
            moves.append(token)
            continue
        move = _MOVE_ALIASES.get(str(token).strip().lower())
        if move is None:
            raise ValueError(f"Invalid move '{token}'. Use R, P or S.")
        moves.append(move)

    if not moves:
        raise ValueError("No moves given")
    return moves


def encode_moves(moves: Sequence[Move]) -> str:
    return GameConstants.MOVE_SEPARATOR.join(move.value for move in moves)


def build_preimage(moves: Sequence[Move], salt: str) -> str:
    return f"{encode_moves(moves)}{GameConstants.SALT_SEPARATOR}{salt}"


def hash_commitment(moves: Sequence[Move], salt: str) -> str:
    """SHA-256 hex digest of the canonical preimage"""
    return hashlib.sha256(build_preimage(moves, salt).encode("utf-8")).hexdigest()


def verify_commitment(stored_hash: str, moves: Sequence[Move], salt: str) -> bool:
    """True if moves and salt reproduce stored_hash; never raises on mismatch"""
    if not stored_hash:
        return False
    computed = hash_commitment(moves, salt)
    return secrets.compare_digest(stored_hash.lower(), computed)


def generate_salt(num_bytes: int = GameConstants.SALT_BYTES) -> str:
    return secrets.token_urlsafe(num_bytes)


def is_valid_commit_hash(value: str) -> bool:
    return bool(value) and bool(_COMMIT_HASH_RE.fullmatch(value.lower()))

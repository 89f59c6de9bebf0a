"""
Rock-Paper-Scissors judging.

Side A is always the session creator and side B the challenger, so the
round and overall results are expressed in those terms.
"""

from dataclasses import dataclass, field
from typing import List, Sequence, Dict, Any

from rps_bot.database.models import Move, Outcome, RoundWinner

# (winner, loser) pairs
_BEATS = {
    (Move.ROCK, Move.SCISSORS),
    (Move.SCISSORS, Move.PAPER),
    (Move.PAPER, Move.ROCK),
}


@dataclass(frozen=True)
class RoundOutcome:
    round: int  # 1-based
    creator_move: Move
    challenger_move: Move
    winner: RoundWinner

    def to_dict(self) -> Dict[str, Any]:
        return {
            'round': self.round,
            'creator_move': self.creator_move.value,
            'challenger_move': self.challenger_move.value,
            'winner': self.winner.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RoundOutcome':
        return cls(
            round=int(data['round']),
            creator_move=Move(data['creator_move']),
            challenger_move=Move(data['challenger_move']),
            winner=RoundWinner(data['winner']),
        )


@dataclass(frozen=True)
class TallyResult:
    outcomes: List[RoundOutcome] = field(default_factory=list)
    creator_wins: int = 0
    challenger_wins: int = 0
    draws: int = 0
    overall: Outcome = Outcome.DRAW


def judge_round(a: Move, b: Move) -> RoundWinner:
    """Winner of a single round between creator move a and challenger move b"""
    if a == b:
        return RoundWinner.DRAW
    if (a, b) in _BEATS:
        return RoundWinner.CREATOR
    return RoundWinner.CHALLENGER


def tally_outcome(creator_moves: Sequence[Move], challenger_moves: Sequence[Move]) -> TallyResult:
    """
    Judge every round and classify the match.

    The creator wins overall only with strictly more round wins than the
    challenger (and vice versa); equal counts, including 0-0, are a draw.

    Raises:
        ValueError: If the sequences are empty or differ in length
    """
    if len(creator_moves) != len(challenger_moves):
        raise ValueError(
            f"Move count mismatch: creator has {len(creator_moves)}, challenger has {len(challenger_moves)}"
        )
    if not creator_moves:
        raise ValueError("At least one round is required")

    outcomes = []
    creator_wins = challenger_wins = draws = 0

    for index, (a, b) in enumerate(zip(creator_moves, challenger_moves), start=1):
        winner = judge_round(a, b)
        outcomes.append(RoundOutcome(round=index, creator_move=a, challenger_move=b, winner=winner))
        if winner == RoundWinner.CREATOR:
            creator_wins += 1
        elif winner == RoundWinner.CHALLENGER:
            challenger_wins += 1
        else:
            draws += 1

    if creator_wins > challenger_wins:
        overall = Outcome.CREATOR
    elif challenger_wins > creator_wins:
        overall = Outcome.CHALLENGER
    else:
        overall = Outcome.DRAW

    return TallyResult(
        outcomes=outcomes,
        creator_wins=creator_wins,
        challenger_wins=challenger_wins,
        draws=draws,
        overall=overall,
    )

import itertools

import pytest

from rps_bot.database.models import Move, Outcome, RoundWinner
from rps_bot.utils.rps import judge_round, tally_outcome, RoundOutcome

R, P, S = Move.ROCK, Move.PAPER, Move.SCISSORS

_MIRROR = {
    RoundWinner.CREATOR: RoundWinner.CHALLENGER,
    RoundWinner.CHALLENGER: RoundWinner.CREATOR,
    RoundWinner.DRAW: RoundWinner.DRAW,
}


@pytest.mark.parametrize("a,b,expected", [
    (R, S, RoundWinner.CREATOR),
    (S, P, RoundWinner.CREATOR),
    (P, R, RoundWinner.CREATOR),
    (S, R, RoundWinner.CHALLENGER),
    (P, S, RoundWinner.CHALLENGER),
    (R, P, RoundWinner.CHALLENGER),
    (R, R, RoundWinner.DRAW),
    (P, P, RoundWinner.DRAW),
    (S, S, RoundWinner.DRAW),
])
def test_judge_round(a, b, expected):
    assert judge_round(a, b) == expected


def test_judge_is_antisymmetric():
    for a, b in itertools.product(list(Move), repeat=2):
        assert judge_round(b, a) == _MIRROR[judge_round(a, b)]


def test_tally_counts_add_up_for_all_three_round_games():
    for creator in itertools.product(list(Move), repeat=3):
        for challenger in itertools.product(list(Move), repeat=3):
            tally = tally_outcome(creator, challenger)
            assert tally.creator_wins + tally.challenger_wins + tally.draws == 3
            if tally.creator_wins > tally.challenger_wins:
                assert tally.overall == Outcome.CREATOR
            elif tally.challenger_wins > tally.creator_wins:
                assert tally.overall == Outcome.CHALLENGER
            else:
                assert tally.overall == Outcome.DRAW


def test_tally_two_one_creator_win():
    tally = tally_outcome([R, P, R], [S, R, P])
    assert (tally.creator_wins, tally.challenger_wins, tally.draws) == (2, 1, 0)
    assert tally.overall == Outcome.CREATOR
    assert [o.round for o in tally.outcomes] == [1, 2, 3]
    assert tally.outcomes[2].winner == RoundWinner.CHALLENGER


def test_tally_one_one_with_draw_is_draw():
    tally = tally_outcome([R, P, S], [S, S, S])
    assert (tally.creator_wins, tally.challenger_wins, tally.draws) == (1, 1, 1)
    assert tally.overall == Outcome.DRAW


def test_tally_all_draws_is_draw():
    assert tally_outcome([R], [R]).overall == Outcome.DRAW


def test_tally_rejects_length_mismatch():
    with pytest.raises(ValueError):
        tally_outcome([R, P], [R])


def test_tally_rejects_empty():
    with pytest.raises(ValueError):
        tally_outcome([], [])


def test_round_outcome_dict_shape():
    outcome = RoundOutcome(round=1, creator_move=R, challenger_move=S, winner=RoundWinner.CREATOR)
    data = outcome.to_dict()
    assert data == {'round': 1, 'creator_move': 'R', 'challenger_move': 'S', 'winner': 'creator'}
    assert RoundOutcome.from_dict(data) == outcome

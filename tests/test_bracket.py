"""Tests for bracket seeding, structure and advancement arithmetic."""

import random
from types import SimpleNamespace

import pytest

from tourneyflow.bracket import (
    bracket_layout,
    create_single_elimination_pairs,
    generate_seeding_order,
    is_final_match,
    is_power_of_two,
    matches_in_round,
    next_slot,
    round_name,
    total_rounds,
)
from tourneyflow.errors import InvalidStateError, InvalidTeamCountError


def make_match(round_number, seed, standing_id=1):
    return SimpleNamespace(round=round_number, seed=seed, standing_id=standing_id)


def test_is_power_of_two():
    assert [n for n in range(0, 33) if is_power_of_two(n)] == [1, 2, 4, 8, 16, 32]


def test_seeding_order_for_eight():
    assert generate_seeding_order(8) == [1, 8, 4, 5, 2, 7, 3, 6]


def test_first_round_pairs_use_standard_seeding():
    teams = [101, 102, 103, 104, 105, 106, 107, 108]  # seed order

    pairs = create_single_elimination_pairs(teams)

    assert pairs == [(101, 108), (104, 105), (102, 107), (103, 106)]


@pytest.mark.parametrize("size", [2, 4, 8, 16, 32, 64])
def test_seeding_order_is_a_permutation(size):
    order = generate_seeding_order(size)
    assert sorted(order) == list(range(1, size + 1))


@pytest.mark.parametrize("size", [4, 8, 16, 32])
def test_top_two_seeds_are_in_opposite_halves(size):
    order = generate_seeding_order(size)
    half = size // 2
    assert 1 in order[:half]
    assert 2 in order[half:]


@pytest.mark.parametrize("size", [4, 8, 16, 32])
def test_pair_seeds_sum_to_size_plus_one(size):
    order = generate_seeding_order(size)
    for i in range(0, size, 2):
        assert order[i] + order[i + 1] == size + 1


@pytest.mark.parametrize("count", [0, 1, 3, 5, 6, 7, 12, 24])
def test_non_power_of_two_is_rejected(count):
    with pytest.raises(InvalidTeamCountError) as exc_info:
        create_single_elimination_pairs(list(range(count)))
    assert exc_info.value.team_count == count
    assert isinstance(exc_info.value, InvalidStateError)


def test_eight_team_structure():
    assert total_rounds(8) == 3
    assert [matches_in_round(8, r) for r in (1, 2, 3)] == [4, 2, 1]

    layout = bracket_layout(8)
    assert len(layout) == 7
    assert layout[:4] == [(1, 1), (1, 2), (1, 3), (1, 4)]
    assert layout[-1] == (3, 1)


def test_matches_in_round_out_of_range():
    with pytest.raises(ValueError):
        matches_in_round(8, 4)


class TestAdvancement:
    """Winner placement into the next round."""

    def test_parity_rule(self):
        for seed in range(1, 65):
            next_round, next_seed, slot = next_slot(2, seed)
            assert next_round == 3
            assert next_seed == (seed + 1) // 2
            assert slot == ("a" if seed % 2 == 1 else "b")

    def test_seed_one_goes_to_team_a_of_seed_one(self):
        assert next_slot(1, 1) == (2, 1, "a")

    def test_siblings_meet_in_the_same_match(self):
        assert next_slot(1, 3)[:2] == next_slot(1, 4)[:2] == (2, 2)

    def test_invalid_position(self):
        with pytest.raises(ValueError):
            next_slot(1, 0)


class TestFinalDetection:
    def test_final_is_max_round_seed_one(self):
        matches = [make_match(r, s) for r, s in bracket_layout(8)]
        finals = [m for m in matches if is_final_match(m, matches)]
        assert len(finals) == 1
        assert (finals[0].round, finals[0].seed) == (3, 1)

    def test_independent_of_match_order(self):
        matches = [make_match(r, s) for r, s in bracket_layout(16)]
        rng = random.Random(3)
        for _ in range(10):
            shuffled = matches[:]
            rng.shuffle(shuffled)
            finals = [m for m in shuffled if is_final_match(m, shuffled)]
            assert [(m.round, m.seed) for m in finals] == [(4, 1)]

    def test_semifinal_is_not_final(self):
        matches = [make_match(r, s) for r, s in bracket_layout(4)]
        assert not is_final_match(matches[0], matches)

    def test_group_match_is_never_final(self):
        group_match = make_match(None, None)
        assert not is_final_match(group_match, [group_match])


def test_round_names():
    assert [round_name(r, 4) for r in (1, 2, 3, 4)] == ["Round of 16", "Quarterfinal", "Semifinal", "Final"]

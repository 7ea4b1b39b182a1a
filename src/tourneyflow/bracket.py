"""Single-elimination bracket arithmetic.

Seeding, round structure, winner advancement and final-match detection.
Everything here is a pure function over plain values.

Rounds are numbered from 1 (first round) up to ``total_rounds``. Inside a
round, matches are numbered by ``seed`` starting at 1; the two matches with
seeds ``2k-1`` and ``2k`` feed match ``k`` of the next round.
"""

import math
from typing import Iterable, Optional, Sequence

from tourneyflow.errors import InvalidTeamCountError


def is_power_of_two(n: int) -> bool:
    """Return True when n is a positive power of two.

    Examples:
        >>> is_power_of_two(8)
        True
        >>> is_power_of_two(6)
        False
        >>> is_power_of_two(0)
        False
    """
    return n > 0 and (n & (n - 1)) == 0


def validate_team_count(team_count: int) -> None:
    """Raise InvalidTeamCountError unless team_count is a power of two >= 2."""
    if team_count < 2 or not is_power_of_two(team_count):
        raise InvalidTeamCountError(team_count)


def total_rounds(team_count: int) -> int:
    """Number of rounds needed for a bracket of team_count teams.

    Examples:
        >>> total_rounds(8)
        3
        >>> total_rounds(2)
        1
    """
    validate_team_count(team_count)
    return int(math.log2(team_count))


def matches_in_round(team_count: int, round_number: int) -> int:
    """Number of matches played in a given round.

    Examples:
        >>> matches_in_round(8, 1)
        4
        >>> matches_in_round(8, 3)
        1
    """
    rounds = total_rounds(team_count)
    if round_number < 1 or round_number > rounds:
        raise ValueError(f"Round must be between 1 and {rounds}, got {round_number}")
    return 2 ** (rounds - round_number)


def generate_seeding_order(team_count: int) -> list[int]:
    """Return seed numbers in bracket order.

    Consecutive pairs of the returned list meet in round 1. The order is built
    so that seeds 1 and 2 sit in opposite halves and can only meet in the
    final, seeds 1-4 in different quarters, and so on.

    For 8 teams:
        [1, 8, 4, 5, 2, 7, 3, 6]  ->  1v8, 4v5, 2v7, 3v6

    Args:
        team_count: Power of two >= 2

    Returns:
        List of 1-based seeds in bracket position order

    Raises:
        InvalidTeamCountError: If team_count is not a power of two >= 2
    """
    validate_team_count(team_count)

    order = [1]
    while len(order) < team_count:
        size = len(order) * 2
        expanded = []
        for seed in order:
            # Each seed is paired with its mirror in the doubled bracket
            expanded.append(seed)
            expanded.append(size + 1 - seed)
        order = expanded
    return order


def create_single_elimination_pairs(ordered_teams: Sequence[int]) -> list[tuple[int, int]]:
    """Pair teams for the first round using standard bracket seeding.

    Args:
        ordered_teams: Team ids ordered by seed (index 0 = seed 1)

    Returns:
        List of (team_a, team_b) tuples; the tuple at index i is the round 1
        match with seed i + 1

    Raises:
        InvalidTeamCountError: If the number of teams is not a power of two
    """
    order = generate_seeding_order(len(ordered_teams))
    pairs = []
    for i in range(0, len(order), 2):
        team_a = ordered_teams[order[i] - 1]
        team_b = ordered_teams[order[i + 1] - 1]
        pairs.append((team_a, team_b))
    return pairs


def bracket_layout(team_count: int) -> list[tuple[int, int]]:
    """Return (round, seed) for every match of the bracket, round by round.

    Examples:
        >>> bracket_layout(4)
        [(1, 1), (1, 2), (2, 1)]
    """
    rounds = total_rounds(team_count)
    layout = []
    for round_number in range(1, rounds + 1):
        for seed in range(1, 2 ** (rounds - round_number) + 1):
            layout.append((round_number, seed))
    return layout


def next_slot(round_number: int, seed: int) -> tuple[int, int, str]:
    """Where the winner of a match goes next.

    The winner of an odd-seeded match takes slot "a" of the next match, the
    winner of an even-seeded match takes slot "b".

    Examples:
        >>> next_slot(1, 1)
        (2, 1, 'a')
        >>> next_slot(1, 4)
        (2, 2, 'b')
        >>> next_slot(2, 3)
        (3, 2, 'a')

    Returns:
        (next_round, next_seed, slot) with slot "a" or "b"
    """
    if round_number < 1 or seed < 1:
        raise ValueError(f"Round and seed must be >= 1, got round={round_number} seed={seed}")
    next_seed = math.ceil(seed / 2)
    slot = "a" if seed % 2 == 1 else "b"
    return round_number + 1, next_seed, slot


def max_round(matches: Iterable) -> Optional[int]:
    """Highest round among matches that have one (None for group matches only)."""
    rounds = [m.round for m in matches if m.round is not None]
    return max(rounds) if rounds else None


def is_final_match(match, matches: Iterable) -> bool:
    """True when ``match`` is the championship match of its standing.

    A match is the final when it sits in the highest round present in the
    standing and has seed 1. ``matches`` must be the live list of matches of
    the same standing; the answer does not depend on their order.
    """
    if match.round is None or match.seed is None:
        return False
    return match.round == max_round(matches) and match.seed == 1


def round_name(round_number: int, rounds: int) -> str:
    """Human readable round name.

    Examples:
        >>> round_name(3, 3)
        'Final'
        >>> round_name(1, 3)
        'Quarterfinal'
        >>> round_name(1, 5)
        'Round of 32'
    """
    remaining = rounds - round_number
    if remaining == 0:
        return "Final"
    if remaining == 1:
        return "Semifinal"
    if remaining == 2:
        return "Quarterfinal"
    return f"Round of {2 ** (remaining + 1)}"

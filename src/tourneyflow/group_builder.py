"""Group builder: team distribution and round robin fixtures."""

import random
from typing import Optional, Sequence

from tourneyflow.errors import InvalidStateError


def calculate_group_sizes(num_teams: int, num_groups: int) -> list[int]:
    """Balanced group sizes; the first groups take the extra teams.

    Examples:
        >>> calculate_group_sizes(10, 3)
        [4, 3, 3]
        >>> calculate_group_sizes(8, 2)
        [4, 4]

    Raises:
        InvalidStateError: If there are fewer teams than groups
    """
    if num_groups < 1:
        raise ValueError(f"Number of groups must be at least 1, got {num_groups}")
    if num_teams < num_groups:
        raise InvalidStateError(
            f"Not enough teams to fill the groups: {num_teams} teams for {num_groups} groups"
        )
    base, remainder = divmod(num_teams, num_groups)
    return [base + 1 if i < remainder else base for i in range(num_groups)]


def distribute_teams_into_groups(
    team_ids: Sequence[int], num_groups: int, rng: Optional[random.Random] = None
) -> list[list[int]]:
    """Shuffle teams and deal them into balanced groups.

    Args:
        team_ids: Registered team ids
        num_groups: Number of groups to fill
        rng: Random generator (seed it for a reproducible draw)

    Returns:
        List of lists, each containing the team ids of one group
    """
    rng = rng or random.Random()
    sizes = calculate_group_sizes(len(team_ids), num_groups)

    shuffled = list(team_ids)
    rng.shuffle(shuffled)

    groups = []
    start = 0
    for size in sizes:
        groups.append(shuffled[start:start + size])
        start += size
    return groups


def generate_round_robin_fixtures(group_size: int) -> list[tuple[int, int]]:
    """Generate round robin fixtures using Order A (strategic order).

    Every unordered pair of positions plays exactly once, so a group of n
    teams has n(n-1)/2 fixtures. For 3, 4 and 5 team groups the order puts the
    match most likely to decide the group last.

    For 4 teams:
        Round 1: (1,3), (2,4)
        Round 2: (1,2), (3,4)
        Round 3: (1,4), (2,3) <- Decides 2nd place

    Args:
        group_size: Number of teams in the group (at least 2)

    Returns:
        List of (position1, position2) tuples (1-indexed), ordered by round
    """
    if group_size < 2:
        raise ValueError(f"Group size must be at least 2, got {group_size}")

    if group_size == 4:
        return [
            (1, 3),  # Round 1
            (2, 4),
            (1, 2),  # Round 2
            (3, 4),
            (1, 4),  # Round 3
            (2, 3),
        ]
    elif group_size == 3:
        return [
            (1, 3),  # Round 1
            (1, 2),  # Round 2
            (2, 3),  # Round 3
        ]
    elif group_size == 5:
        # Berger table: nobody plays two consecutive matches
        return [
            (1, 4),  # Round 1
            (2, 5),
            (3, 4),  # Round 2
            (1, 5),
            (2, 3),  # Round 3
            (4, 5),
            (1, 3),  # Round 4
            (2, 4),
            (3, 5),  # Round 5
            (1, 2),
        ]
    else:
        fixtures = []
        for i in range(1, group_size + 1):
            for j in range(i + 1, group_size + 1):
                fixtures.append((i, j))
        return fixtures


def group_name(index: int) -> str:
    """Group label for a 0-based index: A, B, ..., Z, AA, AB, ...

    Examples:
        >>> group_name(0)
        'Group A'
        >>> group_name(27)
        'Group AB'
    """
    letters = ""
    n = index
    while True:
        letters = chr(ord("A") + n % 26) + letters
        n = n // 26 - 1
        if n < 0:
            break
    return f"Group {letters}"


def teams_advancing_per_group(bracket_size: int, num_groups: int) -> int:
    """Number of teams each group sends to the bracket.

    The bracket is filled evenly from every group; any remainder of the
    division is left to the advancement remainder policy.

    Examples:
        >>> teams_advancing_per_group(8, 4)
        2
        >>> teams_advancing_per_group(8, 3)
        2
    """
    if num_groups < 1:
        raise ValueError(f"Number of groups must be at least 1, got {num_groups}")
    return bracket_size // num_groups

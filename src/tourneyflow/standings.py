"""Group ranking, bracket qualification and final placements.

Group entries are ranked by:
1. Points (descending)
2. Wins (descending)
3. Losses (ascending)
4. Team id (ascending, keeps the order stable)

Final placements of a bracket use competition ranking: champion 1st, runner-up
2nd, and teams knocked out in the same round share a placement
(1, 2, 3, 3, 5, 5, 5, 5 for an 8-team bracket).
"""

from collections import defaultdict
from typing import Iterable, Sequence

from tourneyflow.bracket import is_final_match, max_round
from tourneyflow.errors import IntegrityViolationError
from tourneyflow.models import TeamPlacement

REMAINDER_POLICIES = ("drop", "best_remaining")


def _record_key(entry):
    return (-entry.points, -entry.wins, entry.losses, entry.team_id)


def rank_group_entries(entries: Iterable) -> list:
    """Sort the entries of one group from first to last place.

    Args:
        entries: Objects with team_id, points, wins and losses attributes

    Returns:
        New list ordered by ranking
    """
    return sorted(entries, key=_record_key)


def select_advancing_teams(
    ranked_groups: Sequence[Sequence],
    per_group: int,
    bracket_size: int,
    remainder_policy: str = "drop",
) -> tuple[list[int], list[int]]:
    """Pick the teams that move from the groups into the bracket.

    The top ``per_group`` teams of every group qualify. They are returned in
    seed order: all group winners first (best record first), then all
    runners-up, and so on. With the ``best_remaining`` policy the open bracket
    slots left by an uneven division are filled with the best of the next
    placed teams.

    Args:
        ranked_groups: One ranked entry list per group (see rank_group_entries)
        per_group: Teams each group sends (bracket_size // number of groups)
        bracket_size: Target number of bracket teams
        remainder_policy: "drop" or "best_remaining"

    Returns:
        (advancing team ids in seed order, eliminated team ids)
    """
    if remainder_policy not in REMAINDER_POLICIES:
        raise ValueError(
            f"remainder_policy must be one of {', '.join(REMAINDER_POLICIES)}, got '{remainder_policy}'"
        )

    # (position, record) for every entry so places can be compared across groups
    placed = []
    for group in ranked_groups:
        for position, entry in enumerate(group, start=1):
            placed.append((position, entry))
    placed.sort(key=lambda item: (item[0],) + _record_key(item[1]))

    advancing = [entry.team_id for position, entry in placed if position <= per_group]

    if remainder_policy == "best_remaining":
        open_slots = bracket_size - len(advancing)
        leftovers = [entry.team_id for position, entry in placed if position > per_group]
        advancing.extend(leftovers[:max(open_slots, 0)])

    advancing_set = set(advancing)
    eliminated = [entry.team_id for _, entry in placed if entry.team_id not in advancing_set]
    return advancing, eliminated


def calculate_bracket_placements(matches: Sequence) -> list[TeamPlacement]:
    """Compute final placements from the matches of a finished bracket.

    Args:
        matches: All matches of the bracket standing (round, seed, winner_id
            and loser_id attributes); every match must have a winner

    Returns:
        Placements ordered from champion down

    Raises:
        IntegrityViolationError: If the final has not been decided
    """
    final = next((m for m in matches if is_final_match(m, matches)), None)
    if final is None or final.winner_id is None or final.loser_id is None:
        raise IntegrityViolationError("Cannot compute placements: bracket final has no result")

    last_round = max_round(matches)
    placements = [
        TeamPlacement(team_id=final.winner_id, placement=1),
        TeamPlacement(team_id=final.loser_id, placement=2, eliminated_in_round=last_round),
    ]

    losers_by_round = defaultdict(list)
    for match in matches:
        if match is final or match.loser_id is None:
            continue
        losers_by_round[match.round].append(match)

    next_placement = 3
    for round_number in sorted(losers_by_round, reverse=True):
        round_matches = sorted(losers_by_round[round_number], key=lambda m: m.seed)
        for match in round_matches:
            placements.append(
                TeamPlacement(
                    team_id=match.loser_id,
                    placement=next_placement,
                    eliminated_in_round=round_number,
                )
            )
        next_placement += len(round_matches)

    return placements


def calculate_group_placements(ranked_groups: Sequence[Sequence]) -> list[TeamPlacement]:
    """Final placements for a tournament decided by groups only.

    Teams are ordered by group position first and by record across groups
    second, then numbered 1..n.
    """
    placed = []
    for group in ranked_groups:
        for position, entry in enumerate(group, start=1):
            placed.append((position, entry))
    placed.sort(key=lambda item: (item[0],) + _record_key(item[1]))

    return [
        TeamPlacement(team_id=entry.team_id, placement=i)
        for i, (_, entry) in enumerate(placed, start=1)
    ]

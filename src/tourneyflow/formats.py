"""Match and tournament format tables."""

from typing import Union

from tourneyflow.models import BestOf, Format

# Number of games created for a match of each format
TOTAL_GAMES = {
    BestOf.BO1: 1,
    BestOf.BO3: 3,
    BestOf.BO5: 5,
}

# Game wins needed to take the match
GAMES_TO_WIN = {
    BestOf.BO1: 1,
    BestOf.BO3: 2,
    BestOf.BO5: 3,
}

# (has group stage, has bracket stage)
_FORMAT_STAGES = {
    Format.BRACKET_ONLY: (False, True),
    Format.GROUPS_ONLY: (True, False),
    Format.GROUPS_AND_BRACKET: (True, True),
}


def parse_best_of(value: Union[str, BestOf]) -> BestOf:
    """Parse a BestOf value, accepting "Bo3", "bo3" or "3".

    Examples:
        >>> parse_best_of("bo5")
        <BestOf.BO5: 'Bo5'>
        >>> parse_best_of("1")
        <BestOf.BO1: 'Bo1'>

    Raises:
        ValueError: If the value is not a known format
    """
    if isinstance(value, BestOf):
        return value
    text = str(value).strip().lower()
    if text.isdigit():
        text = f"bo{text}"
    for best_of in BestOf:
        if best_of.value.lower() == text:
            return best_of
    raise ValueError(f"Unknown best-of format: {value!r} (expected Bo1, Bo3 or Bo5)")


def total_games(best_of: BestOf) -> int:
    """Number of games pre-created for a match."""
    return TOTAL_GAMES[BestOf(best_of)]


def games_to_win(best_of: BestOf) -> int:
    """Game wins that decide a match."""
    return GAMES_TO_WIN[BestOf(best_of)]


def requires_groups(fmt: Format) -> bool:
    return _FORMAT_STAGES[Format(fmt)][0]


def requires_bracket(fmt: Format) -> bool:
    return _FORMAT_STAGES[Format(fmt)][1]

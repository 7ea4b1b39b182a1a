"""YAML tournament fixture import.

Fixture format:

    name: Spring Cup
    format: groups_and_bracket      # bracket_only | groups_only | groups_and_bracket
    group_count: 2                  # formats with a group stage
    bracket_size: 4                 # optional, defaults to the number of teams
    teams:
      - Red Dragons
      - Blue Sharks
      - ...
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from tourneyflow.formats import requires_groups
from tourneyflow.models import Format
from tourneyflow.storage import TournamentORM, UnitOfWork

logger = logging.getLogger(__name__)


class ImportDataError(Exception):
    """Error in a tournament fixture file."""
    pass


def validate_fixture(data: Any) -> dict[str, Any]:
    """Validate a parsed fixture.

    Args:
        data: Parsed YAML content

    Returns:
        Dictionary with name, format, teams, group_count and bracket_size

    Raises:
        ImportDataError: If a field is missing or invalid
    """
    if not isinstance(data, dict):
        raise ImportDataError("Fixture must be a mapping")

    for required in ("name", "format", "teams"):
        if required not in data:
            raise ImportDataError(f"Missing required field '{required}'")

    validated = {}

    name = str(data["name"]).strip()
    if not name:
        raise ImportDataError("'name' cannot be empty")
    validated["name"] = name

    try:
        validated["format"] = Format(str(data["format"]).strip().lower())
    except ValueError:
        options = ", ".join(f.value for f in Format)
        raise ImportDataError(f"'format' must be one of {options}, got '{data['format']}'")

    teams = data["teams"]
    if not isinstance(teams, list) or not teams:
        raise ImportDataError("'teams' must be a non-empty list of team names")
    names = [str(team).strip() for team in teams]
    if any(not n for n in names):
        raise ImportDataError("Team names cannot be empty")
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ImportDataError(f"Duplicate team names: {', '.join(duplicates)}")
    validated["teams"] = names

    group_count = data.get("group_count", 0)
    if requires_groups(validated["format"]):
        if not isinstance(group_count, int) or group_count < 1:
            raise ImportDataError("'group_count' must be a positive integer for formats with groups")
        if group_count > len(names):
            raise ImportDataError(f"'group_count' ({group_count}) exceeds the number of teams ({len(names)})")
    validated["group_count"] = group_count if requires_groups(validated["format"]) else 0

    bracket_size = data.get("bracket_size")
    if bracket_size is not None and (not isinstance(bracket_size, int) or bracket_size < 2):
        raise ImportDataError("'bracket_size' must be an integer >= 2")
    validated["bracket_size"] = bracket_size

    return validated


def load_fixture(path: str) -> dict[str, Any]:
    """Read and validate a fixture file.

    Raises:
        ImportDataError: If the file is missing, not YAML, or invalid
    """
    fixture_file = Path(path)
    if not fixture_file.exists():
        raise ImportDataError(f"Fixture file not found: {path}")
    try:
        with open(fixture_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ImportDataError(f"Invalid YAML in fixture file: {e}")
    return validate_fixture(data)


def import_tournament(uow: UnitOfWork, fixture: dict[str, Any]) -> TournamentORM:
    """Create teams, tournament, registrations and standings from a fixture.

    Existing teams with the same name are reused. Changes are staged in the
    unit of work; the caller commits.
    """
    team_ids = [uow.teams.get_or_create(name).id for name in fixture["teams"]]
    tournament = uow.tournaments.create_with_standings(
        fixture["name"],
        fixture["format"],
        team_ids,
        group_count=fixture["group_count"],
        bracket_size=fixture["bracket_size"],
    )
    logger.info("Imported tournament '%s' with %d teams", fixture["name"], len(team_ids))
    return tournament

"""Shared fixtures: temporary database, recording notifier, tournament helpers."""

import threading

import pytest

from tourneyflow.config_loader import validate_config
from tourneyflow.models import Format, StandingType
from tourneyflow.notifier import Notifier
from tourneyflow.service import TournamentService
from tourneyflow.storage import DatabaseManager, unit_of_work


class RecordingNotifier(Notifier):
    """Notifier that keeps every call in memory."""

    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def _record(self, kind, tournament_id, entity_id, actor_name):
        with self._lock:
            self.calls.append((kind, tournament_id, entity_id, actor_name))

    def notify_game_changed(self, tournament_id, game_id, actor_name):
        self._record("game", tournament_id, game_id, actor_name)

    def notify_match_changed(self, tournament_id, match_id, actor_name):
        self._record("match", tournament_id, match_id, actor_name)

    def notify_standing_changed(self, tournament_id, standing_id, actor_name):
        self._record("standing", tournament_id, standing_id, actor_name)

    def notify_tournament_changed(self, tournament_id, entity_id, actor_name):
        self._record("tournament", tournament_id, entity_id, actor_name)

    def kinds(self):
        return sorted(call[0] for call in self.calls)


class TournamentHelper:
    """Builds tournaments and plays matches against a real database."""

    def __init__(self, db, service):
        self.db = db
        self.service = service

    def create(self, fmt, team_count, group_count=0, bracket_size=None, name="Test Cup"):
        """Create teams and a tournament; return the tournament id."""
        with unit_of_work(self.db) as uow:
            team_ids = [uow.teams.create(f"{name} Team {i}").id for i in range(1, team_count + 1)]
            tournament = uow.tournaments.create_with_standings(
                name, Format(fmt), team_ids, group_count=group_count, bracket_size=bracket_size
            )
            uow.commit()
            return tournament.id

    def tournament(self, tournament_id):
        with unit_of_work(self.db) as uow:
            return uow.tournaments.get_by_id(tournament_id)

    def team_ids(self, tournament_id):
        with unit_of_work(self.db) as uow:
            return [team.id for team in uow.teams.get_by_tournament(tournament_id)]

    def standings(self, tournament_id, standing_type=None):
        with unit_of_work(self.db) as uow:
            return uow.standings.get_by_tournament(tournament_id, standing_type)

    def groups(self, tournament_id):
        return self.standings(tournament_id, StandingType.GROUP)

    def bracket(self, tournament_id):
        brackets = self.standings(tournament_id, StandingType.BRACKET)
        return brackets[0] if brackets else None

    def matches(self, standing_id):
        with unit_of_work(self.db) as uow:
            return uow.matches.get_by_standing(standing_id)

    def match(self, match_id):
        with unit_of_work(self.db) as uow:
            return uow.matches.get_by_id(match_id)

    def match_at(self, standing_id, round_number, seed):
        with unit_of_work(self.db) as uow:
            return uow.matches.get_by_round_and_seed(standing_id, round_number, seed)

    def games(self, match_id):
        with unit_of_work(self.db) as uow:
            return uow.games.get_by_match(match_id)

    def group_entries(self, standing_id):
        with unit_of_work(self.db) as uow:
            return uow.group_entries.get_by_standing(standing_id)

    def bracket_entries(self, standing_id):
        with unit_of_work(self.db) as uow:
            return uow.bracket_entries.get_by_standing(standing_id)

    def registrations(self, tournament_id):
        with unit_of_work(self.db) as uow:
            return uow.registrations.get_by_tournament(tournament_id)

    def play_match(self, match_id, winner_id):
        """Report games for ``winner_id`` until the match is decided."""
        result = None
        for game in self.games(match_id):
            result = self.service.process_game_result(game.id, winner_id)
            assert result.success, result.message
            if result.match_finished:
                return result
        raise AssertionError(f"Match {match_id} was not decided")

    def play_standing(self, standing_id, pick_winner=None):
        """Play every open match of a standing; team A wins unless pick_winner says otherwise."""
        pick_winner = pick_winner or (lambda match: match.team_a_id)
        result = None
        for match in self.matches(standing_id):
            if match.winner_id is None:
                result = self.play_match(match.id, pick_winner(match))
        return result

    def play_bracket(self, standing_id, pick_winner=None):
        """Play the bracket round by round, re-reading filled slots."""
        pick_winner = pick_winner or (lambda match: match.team_a_id)
        result = None
        rounds = max(m.round for m in self.matches(standing_id))
        for round_number in range(1, rounds + 1):
            for match in self.matches(standing_id):
                if match.round == round_number and match.winner_id is None:
                    result = self.play_match(match.id, pick_winner(match))
        return result


@pytest.fixture
def db(tmp_path):
    """File backed SQLite database with all tables created."""
    manager = DatabaseManager(str(tmp_path / "tourneyflow_test.sqlite"))
    manager.create_tables()
    return manager


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def config(db):
    return validate_config({"database": {"path": str(db.db_path)}, "random_seed": 7})


@pytest.fixture
def service(db, config, notifier):
    svc = TournamentService(db, config, notifier=notifier)
    yield svc
    svc.close()


@pytest.fixture
def helper(db, service):
    return TournamentHelper(db, service)

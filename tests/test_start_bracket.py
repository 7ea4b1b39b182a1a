"""Tests for starting the bracket stage."""

import pytest

from tourneyflow.config_loader import validate_config
from tourneyflow.errors import ConflictError
from tourneyflow.models import Format, TeamStatus, TournamentStatus
from tourneyflow.rollback import StageRollback
from tourneyflow.service import TournamentService
from tourneyflow.start_bracket import GenerateBracketMatches


def finish_groups(helper, tournament_id):
    assert helper.service.start_group_stage(tournament_id).success
    for group in helper.groups(tournament_id):
        helper.play_standing(group.id, pick_winner=lambda m: min(m.team_a_id, m.team_b_id))
    assert helper.tournament(tournament_id).status == TournamentStatus.GROUPS_COMPLETED.value


class TestBracketOnly:
    def test_eight_teams_three_rounds(self, helper):
        tournament_id = helper.create(Format.BRACKET_ONLY, 8)

        result = helper.service.start_bracket_stage(tournament_id)

        assert result.success, result.message
        assert result.message == "Bracket stage started successfully with 8 teams across 3 rounds"
        assert result.total_rounds == 3
        assert result.teams_advanced == 8
        assert result.new_status == TournamentStatus.BRACKET_IN_PROGRESS

        bracket = helper.bracket(tournament_id)
        assert bracket.is_seeded
        matches = helper.matches(bracket.id)
        assert [(m.round, m.seed) for m in matches] == [
            (1, 1), (1, 2), (1, 3), (1, 4), (2, 1), (2, 2), (3, 1)
        ]
        first_round = [m for m in matches if m.round == 1]
        assert sorted(t for m in first_round for t in (m.team_a_id, m.team_b_id)) == sorted(
            helper.team_ids(tournament_id)
        )
        assert all(m.team_a_id is None and m.team_b_id is None for m in matches if m.round > 1)
        assert all(len(helper.games(m.id)) == 3 for m in matches)

    def test_bracket_entries_created(self, helper):
        tournament_id = helper.create(Format.BRACKET_ONLY, 4)
        helper.service.start_bracket_stage(tournament_id)

        entries = helper.bracket_entries(helper.bracket(tournament_id).id)

        assert sorted(e.team_id for e in entries) == sorted(helper.team_ids(tournament_id))
        assert all(e.status == TeamStatus.COMPETING.value and e.current_round == 1 for e in entries)

    def test_bracket_best_of_from_config(self, db, notifier, helper):
        config = validate_config({"database": {"path": str(db.db_path)}, "bracket_best_of": "Bo5"})
        service = TournamentService(db, config, notifier=notifier)
        helper.service = service
        try:
            tournament_id = helper.create(Format.BRACKET_ONLY, 2)
            assert service.start_bracket_stage(tournament_id).success
            final = helper.matches(helper.bracket(tournament_id).id)[0]
            assert len(helper.games(final.id)) == 5
        finally:
            service.close()

    def test_six_teams_rejected_and_rolled_back(self, helper):
        tournament_id = helper.create(Format.BRACKET_ONLY, 6)

        result = helper.service.start_bracket_stage(tournament_id)

        assert not result.success
        assert result.error == "invalid_team_count"
        assert not result.retriable
        assert helper.tournament(tournament_id).status == TournamentStatus.SETUP.value
        bracket = helper.bracket(tournament_id)
        assert not bracket.is_seeded
        assert helper.matches(bracket.id) == []
        assert helper.bracket_entries(bracket.id) == []

    def test_groups_only_has_no_bracket(self, helper):
        tournament_id = helper.create(Format.GROUPS_ONLY, 4, group_count=1)

        result = helper.service.start_bracket_stage(tournament_id)

        assert not result.success
        assert result.error == "invalid_state"

    def test_starting_twice(self, helper):
        tournament_id = helper.create(Format.BRACKET_ONLY, 4)
        helper.service.start_bracket_stage(tournament_id)

        result = helper.service.start_bracket_stage(tournament_id)

        assert not result.success
        assert result.error == "invalid_transition"
        assert len(helper.matches(helper.bracket(tournament_id).id)) == 3

    def test_conflict_leaves_setup_even_when_cleanup_fails(self, helper, monkeypatch):
        tournament_id = helper.create(Format.BRACKET_ONLY, 4)

        def conflict(step, context):
            raise ConflictError("Bracket was modified concurrently")

        def broken_cleanup(*args, **kwargs):
            raise RuntimeError("database went away")

        monkeypatch.setattr(GenerateBracketMatches, "execute", conflict)
        monkeypatch.setattr(StageRollback, "undo_failed_start", broken_cleanup)

        result = helper.service.start_bracket_stage(tournament_id)

        assert not result.success
        assert result.error == "conflict"
        assert result.retriable
        assert helper.tournament(tournament_id).status == TournamentStatus.SETUP.value
        bracket = helper.bracket(tournament_id)
        assert not bracket.is_seeded
        assert helper.matches(bracket.id) == []
        assert helper.bracket_entries(bracket.id) == []

        monkeypatch.undo()
        retry = helper.service.start_bracket_stage(tournament_id)

        assert retry.success, retry.message
        assert len(helper.matches(bracket.id)) == 3


class TestAfterGroups:
    def test_requires_completed_groups(self, helper):
        tournament_id = helper.create(Format.GROUPS_AND_BRACKET, 8, group_count=2, bracket_size=4)
        helper.service.start_group_stage(tournament_id)

        result = helper.service.start_bracket_stage(tournament_id)

        assert not result.success
        assert result.error == "invalid_transition"
        assert helper.tournament(tournament_id).status == TournamentStatus.GROUPS_IN_PROGRESS.value

    def test_group_winners_meet_runners_up(self, helper):
        tournament_id = helper.create(Format.GROUPS_AND_BRACKET, 8, group_count=2, bracket_size=4)
        finish_groups(helper, tournament_id)

        result = helper.service.start_bracket_stage(tournament_id)

        assert result.success, result.message
        assert result.teams_advanced == 4
        assert result.total_rounds == 2

        group_a, group_b = helper.groups(tournament_id)
        top_a = [e.team_id for e in sorted(helper.group_entries(group_a.id), key=lambda e: -e.points)][:2]
        top_b = [e.team_id for e in sorted(helper.group_entries(group_b.id), key=lambda e: -e.points)][:2]
        semifinals = [m for m in helper.matches(helper.bracket(tournament_id).id) if m.round == 1]
        pairings = {frozenset((m.team_a_id, m.team_b_id)) for m in semifinals}
        # Seeds 1v4 and 2v3: each group winner faces the other group's runner-up
        winners = {top_a[0], top_b[0]}
        for pair in pairings:
            assert len(pair & winners) == 1
            assert pair & {top_a[1], top_b[1]}

    def test_group_entries_marked_advanced_or_eliminated(self, helper):
        tournament_id = helper.create(Format.GROUPS_AND_BRACKET, 8, group_count=2, bracket_size=4)
        finish_groups(helper, tournament_id)
        helper.service.start_bracket_stage(tournament_id)

        statuses = [e.status for g in helper.groups(tournament_id) for e in helper.group_entries(g.id)]

        assert statuses.count(TeamStatus.ADVANCED.value) == 4
        assert statuses.count(TeamStatus.ELIMINATED.value) == 4

    def test_drop_policy_leaves_three_teams_and_rolls_back(self, helper):
        tournament_id = helper.create(Format.GROUPS_AND_BRACKET, 9, group_count=3, bracket_size=4)
        finish_groups(helper, tournament_id)

        result = helper.service.start_bracket_stage(tournament_id)

        assert not result.success
        assert result.error == "invalid_team_count"
        assert helper.tournament(tournament_id).status == TournamentStatus.GROUPS_COMPLETED.value
        assert helper.matches(helper.bracket(tournament_id).id) == []
        statuses = {e.status for g in helper.groups(tournament_id) for e in helper.group_entries(g.id)}
        assert statuses == {TeamStatus.COMPETING.value}

    def test_conflict_keeps_groups_completed(self, helper, monkeypatch):
        tournament_id = helper.create(Format.GROUPS_AND_BRACKET, 8, group_count=2, bracket_size=4)
        finish_groups(helper, tournament_id)

        def conflict(step, context):
            raise ConflictError("Bracket was modified concurrently")

        monkeypatch.setattr(GenerateBracketMatches, "execute", conflict)
        monkeypatch.setattr(StageRollback, "undo_failed_start", lambda *a, **kw: None)

        result = helper.service.start_bracket_stage(tournament_id)

        assert result.error == "conflict"
        assert helper.tournament(tournament_id).status == TournamentStatus.GROUPS_COMPLETED.value
        statuses = {e.status for g in helper.groups(tournament_id) for e in helper.group_entries(g.id)}
        assert statuses == {TeamStatus.COMPETING.value}

        monkeypatch.undo()
        assert helper.service.start_bracket_stage(tournament_id).success

    def test_best_remaining_policy_fills_the_bracket(self, db, notifier, helper):
        config = validate_config(
            {
                "database": {"path": str(db.db_path)},
                "random_seed": 7,
                "advancement": {"remainder_policy": "best_remaining"},
            }
        )
        service = TournamentService(db, config, notifier=notifier)
        helper.service = service
        try:
            tournament_id = helper.create(Format.GROUPS_AND_BRACKET, 9, group_count=3, bracket_size=4)
            finish_groups(helper, tournament_id)

            result = service.start_bracket_stage(tournament_id)

            assert result.success, result.message
            assert result.teams_advanced == 4
        finally:
            service.close()


@pytest.mark.parametrize("team_count", [2, 4, 16])
def test_power_of_two_brackets(helper, team_count):
    tournament_id = helper.create(Format.BRACKET_ONLY, team_count)

    result = helper.service.start_bracket_stage(tournament_id)

    assert result.success
    assert len(helper.matches(helper.bracket(tournament_id).id)) == team_count - 1

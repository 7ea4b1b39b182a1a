"""End-to-end tests for processing game results against a real database."""

import pytest

from tourneyflow.config_loader import validate_config
from tourneyflow.models import Format, TeamStatus, TournamentStatus
from tourneyflow.pipeline import CancellationToken
from tourneyflow.service import TournamentService
from tourneyflow.storage import unit_of_work


def start_groups(helper, team_count=4, group_count=1, fmt=Format.GROUPS_AND_BRACKET, bracket_size=None):
    tournament_id = helper.create(fmt, team_count, group_count=group_count, bracket_size=bracket_size)
    result = helper.service.start_group_stage(tournament_id)
    assert result.success, result.message
    return tournament_id


def start_bracket_only(helper, team_count=8):
    tournament_id = helper.create(Format.BRACKET_ONLY, team_count)
    result = helper.service.start_bracket_stage(tournament_id)
    assert result.success, result.message
    return tournament_id


def first_match(helper, tournament_id):
    group = helper.groups(tournament_id)[0]
    return helper.matches(group.id)[0]


class TestMatchCompletion:
    def test_scenario_a_bo3_decided_after_two_wins(self, helper):
        tournament_id = start_groups(helper)
        match = first_match(helper, tournament_id)
        games = helper.games(match.id)
        assert len(games) == 3

        first = helper.service.process_game_result(games[0].id, match.team_a_id, 11, 7)
        assert first.success
        assert not first.match_finished
        assert first.message == "Game result recorded. Match still in progress."

        second = helper.service.process_game_result(games[1].id, match.team_a_id)
        assert second.success
        assert second.match_finished
        assert second.winner_id == match.team_a_id
        assert second.loser_id == match.team_b_id

        stored = helper.match(match.id)
        assert stored.winner_id == match.team_a_id
        assert helper.games(match.id)[2].winner_id is None
        assert helper.games(match.id)[0].team_a_score == 11

    def test_split_games_need_a_decider(self, helper):
        tournament_id = start_groups(helper)
        match = first_match(helper, tournament_id)
        games = helper.games(match.id)

        helper.service.process_game_result(games[0].id, match.team_a_id)
        second = helper.service.process_game_result(games[1].id, match.team_b_id)
        assert not second.match_finished

        third = helper.service.process_game_result(games[2].id, match.team_b_id)
        assert third.match_finished
        assert third.winner_id == match.team_b_id

    @pytest.mark.parametrize("best_of, games_needed", [("Bo1", 1), ("Bo3", 2), ("Bo5", 3)])
    def test_threshold_per_best_of(self, db, notifier, helper, best_of, games_needed):
        config = validate_config({"database": {"path": str(db.db_path)}, "group_best_of": best_of})
        service = TournamentService(db, config, notifier=notifier)
        helper.service = service
        try:
            tournament_id = start_groups(helper)
            match = first_match(helper, tournament_id)
            games = helper.games(match.id)
            assert len(games) == int(best_of[-1])

            for i in range(games_needed):
                result = service.process_game_result(games[i].id, match.team_b_id)
                assert result.match_finished == (i == games_needed - 1)
        finally:
            service.close()


class TestGroupProgression:
    def test_scenario_b_standing_finishes_on_last_match(self, helper):
        tournament_id = start_groups(helper, team_count=4, group_count=1)
        group = helper.groups(tournament_id)[0]
        matches = helper.matches(group.id)
        assert len(matches) == 6

        for i, match in enumerate(matches):
            result = helper.play_match(match.id, match.team_a_id)
            last = i == len(matches) - 1
            assert result.standing_finished == last
            assert helper.groups(tournament_id)[0].is_finished == last

    def test_points_accumulate(self, helper):
        tournament_id = start_groups(helper, team_count=3, group_count=1)
        group = helper.groups(tournament_id)[0]
        helper.play_standing(group.id, pick_winner=lambda m: min(m.team_a_id, m.team_b_id))

        entries = {e.team_id: e for e in helper.group_entries(group.id)}
        best = min(entries)
        assert entries[best].wins == 2
        assert entries[best].points == 6
        assert sum(e.losses for e in entries.values()) == 3

    def test_other_groups_still_open(self, helper):
        tournament_id = start_groups(helper, team_count=6, group_count=2, bracket_size=4)
        group_a, group_b = helper.groups(tournament_id)

        result = helper.play_standing(group_a.id)

        assert result.standing_finished
        assert not result.all_groups_finished
        assert result.message == "Match completed and standing finished. Other groups still in progress."
        assert helper.tournament(tournament_id).status == TournamentStatus.GROUPS_IN_PROGRESS.value

    def test_all_groups_finished_moves_to_groups_completed(self, helper, notifier):
        tournament_id = start_groups(helper, team_count=6, group_count=2, bracket_size=4)
        group_a, group_b = helper.groups(tournament_id)
        helper.play_standing(group_a.id)

        result = helper.play_standing(group_b.id)

        assert result.all_groups_finished
        assert not result.tournament_finished
        assert result.new_status == TournamentStatus.GROUPS_COMPLETED
        assert helper.tournament(tournament_id).status == TournamentStatus.GROUPS_COMPLETED.value

    def test_groups_only_tournament_finishes(self, helper):
        tournament_id = start_groups(helper, team_count=4, group_count=1, fmt=Format.GROUPS_ONLY)
        group = helper.groups(tournament_id)[0]

        result = helper.play_standing(group.id, pick_winner=lambda m: min(m.team_a_id, m.team_b_id))

        assert result.tournament_finished
        assert result.new_status == TournamentStatus.FINISHED
        assert [p.placement for p in result.final_standings] == [1, 2, 3, 4]
        assert result.final_standings[0].team_id == min(helper.team_ids(tournament_id))
        assert result.message.startswith("TOURNAMENT FINISHED! Champion:")


class TestBracketProgression:
    def test_scenario_c_winner_moves_to_round_two_team_a(self, helper):
        tournament_id = start_bracket_only(helper, team_count=8)
        bracket = helper.bracket(tournament_id)
        matches = helper.matches(bracket.id)
        assert len(matches) == 7
        assert sorted({m.round for m in matches}) == [1, 2, 3]

        opener = helper.match_at(bracket.id, 1, 1)
        result = helper.play_match(opener.id, opener.team_a_id)

        assert result.message == "Match completed. Winner advanced to next round."
        target = helper.match_at(bracket.id, 2, 1)
        assert target.team_a_id == opener.team_a_id
        assert target.team_b_id is None
        assert all(g.team_a_id == opener.team_a_id for g in helper.games(target.id))

    def test_even_seed_winner_moves_to_team_b(self, helper):
        tournament_id = start_bracket_only(helper, team_count=8)
        bracket = helper.bracket(tournament_id)

        match = helper.match_at(bracket.id, 1, 4)
        helper.play_match(match.id, match.team_b_id)

        target = helper.match_at(bracket.id, 2, 2)
        assert target.team_b_id == match.team_b_id
        assert target.team_a_id is None

    def test_bracket_statuses(self, helper):
        tournament_id = start_bracket_only(helper, team_count=4)
        bracket = helper.bracket(tournament_id)
        match = helper.match_at(bracket.id, 1, 1)

        helper.play_match(match.id, match.team_a_id)

        entries = {e.team_id: e for e in helper.bracket_entries(bracket.id)}
        assert entries[match.team_a_id].status == TeamStatus.ADVANCED.value
        assert entries[match.team_a_id].current_round == 2
        assert entries[match.team_b_id].status == TeamStatus.ELIMINATED.value

    def test_final_finishes_tournament_with_placements(self, helper):
        tournament_id = start_bracket_only(helper, team_count=8)
        bracket = helper.bracket(tournament_id)

        result = helper.play_bracket(bracket.id)

        assert result.tournament_finished
        assert result.new_status == TournamentStatus.FINISHED
        assert [p.placement for p in result.final_standings] == [1, 2, 3, 3, 5, 5, 5, 5]
        assert helper.tournament(tournament_id).status == TournamentStatus.FINISHED.value
        assert helper.bracket(tournament_id).is_finished

        champion_id = result.final_standings[0].team_id
        entries = {e.team_id: e for e in helper.bracket_entries(bracket.id)}
        assert entries[champion_id].status == TeamStatus.CHAMPION.value
        assert entries[champion_id].current_round == 4
        assert entries[result.final_standings[1].team_id].current_round == 3

        registrations = {r.team_id: r for r in helper.registrations(tournament_id)}
        assert registrations[champion_id].final_placement == 1
        assert registrations[champion_id].result_finalized_at is not None
        runner_up = result.final_standings[1].team_id
        assert registrations[runner_up].eliminated_in_round == 3

    def test_full_groups_and_bracket_run(self, helper):
        tournament_id = start_groups(helper, team_count=8, group_count=2, bracket_size=4)
        for group in helper.groups(tournament_id):
            helper.play_standing(group.id)
        assert helper.service.start_bracket_stage(tournament_id).success

        result = helper.play_bracket(helper.bracket(tournament_id).id)

        assert result.tournament_finished
        assert len(result.final_standings) == 4
        assert helper.tournament(tournament_id).status == TournamentStatus.FINISHED.value


class TestInvalidSubmissions:
    def test_scenario_d_match_already_decided(self, helper):
        tournament_id = start_groups(helper)
        match = first_match(helper, tournament_id)
        helper.play_match(match.id, match.team_a_id)
        spare = helper.games(match.id)[2]
        entries_before = [(e.team_id, e.wins, e.losses, e.points) for e in helper.group_entries(match.standing_id)]

        result = helper.service.process_game_result(spare.id, match.team_b_id)

        assert not result.success
        assert result.error == "invalid_state"
        assert not result.retriable
        assert helper.games(match.id)[2].winner_id is None
        assert helper.match(match.id).winner_id == match.team_a_id
        entries_after = [(e.team_id, e.wins, e.losses, e.points) for e in helper.group_entries(match.standing_id)]
        assert entries_after == entries_before

    def test_resubmitting_decided_game_does_not_double_count(self, helper):
        tournament_id = start_groups(helper)
        match = first_match(helper, tournament_id)
        games = helper.games(match.id)
        helper.play_match(match.id, match.team_a_id)

        result = helper.service.process_game_result(games[1].id, match.team_a_id)

        assert not result.success
        winner_entry = next(e for e in helper.group_entries(match.standing_id) if e.team_id == match.team_a_id)
        assert winner_entry.wins == 1
        assert winner_entry.points == 3

    def test_resubmitting_same_game_before_decision_is_harmless(self, helper):
        tournament_id = start_groups(helper)
        match = first_match(helper, tournament_id)
        game = helper.games(match.id)[0]

        helper.service.process_game_result(game.id, match.team_a_id)
        again = helper.service.process_game_result(game.id, match.team_a_id)

        assert again.success
        assert not again.match_finished
        assert helper.match(match.id).winner_id is None

    def test_winner_not_in_game(self, helper):
        tournament_id = start_groups(helper, team_count=6, group_count=1)
        match = first_match(helper, tournament_id)
        outsider = next(t for t in helper.team_ids(tournament_id) if t not in (match.team_a_id, match.team_b_id))

        result = helper.service.process_game_result(helper.games(match.id)[0].id, outsider)

        assert not result.success
        assert result.error == "invalid_state"

    def test_unknown_game(self, helper):
        result = helper.service.process_game_result(999999, 1)
        assert not result.success
        assert result.error == "not_found"

    def test_tbd_slot_cannot_be_scored(self, helper):
        tournament_id = start_bracket_only(helper, team_count=4)
        final = helper.match_at(helper.bracket(tournament_id).id, 2, 1)

        result = helper.service.process_game_result(helper.games(final.id)[0].id, 1)

        assert not result.success
        assert result.error == "invalid_state"

    def test_not_scorable_outside_active_stage(self, db, helper):
        tournament_id = start_groups(helper)
        match = first_match(helper, tournament_id)
        with unit_of_work(db) as uow:
            uow.tournaments.get_by_id(tournament_id).status = TournamentStatus.CANCELLED.value
            uow.commit()

        result = helper.service.process_game_result(helper.games(match.id)[0].id, match.team_a_id)

        assert not result.success
        assert result.error == "invalid_state"
        assert "not accepting results" in result.message
        assert helper.games(match.id)[0].winner_id is None


class TestNotificationsAndCancellation:
    def test_events_dispatched_after_commit(self, helper, notifier):
        tournament_id = start_groups(helper)
        helper.service.broadcaster.drain()
        notifier.calls.clear()
        match = first_match(helper, tournament_id)

        helper.play_match(match.id, match.team_a_id)
        helper.service.broadcaster.drain()

        assert notifier.kinds() == ["game", "game", "match", "standing"]
        assert all(call[1] == tournament_id for call in notifier.calls)
        assert all(call[3] == "system" for call in notifier.calls)

    def test_notifier_failure_does_not_fail_processing(self, db, config, helper):
        class BrokenNotifier(type(helper.service.broadcaster.notifier)):
            def notify_game_changed(self, *args):
                raise RuntimeError("transport down")

        service = TournamentService(db, config, notifier=BrokenNotifier())
        try:
            helper.service = service
            tournament_id = start_groups(helper)
            match = first_match(helper, tournament_id)

            result = service.process_game_result(helper.games(match.id)[0].id, match.team_a_id)
            service.broadcaster.drain()

            assert result.success
        finally:
            service.close()

    def test_cancelled_run_changes_nothing(self, helper):
        tournament_id = start_groups(helper)
        match = first_match(helper, tournament_id)
        game = helper.games(match.id)[0]
        token = CancellationToken()
        token.cancel()

        result = helper.service.process_game_result(game.id, match.team_a_id, cancel_token=token)

        assert not result.success
        assert result.error == "cancelled"
        assert helper.games(match.id)[0].winner_id is None

    def test_missing_participant_entry_is_integrity_violation(self, db, helper):
        tournament_id = start_groups(helper)
        match = first_match(helper, tournament_id)
        with unit_of_work(db) as uow:
            uow.group_entries.delete_by_standings([match.standing_id])
            uow.commit()

        games = helper.games(match.id)
        helper.service.process_game_result(games[0].id, match.team_a_id)
        result = helper.service.process_game_result(games[1].id, match.team_a_id)

        assert not result.success
        assert result.error == "integrity_violation"
        assert helper.match(match.id).winner_id is None

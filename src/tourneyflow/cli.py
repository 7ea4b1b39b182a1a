"""Command-line interface for tourneyflow."""

import click


def _open(config_path):
    """Load config, set up logging and open the database."""
    from tourneyflow.config_loader import configure_logging, load_and_validate_config
    from tourneyflow.storage import DatabaseManager

    cfg = load_and_validate_config(config_path)
    configure_logging(cfg)
    db = DatabaseManager(cfg["database"]["path"])
    db.create_tables()
    return cfg, db


def _abort_on_config_error(e):
    click.echo(f"[ERROR] Config Error: {e}", err=True)
    raise click.Abort()


@click.group()
@click.version_option(version="0.1.0")
def cli():
    """tourneyflow - run group and bracket tournaments from the command line."""
    pass


@cli.command()
@click.option("--config", required=False, help="Path to config YAML file")
def init_db(config: str):
    """Create the database tables.

    Example:
        tourneyflow init-db --config config/sample_config.yaml
    """
    from tourneyflow.config_loader import ConfigError

    try:
        cfg, _ = _open(config)
    except ConfigError as e:
        _abort_on_config_error(e)
    click.echo(f"[SUCCESS] Database ready at {cfg['database']['path']}")


@cli.command()
@click.option("--file", "fixture_path", required=True, help="Path to tournament fixture YAML file")
@click.option("--config", required=False, help="Path to config YAML file")
def import_tournament(fixture_path: str, config: str):
    """Create a tournament with its teams and standings from a fixture.

    Example:
        tourneyflow import-tournament --file data/samples/spring_cup.yaml
    """
    from tourneyflow.config_loader import ConfigError
    from tourneyflow.io_yaml import ImportDataError, import_tournament as do_import, load_fixture
    from tourneyflow.storage import unit_of_work

    try:
        _, db = _open(config)
        click.echo(f"[INFO] Reading fixture: {fixture_path}")
        fixture = load_fixture(fixture_path)

        with unit_of_work(db) as uow:
            tournament = do_import(uow, fixture)
            uow.commit()
            tournament_id = tournament.id

        click.echo(
            f"[SUCCESS] Created tournament {tournament_id} '{fixture['name']}' "
            f"({fixture['format'].value}, {len(fixture['teams'])} teams)"
        )
    except ConfigError as e:
        _abort_on_config_error(e)
    except ImportDataError as e:
        click.echo(f"[ERROR] Fixture Error: {e}", err=True)
        raise click.Abort()


@cli.command()
@click.option("--tournament-id", required=True, type=int, help="Tournament ID")
@click.option("--config", required=False, help="Path to config YAML file")
def start_groups(tournament_id: int, config: str):
    """Draw the groups and start the group stage."""
    from tourneyflow.config_loader import ConfigError
    from tourneyflow.service import TournamentService

    try:
        cfg, db = _open(config)
    except ConfigError as e:
        _abort_on_config_error(e)

    service = TournamentService(db, cfg)
    try:
        result = service.start_group_stage(tournament_id)
    finally:
        service.close()

    if not result.success:
        click.echo(f"[ERROR] {result.message}", err=True)
        raise click.Abort()
    click.echo(f"[SUCCESS] {result.message}")
    click.echo(f"   {result.groups_created} groups, {result.matches_created} matches")


@cli.command()
@click.option("--tournament-id", required=True, type=int, help="Tournament ID")
@click.option("--config", required=False, help="Path to config YAML file")
def start_bracket(tournament_id: int, config: str):
    """Seed the bracket and start the bracket stage."""
    from tourneyflow.config_loader import ConfigError
    from tourneyflow.service import TournamentService

    try:
        cfg, db = _open(config)
    except ConfigError as e:
        _abort_on_config_error(e)

    service = TournamentService(db, cfg)
    try:
        result = service.start_bracket_stage(tournament_id)
    finally:
        service.close()

    if not result.success:
        click.echo(f"[ERROR] {result.message}", err=True)
        raise click.Abort()
    click.echo(f"[SUCCESS] {result.message}")


@cli.command()
@click.option("--game-id", required=True, type=int, help="Game ID")
@click.option("--winner-id", required=True, type=int, help="ID of the winning team")
@click.option("--score-a", required=False, type=int, help="Score of team A")
@click.option("--score-b", required=False, type=int, help="Score of team B")
@click.option("--config", required=False, help="Path to config YAML file")
def report_game(game_id: int, winner_id: int, score_a: int, score_b: int, config: str):
    """Report the result of one game.

    Example:
        tourneyflow report-game --game-id 12 --winner-id 3 --score-a 11 --score-b 7
    """
    from tourneyflow.config_loader import ConfigError
    from tourneyflow.service import TournamentService

    try:
        cfg, db = _open(config)
    except ConfigError as e:
        _abort_on_config_error(e)

    service = TournamentService(db, cfg)
    try:
        result = service.process_game_result(game_id, winner_id, score_a, score_b)
    finally:
        service.close()

    if not result.success:
        hint = " (retry)" if result.retriable else ""
        click.echo(f"[ERROR] {result.message}{hint}", err=True)
        raise click.Abort()

    click.echo(f"[SUCCESS] {result.message}")
    if result.final_standings:
        click.echo("\nFinal standings:")
        for placement in result.final_standings:
            click.echo(f"   {placement}")


@cli.command()
@click.option("--tournament-id", required=True, type=int, help="Tournament ID")
@click.option("--config", required=False, help="Path to config YAML file")
def status(tournament_id: int, config: str):
    """Show the status, standings and open matches of a tournament."""
    from tourneyflow.bracket import round_name
    from tourneyflow.config_loader import ConfigError
    from tourneyflow.models import StandingType
    from tourneyflow.standings import rank_group_entries
    from tourneyflow.storage import unit_of_work

    try:
        _, db = _open(config)
    except ConfigError as e:
        _abort_on_config_error(e)

    with unit_of_work(db) as uow:
        tournament = uow.tournaments.get_by_id(tournament_id)
        if tournament is None:
            click.echo(f"[ERROR] Tournament {tournament_id} not found", err=True)
            raise click.Abort()

        names = {team.id: team.name for team in uow.teams.get_by_tournament(tournament_id)}

        def team(team_id):
            return names.get(team_id, "TBD") if team_id is not None else "TBD"

        click.echo(f"{tournament.name} [{tournament.format}] - {tournament.status}")

        for standing in uow.standings.get_by_tournament(tournament_id):
            state = "finished" if standing.is_finished else ("seeded" if standing.is_seeded else "not seeded")
            click.echo(f"\n{standing.name} ({state})")
            matches = uow.matches.get_by_standing(standing.id)

            if standing.standing_type == StandingType.GROUP:
                for pos, entry in enumerate(rank_group_entries(uow.group_entries.get_by_standing(standing.id)), 1):
                    click.echo(
                        f"   {pos}. {team(entry.team_id):<25} W{entry.wins} L{entry.losses} {entry.points} pts"
                    )
            else:
                rounds = max((m.round for m in matches), default=0)
                for match in matches:
                    label = round_name(match.round, rounds)
                    result = f"-> {team(match.winner_id)}" if match.is_finished else ""
                    click.echo(f"   {label} #{match.seed}: {team(match.team_a_id)} vs {team(match.team_b_id)} {result}")

            for match in matches:
                if not match.is_finished and match.team_a_id and match.team_b_id:
                    games = uow.games.get_by_match(match.id)
                    open_games = [str(g.id) for g in games if g.winner_id is None]
                    click.echo(
                        f"   open: match {match.id} {team(match.team_a_id)} vs {team(match.team_b_id)} "
                        f"(games {', '.join(open_games)})"
                    )

        placed = [r for r in uow.registrations.get_by_tournament(tournament_id) if r.final_placement]
        if placed:
            click.echo("\nFinal standings:")
            for registration in sorted(placed, key=lambda r: r.final_placement):
                click.echo(f"   #{registration.final_placement} {team(registration.team_id)}")


if __name__ == "__main__":
    cli()

"""SQLite storage layer for tourneyflow.

Provides ORM models, repositories and the unit of work used by the engine.

Repositories only stage changes (add + flush); nothing is committed until the
owning UnitOfWork commits, so one game result or one stage start is persisted
all together or not at all.

Every row the engine mutates carries a ``version`` column used by SQLAlchemy
as ``version_id_col``: an UPDATE only applies when the row still has the
version that was read, so two writers racing on the same match are detected
and reported as ConflictError.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Sequence

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    create_engine,
)
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import NullPool

from tourneyflow.errors import ConflictError
from tourneyflow.formats import requires_bracket, requires_groups
from tourneyflow.group_builder import calculate_group_sizes, group_name
from tourneyflow.models import (
    BestOf,
    Format,
    StandingType,
    TeamStatus,
    TournamentStatus,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


# ============================================================================
# ORM Models
# ============================================================================


class TournamentORM(Base):
    """Tournament table.

    ``format`` is fixed at creation. ``status`` only changes through the
    state machine; registration and processing flags are derived from it.
    """

    __tablename__ = "tournaments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    format = Column(String(30), nullable=False)
    status = Column(String(30), nullable=False, default=TournamentStatus.SETUP.value)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}

    @property
    def tournament_format(self) -> Format:
        return Format(self.format)

    @property
    def tournament_status(self) -> TournamentStatus:
        return TournamentStatus(self.status)

    @property
    def is_registration_open(self) -> bool:
        """Registration is open exactly while the tournament is in setup."""
        return self.tournament_status == TournamentStatus.SETUP

    @property
    def is_processing(self) -> bool:
        """A stage is being seeded."""
        return self.tournament_status in (
            TournamentStatus.SEEDING_GROUPS,
            TournamentStatus.SEEDING_BRACKET,
        )


class TeamORM(Base):
    """Team table."""

    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class TournamentTeamORM(Base):
    """Team registration in a tournament, with its final result once decided."""

    __tablename__ = "tournament_teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    final_placement = Column(Integer, nullable=True)
    eliminated_in_round = Column(Integer, nullable=True)
    result_finalized_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class StandingORM(Base):
    """Standing table: one per group and one for the bracket."""

    __tablename__ = "standings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False)
    name = Column(String(50), nullable=False)  # "Group A", "Main Bracket"
    type = Column(String(10), nullable=False)  # group, bracket
    max_teams = Column(Integer, nullable=False)
    is_seeded = Column(Boolean, nullable=False, default=False)
    is_finished = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}

    @property
    def standing_type(self) -> StandingType:
        return StandingType(self.type)


class MatchORM(Base):
    """Match table.

    Group matches have no round or seed. Bracket matches beyond round 1 are
    created with empty team slots (TBD) that advancement fills in.
    """

    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    standing_id = Column(Integer, ForeignKey("standings.id"), nullable=False)
    round = Column(Integer, nullable=True)
    seed = Column(Integer, nullable=True)  # Position within the round
    match_number = Column(Integer, nullable=True)
    team_a_id = Column(Integer, ForeignKey("teams.id"), nullable=True)
    team_b_id = Column(Integer, ForeignKey("teams.id"), nullable=True)
    winner_id = Column(Integer, nullable=True)  # Set once, never reset
    loser_id = Column(Integer, nullable=True)
    best_of = Column(String(5), nullable=False, default=BestOf.BO3.value)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_finished(self) -> bool:
        return self.winner_id is not None

    def __repr__(self) -> str:
        return (
            f"<MatchORM id={self.id} standing={self.standing_id} round={self.round} "
            f"seed={self.seed} {self.team_a_id} vs {self.team_b_id} winner={self.winner_id}>"
        )


class GameORM(Base):
    """Game table. Team ids are copied from the match when the game is created."""

    __tablename__ = "games"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    game_number = Column(Integer, nullable=False)
    team_a_id = Column(Integer, ForeignKey("teams.id"), nullable=True)
    team_b_id = Column(Integer, ForeignKey("teams.id"), nullable=True)
    team_a_score = Column(Integer, nullable=True)
    team_b_score = Column(Integer, nullable=True)
    winner_id = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class GroupEntryORM(Base):
    """Group participant entry (wins, losses, points)."""

    __tablename__ = "group_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False)
    standing_id = Column(Integer, ForeignKey("standings.id"), nullable=False)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    status = Column(String(20), nullable=False, default=TeamStatus.COMPETING.value)
    wins = Column(Integer, nullable=False, default=0)
    losses = Column(Integer, nullable=False, default=0)
    points = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class BracketEntryORM(Base):
    """Bracket participant entry (status and round reached)."""

    __tablename__ = "bracket_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False)
    standing_id = Column(Integer, ForeignKey("standings.id"), nullable=False)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    status = Column(String(20), nullable=False, default=TeamStatus.COMPETING.value)
    current_round = Column(Integer, nullable=False, default=1)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


# ============================================================================
# Database Manager
# ============================================================================


class DatabaseManager:
    """Manages SQLite database connection and session."""

    def __init__(self, db_path: str = ".tourneyflow/tourneyflow.sqlite"):
        """Initialize database manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Use NullPool for SQLite to avoid connection pool issues
        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            echo=False,
            poolclass=NullPool,
            connect_args={"check_same_thread": False}
        )
        self.SessionLocal = sessionmaker(bind=self.engine)

    def create_tables(self):
        """Create all tables in the database."""
        Base.metadata.create_all(self.engine)

    def drop_tables(self):
        """Drop all tables (use with caution!)."""
        Base.metadata.drop_all(self.engine)

    def get_session(self):
        """Get a new database session."""
        return self.SessionLocal()


# ============================================================================
# Repositories
# ============================================================================


class TournamentRepository:
    """Repository for Tournament operations."""

    def __init__(self, session):
        self.session = session

    def create(self, name: str, fmt: Format) -> TournamentORM:
        """Stage a new tournament in SETUP status."""
        tournament = TournamentORM(
            name=name,
            format=Format(fmt).value,
            status=TournamentStatus.SETUP.value,
        )
        self.session.add(tournament)
        self.session.flush()
        return tournament

    def get_by_id(self, tournament_id: int) -> Optional[TournamentORM]:
        """Get tournament by ID."""
        return self.session.query(TournamentORM).filter(
            TournamentORM.id == tournament_id
        ).first()

    def register_team(self, tournament_id: int, team_id: int) -> TournamentTeamORM:
        """Register a team in a tournament."""
        registration = TournamentTeamORM(tournament_id=tournament_id, team_id=team_id)
        self.session.add(registration)
        self.session.flush()
        return registration

    def create_with_standings(
        self,
        name: str,
        fmt: Format,
        team_ids: Sequence[int],
        group_count: int = 0,
        bracket_size: Optional[int] = None,
    ) -> TournamentORM:
        """Create a tournament with its registrations and empty standings.

        Group standings ("Group A", "Group B", ...) are created when the
        format has a group stage, one "Main Bracket" standing when it has a
        bracket stage.

        Args:
            name: Tournament name
            fmt: Tournament format
            team_ids: Ids of existing teams to register
            group_count: Number of groups (formats with a group stage)
            bracket_size: Teams in the bracket; defaults to the number of
                registered teams for bracket-only tournaments

        Returns:
            The staged TournamentORM
        """
        fmt = Format(fmt)
        tournament = self.create(name, fmt)
        for team_id in team_ids:
            self.register_team(tournament.id, team_id)

        standing_repo = StandingRepository(self.session)
        if requires_groups(fmt):
            if group_count < 1:
                raise ValueError("group_count must be at least 1 for formats with a group stage")
            sizes = calculate_group_sizes(len(team_ids), group_count)
            for index in range(group_count):
                standing_repo.create(
                    tournament.id, group_name(index), StandingType.GROUP, max_teams=sizes[index]
                )
        if requires_bracket(fmt):
            size = bracket_size if bracket_size is not None else len(team_ids)
            standing_repo.create(tournament.id, "Main Bracket", StandingType.BRACKET, max_teams=size)

        logger.info("Created tournament %s '%s' (%s, %d teams)", tournament.id, name, fmt.value, len(team_ids))
        return tournament


class TeamRepository:
    """Repository for Team operations."""

    def __init__(self, session):
        self.session = session

    def create(self, name: str) -> TeamORM:
        team = TeamORM(name=name)
        self.session.add(team)
        self.session.flush()
        return team

    def get_by_id(self, team_id: int) -> Optional[TeamORM]:
        return self.session.query(TeamORM).filter(TeamORM.id == team_id).first()

    def get_by_name(self, name: str) -> Optional[TeamORM]:
        return self.session.query(TeamORM).filter(TeamORM.name == name).first()

    def get_or_create(self, name: str) -> TeamORM:
        return self.get_by_name(name) or self.create(name)

    def get_by_tournament(self, tournament_id: int) -> list[TeamORM]:
        """Teams registered in a tournament, in registration order."""
        return (
            self.session.query(TeamORM)
            .join(TournamentTeamORM, TournamentTeamORM.team_id == TeamORM.id)
            .filter(TournamentTeamORM.tournament_id == tournament_id)
            .order_by(TournamentTeamORM.id)
            .all()
        )


class TournamentTeamRepository:
    """Repository for team registrations."""

    def __init__(self, session):
        self.session = session

    def get_by_tournament(self, tournament_id: int) -> list[TournamentTeamORM]:
        return (
            self.session.query(TournamentTeamORM)
            .filter(TournamentTeamORM.tournament_id == tournament_id)
            .order_by(TournamentTeamORM.id)
            .all()
        )

    def get_by_tournament_and_team(self, tournament_id: int, team_id: int) -> Optional[TournamentTeamORM]:
        return (
            self.session.query(TournamentTeamORM)
            .filter(
                TournamentTeamORM.tournament_id == tournament_id,
                TournamentTeamORM.team_id == team_id,
            )
            .first()
        )


class StandingRepository:
    """Repository for Standing operations."""

    def __init__(self, session):
        self.session = session

    def create(
        self, tournament_id: int, name: str, standing_type: StandingType, max_teams: int
    ) -> StandingORM:
        standing = StandingORM(
            tournament_id=tournament_id,
            name=name,
            type=StandingType(standing_type).value,
            max_teams=max_teams,
            is_seeded=False,
            is_finished=False,
        )
        self.session.add(standing)
        self.session.flush()
        return standing

    def get_by_id(self, standing_id: int) -> Optional[StandingORM]:
        return self.session.query(StandingORM).filter(StandingORM.id == standing_id).first()

    def get_by_tournament(
        self, tournament_id: int, standing_type: Optional[StandingType] = None
    ) -> list[StandingORM]:
        """Get standings of a tournament, optionally filtered by type.

        Args:
            tournament_id: Tournament ID
            standing_type: Only return standings of this type

        Returns:
            List of StandingORM ordered by id
        """
        query = self.session.query(StandingORM).filter(StandingORM.tournament_id == tournament_id)
        if standing_type is not None:
            query = query.filter(StandingORM.type == StandingType(standing_type).value)
        return query.order_by(StandingORM.id).all()

    def get_groups(self, tournament_id: int) -> list[StandingORM]:
        return self.get_by_tournament(tournament_id, StandingType.GROUP)

    def get_bracket(self, tournament_id: int) -> Optional[StandingORM]:
        brackets = self.get_by_tournament(tournament_id, StandingType.BRACKET)
        return brackets[0] if brackets else None


class MatchRepository:
    """Repository for Match operations."""

    def __init__(self, session):
        self.session = session

    def create(
        self,
        standing_id: int,
        best_of: BestOf,
        team_a_id: Optional[int] = None,
        team_b_id: Optional[int] = None,
        round: Optional[int] = None,
        seed: Optional[int] = None,
        match_number: Optional[int] = None,
    ) -> MatchORM:
        match = MatchORM(
            standing_id=standing_id,
            best_of=BestOf(best_of).value,
            team_a_id=team_a_id,
            team_b_id=team_b_id,
            round=round,
            seed=seed,
            match_number=match_number,
        )
        self.session.add(match)
        self.session.flush()
        return match

    def get_by_id(self, match_id: int) -> Optional[MatchORM]:
        return self.session.query(MatchORM).filter(MatchORM.id == match_id).first()

    def get_by_standing(self, standing_id: int) -> list[MatchORM]:
        """Get all matches of a standing ordered by round, seed and number."""
        return (
            self.session.query(MatchORM)
            .filter(MatchORM.standing_id == standing_id)
            .order_by(MatchORM.round, MatchORM.seed, MatchORM.match_number, MatchORM.id)
            .all()
        )

    def get_by_round_and_seed(self, standing_id: int, round: int, seed: int) -> Optional[MatchORM]:
        return (
            self.session.query(MatchORM)
            .filter(
                MatchORM.standing_id == standing_id,
                MatchORM.round == round,
                MatchORM.seed == seed,
            )
            .first()
        )

    def delete_by_standings(self, standing_ids: Sequence[int]) -> int:
        if not standing_ids:
            return 0
        return (
            self.session.query(MatchORM)
            .filter(MatchORM.standing_id.in_(list(standing_ids)))
            .delete(synchronize_session=False)
        )


class GameRepository:
    """Repository for Game operations."""

    def __init__(self, session):
        self.session = session

    def create_for_match(self, match: MatchORM, count: int) -> list[GameORM]:
        """Create ``count`` games copying the match's team ids."""
        games = []
        for number in range(1, count + 1):
            game = GameORM(
                match_id=match.id,
                game_number=number,
                team_a_id=match.team_a_id,
                team_b_id=match.team_b_id,
            )
            self.session.add(game)
            games.append(game)
        self.session.flush()
        return games

    def get_by_id(self, game_id: int) -> Optional[GameORM]:
        return self.session.query(GameORM).filter(GameORM.id == game_id).first()

    def get_by_match(self, match_id: int) -> list[GameORM]:
        return (
            self.session.query(GameORM)
            .filter(GameORM.match_id == match_id)
            .order_by(GameORM.game_number)
            .all()
        )

    def delete_by_standings(self, standing_ids: Sequence[int]) -> int:
        if not standing_ids:
            return 0
        match_ids = [
            row.id
            for row in self.session.query(MatchORM.id).filter(
                MatchORM.standing_id.in_(list(standing_ids))
            )
        ]
        if not match_ids:
            return 0
        return (
            self.session.query(GameORM)
            .filter(GameORM.match_id.in_(match_ids))
            .delete(synchronize_session=False)
        )


class GroupEntryRepository:
    """Repository for group participant entries."""

    def __init__(self, session):
        self.session = session

    def create(self, tournament_id: int, standing_id: int, team_id: int) -> GroupEntryORM:
        entry = GroupEntryORM(
            tournament_id=tournament_id,
            standing_id=standing_id,
            team_id=team_id,
            status=TeamStatus.COMPETING.value,
            wins=0,
            losses=0,
            points=0,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def get_by_standing(self, standing_id: int) -> list[GroupEntryORM]:
        return (
            self.session.query(GroupEntryORM)
            .filter(GroupEntryORM.standing_id == standing_id)
            .order_by(GroupEntryORM.id)
            .all()
        )

    def get_by_standing_and_team(self, standing_id: int, team_id: int) -> Optional[GroupEntryORM]:
        return (
            self.session.query(GroupEntryORM)
            .filter(GroupEntryORM.standing_id == standing_id, GroupEntryORM.team_id == team_id)
            .first()
        )

    def delete_by_standings(self, standing_ids: Sequence[int]) -> int:
        if not standing_ids:
            return 0
        return (
            self.session.query(GroupEntryORM)
            .filter(GroupEntryORM.standing_id.in_(list(standing_ids)))
            .delete(synchronize_session=False)
        )


class BracketEntryRepository:
    """Repository for bracket participant entries."""

    def __init__(self, session):
        self.session = session

    def create(self, tournament_id: int, standing_id: int, team_id: int) -> BracketEntryORM:
        entry = BracketEntryORM(
            tournament_id=tournament_id,
            standing_id=standing_id,
            team_id=team_id,
            status=TeamStatus.COMPETING.value,
            current_round=1,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def get_by_standing(self, standing_id: int) -> list[BracketEntryORM]:
        return (
            self.session.query(BracketEntryORM)
            .filter(BracketEntryORM.standing_id == standing_id)
            .order_by(BracketEntryORM.id)
            .all()
        )

    def get_by_standing_and_team(self, standing_id: int, team_id: int) -> Optional[BracketEntryORM]:
        return (
            self.session.query(BracketEntryORM)
            .filter(BracketEntryORM.standing_id == standing_id, BracketEntryORM.team_id == team_id)
            .first()
        )

    def delete_by_standings(self, standing_ids: Sequence[int]) -> int:
        if not standing_ids:
            return 0
        return (
            self.session.query(BracketEntryORM)
            .filter(BracketEntryORM.standing_id.in_(list(standing_ids)))
            .delete(synchronize_session=False)
        )


# ============================================================================
# Unit of Work
# ============================================================================


class UnitOfWork:
    """One session plus the repositories bound to it.

    Changes staged through the repositories are persisted by ``commit``.
    Version mismatches and lock timeouts surface as ConflictError.
    """

    def __init__(self, session):
        self.session = session
        self.tournaments = TournamentRepository(session)
        self.teams = TeamRepository(session)
        self.registrations = TournamentTeamRepository(session)
        self.standings = StandingRepository(session)
        self.matches = MatchRepository(session)
        self.games = GameRepository(session)
        self.group_entries = GroupEntryRepository(session)
        self.bracket_entries = BracketEntryRepository(session)

    def flush(self):
        self.session.flush()

    def commit(self):
        self.session.commit()

    def rollback(self):
        self.session.rollback()

    def close(self):
        self.session.close()


def _is_lock_error(error: OperationalError) -> bool:
    return "locked" in str(error.orig).lower()


@contextmanager
def unit_of_work(db: DatabaseManager) -> Iterator[UnitOfWork]:
    """Open a unit of work; roll back on any exception.

    The caller commits explicitly. Leaving the block without committing
    discards the staged changes.

    Raises:
        ConflictError: If a concurrent writer changed a row this unit of
            work updates, or the database stayed locked by another writer
    """
    uow = UnitOfWork(db.get_session())
    try:
        yield uow
    except StaleDataError as e:
        uow.rollback()
        logger.warning("Concurrent modification detected: %s", e)
        raise ConflictError(f"Data was modified concurrently, retry with fresh data ({e})") from e
    except OperationalError as e:
        uow.rollback()
        if _is_lock_error(e):
            logger.warning("Database locked by another writer: %s", e)
            raise ConflictError("Database is busy with another update, retry") from e
        raise
    except Exception:
        uow.rollback()
        raise
    finally:
        uow.close()

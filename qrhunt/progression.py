"""
Progression engine: stage and score changes, completion and ranking.
"""

import logging
from typing import Iterable, List, Optional

import aiosqlite

from .database import DatabaseManager
from .errors import InvalidConfiguration, UnknownTeam
from .models import Team, fits_store_int

logger = logging.getLogger(__name__)


def is_complete(team: Team, total_nodes: int) -> bool:
    """A team has finished once its stage points past the last node."""
    return team.current_stage > total_nodes


def ranking_key(team: Team):
    return (-team.score, -team.current_stage, team.created_at, team.id)


def rank_teams(teams: Iterable[Team]) -> List[Team]:
    """
    Order teams for the leaderboard.

    Highest score first; ties go to the further stage, then to the team that
    registered earliest.
    """
    return sorted(teams, key=ranking_key)


def _check_points(points: int) -> None:
    if not fits_store_int(points) or points < 0:
        raise InvalidConfiguration("points must be a non-negative integer")


class ProgressionEngine:
    """The only writer of team stage and score."""

    def __init__(self, db_manager: DatabaseManager) -> None:
        self.db = db_manager

    async def advance(
        self,
        team_id: int,
        points_to_add: int,
        db: Optional[aiosqlite.Connection] = None,
    ) -> Team:
        """
        Advance a team by one stage and credit points.

        @param team_id: Team to advance
        @param points_to_add: Points credited, non-negative
        @param db: Open write transaction to join; a new one is used if omitted
        @return: The team after advancing
        """
        _check_points(points_to_add)

        if db is None:
            async with self.db.transaction() as conn:
                return await self.advance(team_id, points_to_add, db=conn)

        if await self.db.fetch_team(db, team_id) is None:
            raise UnknownTeam()
        team = await self.db.advance_team(db, team_id, points_to_add)
        logger.info(
            f"Team {team_id} advanced to stage {team.current_stage} "
            f"(+{points_to_add}, score {team.score})"
        )
        return team

    async def override_progress(
        self,
        team_id: int,
        new_stage: int,
        points_to_add: int,
    ) -> Team:
        """
        Administrative bypass: set a team's stage and adjust its score.

        The stage may not move backwards and the score may not go negative.

        @param team_id: Team to change
        @param new_stage: Stage to move to, at least the current stage
        @param points_to_add: Score delta, may be negative
        @return: The updated team
        """
        if not fits_store_int(new_stage):
            raise InvalidConfiguration("new_stage must be an integer")
        if not fits_store_int(points_to_add):
            raise InvalidConfiguration("points_to_add must be an integer")

        async with self.db.transaction() as db:
            team = await self.db.fetch_team(db, team_id)
            if team is None:
                raise UnknownTeam()
            if new_stage < team.current_stage:
                raise InvalidConfiguration(
                    f"Stage cannot move back from {team.current_stage} to {new_stage}"
                )
            new_score = team.score + points_to_add
            if new_score < 0:
                raise InvalidConfiguration("Score cannot become negative")
            if not fits_store_int(new_score):
                raise InvalidConfiguration("Score is out of range")

            await self.db.set_team_progress(db, team_id, new_stage, new_score)
            team.current_stage = new_stage
            team.score = new_score

        logger.info(
            f"Admin override: team {team_id} set to stage {new_stage}, score {new_score}"
        )
        return team

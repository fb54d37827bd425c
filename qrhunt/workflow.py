"""
Submission workflow: pending answers and their one-time review.
"""

import logging
from typing import Any, List, Optional

from .database import DatabaseManager
from .errors import (
    AlreadyReviewed,
    GamePaused,
    InvalidInput,
    NotFound,
    OutOfSequence,
    PendingSubmissionExists,
    UnknownNode,
    UnknownTeam,
)
from .models import STATUS_ACCEPTED, STATUS_REJECTED, Submission
from .progression import ProgressionEngine

logger = logging.getLogger(__name__)


class SubmissionWorkflow:
    """Creates pending submissions and applies admin decisions."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        progression: ProgressionEngine,
        config: Any,
    ) -> None:
        self.db = db_manager
        self.progression = progression
        self.config = config

    async def submit_answer(
        self,
        team_id: int,
        node_id: int,
        answer_text: str,
    ) -> Submission:
        """
        Record a team's answer for review.

        @param team_id: Submitting team
        @param node_id: Sequence number of the node answered, the team's current stage
        @param answer_text: Free-text answer, stored stripped
        @return: The new pending submission
        @raise PendingSubmissionExists: If an answer for this node is still awaiting review
        """
        if not isinstance(answer_text, str):
            raise InvalidInput("Answer must be text")
        answer = answer_text.strip()
        max_length = self.config.get("game", "max_answer_length")
        if len(answer) > max_length:
            raise InvalidInput(f"Answer too long (max {max_length} characters)")

        async with self.db.transaction() as db:
            team = await self.db.fetch_team(db, team_id)
            if team is None:
                raise UnknownTeam()

            node = await self.db.fetch_node(db, node_id)
            if node is None or not node.is_active:
                raise UnknownNode("Node not found")

            settings = await self.db.fetch_settings(db)
            if settings is not None and not settings.game_active:
                raise GamePaused()

            if team.current_stage != node_id:
                raise OutOfSequence()

            if await self.db.has_pending_submission(db, team_id, node_id):
                raise PendingSubmissionExists()

            submission = await self.db.insert_submission(db, team_id, node_id, answer)

        logger.info(
            f"Submission {submission.id} received from team {team_id} for node {node_id}"
        )
        return submission

    async def review_submission(
        self,
        submission_id: int,
        approved: bool,
        reviewer_id: str,
    ) -> Submission:
        """
        Accept or reject a pending submission.

        Marking the submission and advancing the team share one transaction,
        so a reviewed submission is never left without its credit.

        @param submission_id: Submission to review
        @param approved: True to accept, False to reject
        @param reviewer_id: Identifier recorded as the reviewer
        @return: The reviewed submission
        @raise AlreadyReviewed: If the submission is no longer pending
        """
        status = STATUS_ACCEPTED if approved else STATUS_REJECTED

        async with self.db.transaction() as db:
            submission = await self.db.fetch_submission(db, submission_id)
            if submission is None:
                raise NotFound(f"Submission {submission_id} not found")
            if not submission.is_pending:
                raise AlreadyReviewed()

            if approved:
                team = await self.db.fetch_team(db, submission.team_id)
                if team is None:
                    raise UnknownTeam()
                # The answer must still be for the node the team is on
                if team.current_stage != submission.node_id:
                    raise OutOfSequence(
                        f"Team is at stage {team.current_stage}, "
                        f"submission is for node {submission.node_id}"
                    )

            if not await self.db.mark_reviewed(db, submission_id, status, reviewer_id):
                raise AlreadyReviewed()

            if approved:
                settings = await self.db.fetch_settings(db)
                points = (
                    settings.points_per_node
                    if settings is not None
                    else self.config.get("game", "default_points_per_node")
                )
                await self.progression.advance(submission.team_id, points, db=db)

            reviewed = await self.db.fetch_submission(db, submission_id)

        logger.info(f"Submission {submission_id} {status} by {reviewer_id}")
        return reviewed

    async def list_submissions(
        self,
        status: Optional[str] = None,
    ) -> List[Submission]:
        async with self.db.read() as db:
            return await self.db.fetch_submissions(db, status=status)

    async def get_team_submissions(
        self,
        team_id: int,
    ) -> List[Submission]:
        async with self.db.read() as db:
            if await self.db.fetch_team(db, team_id) is None:
                raise UnknownTeam()
            return await self.db.fetch_submissions(db, team_id=team_id)

"""
Operation set exposed to the presentation layer.

Admin operations take the admin secret as their first argument and raise
Unauthorized when it does not match.
"""

import logging
import secrets
import string
import uuid
from typing import Any, Dict, List, Optional

import aiosqlite

from .admin import AdminGate
from .database import DatabaseManager
from .errors import Conflict, HuntError, InvalidInput, UnknownTeam
from .models import (
    STATUS_ACCEPTED,
    STATUS_PENDING,
    STATUS_REJECTED,
    Node,
    ScanOutcome,
    Submission,
    Team,
    is_store_id,
)
from .progression import ProgressionEngine, is_complete
from .validator import CodeValidator, encode_payload
from .workflow import SubmissionWorkflow

logger = logging.getLogger(__name__)

TEAM_CODE_ALPHABET = string.ascii_uppercase + string.digits
TEAM_CODE_ATTEMPTS = 10
MAX_NAME_LENGTH = 50


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{field_name} must not be empty")
    return value.strip()


def _require_positive_int(value: Any, field_name: str) -> int:
    if not is_store_id(value):
        raise InvalidInput(f"{field_name} must be a positive integer")
    return value


class HuntService:
    """Facade over the hunt components."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        config: Any,
    ) -> None:
        self.db = db_manager
        self.config = config
        self.admin = AdminGate(db_manager, config)
        self.validator = CodeValidator(db_manager)
        self.progression = ProgressionEngine(db_manager)
        self.workflow = SubmissionWorkflow(db_manager, self.progression, config)

    def _new_team_code(self) -> str:
        length = self.config.get("game", "team_code_length")
        return "".join(secrets.choice(TEAM_CODE_ALPHABET) for _ in range(length))

    # Teams

    async def create_team(
        self,
        name: str,
        members: List[str],
    ) -> Dict[str, Any]:
        """
        Register a team.

        Blank member names are dropped; at least one must remain.

        @param name: Team display name
        @param members: Member names
        @return: Dictionary with team_id and team_code
        """
        name = _require_text(name, "Team name")
        if len(name) > MAX_NAME_LENGTH:
            raise InvalidInput(f"Team name too long (max {MAX_NAME_LENGTH} characters)")
        if not isinstance(members, list) or not all(isinstance(m, str) for m in members):
            raise InvalidInput("Members must be a list of names")
        members = [m.strip() for m in members if m.strip()]
        if not members:
            raise InvalidInput("A team needs at least one member")

        async with self.db.transaction() as db:
            for _ in range(TEAM_CODE_ATTEMPTS):
                try:
                    team = await self.db.insert_team(db, name, members, self._new_team_code())
                    break
                except aiosqlite.IntegrityError:
                    continue
            else:
                raise Conflict("Could not allocate a unique team code")

        logger.info(f"Team {team.id} '{name}' registered with {len(members)} members")
        return {"team_id": team.id, "team_code": team.team_code}

    async def lookup_team_by_code(self, code: str) -> Optional[Team]:
        if not isinstance(code, str) or not code.strip():
            return None
        async with self.db.read() as db:
            return await self.db.fetch_team_by_code(db, code.strip().upper())

    async def get_team(self, team_id: int) -> Team:
        team_id = _require_positive_int(team_id, "Team id")
        async with self.db.read() as db:
            team = await self.db.fetch_team(db, team_id)
        if team is None:
            raise UnknownTeam()
        return team

    async def get_leaderboard(
        self,
        limit: Optional[int] = None,
    ) -> List[Team]:
        """
        Get the top teams.

        @param limit: Number of teams (default from config, capped by max_leaderboard_entries)
        @return: Teams ordered by score, stage, then registration time
        """
        if limit is None:
            limit = self.config.get("game", "leaderboard_limit")
        limit = _require_positive_int(limit, "limit")
        max_entries = self.config.get("game", "max_leaderboard_entries")
        actual_limit = min(limit, max_entries) if max_entries else limit
        return await self.db.get_leaderboard(actual_limit)

    async def is_team_complete(self, team: Team) -> Optional[bool]:
        """None until settings define the number of nodes."""
        settings = await self.admin.get_settings()
        if settings is None:
            return None
        return is_complete(team, settings.total_nodes)

    # Nodes

    async def create_node(
        self,
        admin_secret: str,
        sequence: int,
        clue: str,
        question: str,
        expected_answer: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a node with a fresh secret code.

        @param admin_secret: Admin secret
        @param sequence: Sequence number, unique
        @param clue: Text shown before the node is found
        @param question: Text shown after a successful scan
        @param expected_answer: Reference answer for reviewers (optional)
        @return: Dictionary with the node and its unlock_payload
        """
        await self.admin.require(admin_secret)
        sequence = _require_positive_int(sequence, "Node sequence")
        clue = _require_text(clue, "Clue")
        question = _require_text(question, "Question")
        if expected_answer is not None and not isinstance(expected_answer, str):
            raise InvalidInput("Expected answer must be text")

        async with self.db.transaction() as db:
            if await self.db.fetch_node(db, sequence) is not None:
                raise Conflict(f"Node {sequence} already exists")
            node = await self.db.insert_node(
                db, sequence, clue, question, str(uuid.uuid4()), expected_answer
            )

        logger.info(f"Node {sequence} created")
        return {
            "node": node,
            "unlock_payload": encode_payload(node.node_id, node.correct_code),
        }

    async def update_node(
        self,
        admin_secret: str,
        sequence: int,
        clue: str,
        question: str,
        expected_answer: Optional[str],
        is_active: bool,
    ) -> Node:
        await self.admin.require(admin_secret)
        sequence = _require_positive_int(sequence, "Node sequence")
        clue = _require_text(clue, "Clue")
        question = _require_text(question, "Question")
        if expected_answer is not None and not isinstance(expected_answer, str):
            raise InvalidInput("Expected answer must be text")

        async with self.db.transaction() as db:
            node = await self.db.update_node(
                db, sequence, clue, question, expected_answer, bool(is_active)
            )

        logger.info(f"Node {sequence} updated (active={node.is_active})")
        return node

    async def list_active_nodes(self) -> List[Dict[str, Any]]:
        async with self.db.read() as db:
            nodes = await self.db.fetch_nodes(db, active_only=True)
        return [node.public_dict() for node in nodes]

    async def list_nodes(self, admin_secret: str) -> List[Dict[str, Any]]:
        """All nodes with their codes and unlock payloads, for reprinting."""
        await self.admin.require(admin_secret)
        async with self.db.read() as db:
            nodes = await self.db.fetch_nodes(db)
        result = []
        for node in nodes:
            data = node.to_dict()
            data["unlock_payload"] = encode_payload(node.node_id, node.correct_code)
            result.append(data)
        return result

    # Play

    async def validate_scan(
        self,
        team_id: int,
        payload: str,
    ) -> ScanOutcome:
        """
        Check a scanned payload for a team.

        @return: ScanOutcome; failures carry the error kind and message
        """
        try:
            node = await self.validator.validate_scan(team_id, payload)
        except HuntError as e:
            return ScanOutcome.failure(e)
        return ScanOutcome.success(node)

    async def submit_answer(
        self,
        team_id: int,
        sequence: int,
        text: str,
    ) -> Submission:
        team_id = _require_positive_int(team_id, "Team id")
        sequence = _require_positive_int(sequence, "Node sequence")
        return await self.workflow.submit_answer(team_id, sequence, text)

    async def get_team_submissions(self, team_id: int) -> List[Submission]:
        team_id = _require_positive_int(team_id, "Team id")
        return await self.workflow.get_team_submissions(team_id)

    # Review

    async def list_pending_submissions(self, admin_secret: str) -> List[Submission]:
        await self.admin.require(admin_secret)
        return await self.workflow.list_submissions(status=STATUS_PENDING)

    async def list_all_submissions(self, admin_secret: str) -> List[Submission]:
        await self.admin.require(admin_secret)
        return await self.workflow.list_submissions()

    async def review_submission(
        self,
        admin_secret: str,
        submission_id: int,
        approved: bool,
        reviewer_id: str,
    ) -> Submission:
        await self.admin.require(admin_secret)
        reviewer_id = _require_text(reviewer_id, "Reviewer")
        submission_id = _require_positive_int(submission_id, "Submission id")
        return await self.workflow.review_submission(submission_id, bool(approved), reviewer_id)

    async def override_team_progress(
        self,
        admin_secret: str,
        team_id: int,
        new_stage: int,
        points_to_add: int,
    ) -> Team:
        await self.admin.require(admin_secret)
        team_id = _require_positive_int(team_id, "Team id")
        return await self.progression.override_progress(team_id, new_stage, points_to_add)

    async def get_game_stats(self) -> Dict[str, int]:
        async with self.db.read() as db:
            active_teams = await self.db.count_teams(db)
            by_status = await self.db.count_submissions_by_status(db)
            active_nodes = await self.db.count_active_nodes(db)

        return {
            "active_teams": active_teams,
            "pending_count": by_status.get(STATUS_PENDING, 0),
            "accepted_count": by_status.get(STATUS_ACCEPTED, 0),
            "rejected_count": by_status.get(STATUS_REJECTED, 0),
            "active_node_count": active_nodes,
            "total_submissions": sum(by_status.values()),
        }

    # Settings

    async def verify_admin_secret(self, candidate: str) -> bool:
        return await self.admin.verify_secret(candidate)

    async def get_settings(self) -> Optional[Dict[str, Any]]:
        settings = await self.admin.get_settings()
        return settings.public_dict() if settings else None

    async def initialize_settings(
        self,
        total_nodes: int,
        points_per_node: int,
        admin_secret: str,
        current_secret: Optional[str] = None,
    ) -> Dict[str, Any]:
        settings = await self.admin.initialize_settings(
            total_nodes, points_per_node, admin_secret, current_secret
        )
        return settings.public_dict()

    async def update_settings(
        self,
        admin_secret: str,
        total_nodes: int,
        game_active: bool,
        points_per_node: int,
        new_admin_secret: Optional[str] = None,
    ) -> Dict[str, Any]:
        await self.admin.require(admin_secret)
        settings = await self.admin.update_settings(
            total_nodes, game_active, points_per_node, new_admin_secret
        )
        return settings.public_dict()

    async def toggle_active(
        self,
        admin_secret: str,
        active: bool,
    ) -> Dict[str, Any]:
        await self.admin.require(admin_secret)
        settings = await self.admin.toggle_active(active)
        return settings.public_dict()

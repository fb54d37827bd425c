"""
Records exchanged between the store, the game components and the web layer.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

STATUS_PENDING = "pending"
STATUS_ACCEPTED = "accepted"
STATUS_REJECTED = "rejected"

# SQLite INTEGER columns hold signed 64-bit values
STORE_INT_MIN = -(2 ** 63)
STORE_INT_MAX = 2 ** 63 - 1


def fits_store_int(value: Any) -> bool:
    """True for a plain int (not bool) that an INTEGER column can hold."""
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and STORE_INT_MIN <= value <= STORE_INT_MAX
    )


def is_store_id(value: Any) -> bool:
    """True for a positive id or sequence number the store can hold."""
    return fits_store_int(value) and value >= 1


@dataclass
class Team:
    """
    A registered team.

    Attributes:
        id: Store identity
        name: Display name
        members: Ordered, non-empty list of member names
        current_stage: Sequence number of the node the team must complete next
        score: Accumulated points
        created_at: Registration time (epoch seconds)
        team_code: Short join code
    """
    id: int
    name: str
    members: List[str]
    current_stage: int
    score: int
    created_at: float
    team_code: str

    @classmethod
    def from_row(cls, row: Any) -> "Team":
        return cls(
            id=row["id"],
            name=row["name"],
            members=json.loads(row["members"]),
            current_stage=row["current_stage"],
            score=row["score"],
            created_at=row["created_at"],
            team_code=row["team_code"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "members": list(self.members),
            "current_stage": self.current_stage,
            "score": self.score,
            "created_at": self.created_at,
            "team_code": self.team_code,
        }


@dataclass
class Node:
    """
    A physical hunt location.

    ``correct_code`` is the scan secret; only admin views may see it.
    """
    node_id: int
    clue: str
    question: str
    correct_code: str
    expected_answer: Optional[str]
    is_active: bool
    created_at: float

    @classmethod
    def from_row(cls, row: Any) -> "Node":
        return cls(
            node_id=row["node_id"],
            clue=row["clue"],
            question=row["question"],
            correct_code=row["correct_code"],
            expected_answer=row["expected_answer"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
        )

    def public_dict(self) -> Dict[str, Any]:
        """Fields safe to show players."""
        return {
            "node_id": self.node_id,
            "clue": self.clue,
            "question": self.question,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "clue": self.clue,
            "question": self.question,
            "correct_code": self.correct_code,
            "expected_answer": self.expected_answer,
            "is_active": self.is_active,
            "created_at": self.created_at,
        }


@dataclass
class Submission:
    """A team's answer to a node question and its review state."""
    id: int
    team_id: int
    node_id: int
    submitted_answer: str
    status: str
    submitted_at: float
    reviewed_at: Optional[float] = None
    reviewed_by: Optional[str] = None
    team: Optional[Team] = None

    @property
    def is_pending(self) -> bool:
        return self.status == STATUS_PENDING

    @classmethod
    def from_row(cls, row: Any, team: Optional[Team] = None) -> "Submission":
        return cls(
            id=row["id"],
            team_id=row["team_id"],
            node_id=row["node_id"],
            submitted_answer=row["submitted_answer"],
            status=row["status"],
            submitted_at=row["submitted_at"],
            reviewed_at=row["reviewed_at"],
            reviewed_by=row["reviewed_by"],
            team=team,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "team_id": self.team_id,
            "node_id": self.node_id,
            "submitted_answer": self.submitted_answer,
            "status": self.status,
            "submitted_at": self.submitted_at,
            "reviewed_at": self.reviewed_at,
            "reviewed_by": self.reviewed_by,
        }
        if self.team is not None:
            data["team"] = {
                "id": self.team.id,
                "name": self.team.name,
                "members": list(self.team.members),
                "current_stage": self.team.current_stage,
            }
        return data


@dataclass
class GameSettings:
    """The process-wide game configuration row."""
    total_nodes: int
    game_active: bool
    points_per_node: int
    admin_secret_hash: str = field(repr=False)

    @classmethod
    def from_row(cls, row: Any) -> "GameSettings":
        return cls(
            total_nodes=row["total_nodes"],
            game_active=bool(row["game_active"]),
            points_per_node=row["points_per_node"],
            admin_secret_hash=row["admin_secret_hash"],
        )

    def public_dict(self) -> Dict[str, Any]:
        return {
            "total_nodes": self.total_nodes,
            "game_active": self.game_active,
            "points_per_node": self.points_per_node,
        }


@dataclass
class ScanOutcome:
    """Result of validating a scanned unlock payload."""
    valid: bool
    node: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, node: Node) -> "ScanOutcome":
        return cls(valid=True, node=node.public_dict(), message="Node unlocked!")

    @classmethod
    def failure(cls, error: Any) -> "ScanOutcome":
        return cls(valid=False, error=error.kind, message=error.message)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"valid": self.valid, "message": self.message}
        if self.valid:
            data["node"] = self.node
        else:
            data["error"] = self.error
        return data

"""
Unlock payload codec and scan validation.

A node's printed code carries ``{"nodeId": <sequence>, "qrSecret": <code>}``.
Validating a scan never changes state; only reviewed answers move a team.
"""

import hmac
import json
import logging
from typing import Any, Tuple

from .database import DatabaseManager
from .errors import (
    GamePaused,
    MalformedPayload,
    OutOfSequence,
    UnknownNode,
    UnknownTeam,
    WrongCode,
)
from .models import Node, is_store_id

logger = logging.getLogger(__name__)

SEQUENCE_KEYS = ("nodeId", "sequence")
SECRET_KEYS = ("qrSecret", "codeSecret")


def encode_payload(node_id: int, code_secret: str) -> str:
    """
    Build the unlock payload printed for a node.

    @param node_id: Node sequence number
    @param code_secret: The node's correct code
    @return: Compact JSON string
    """
    return json.dumps({"nodeId": node_id, "qrSecret": code_secret}, separators=(",", ":"))


def _first_present(data: dict, keys: Tuple[str, ...]) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def decode_payload(scanned_payload: Any) -> Tuple[int, str]:
    """
    Parse a scanned payload.

    @param scanned_payload: Raw string read from the code
    @return: Tuple of (node sequence, code secret)
    @raise MalformedPayload: If the payload is not a well-formed unlock payload
    """
    if not isinstance(scanned_payload, str):
        raise MalformedPayload()
    try:
        data = json.loads(scanned_payload.strip())
    except ValueError:
        raise MalformedPayload() from None
    if not isinstance(data, dict):
        raise MalformedPayload()

    sequence = _first_present(data, SEQUENCE_KEYS)
    secret = _first_present(data, SECRET_KEYS)

    if not is_store_id(sequence):
        raise MalformedPayload()
    if not isinstance(secret, str):
        raise MalformedPayload()
    return sequence, secret


class CodeValidator:
    """Decides whether a scanned payload unlocks a team's current node."""

    def __init__(self, db_manager: DatabaseManager) -> None:
        self.db = db_manager

    async def validate_scan(
        self,
        team_id: int,
        scanned_payload: str,
    ) -> Node:
        """
        Validate a scan for a team.

        Checks run in a fixed order: payload shape, team, node, game state,
        sequence, then code. A valid code for the wrong node is reported as
        out of sequence.

        @param team_id: Scanning team
        @param scanned_payload: Raw scanned string
        @return: The unlocked node (callers expose only its public fields)
        """
        sequence, secret = decode_payload(scanned_payload)
        if not is_store_id(team_id):
            raise UnknownTeam()

        async with self.db.read() as db:
            team = await self.db.fetch_team(db, team_id)
            if team is None:
                raise UnknownTeam()

            node = await self.db.fetch_node(db, sequence)
            if node is None or not node.is_active:
                raise UnknownNode()

            settings = await self.db.fetch_settings(db)

        if settings is not None and not settings.game_active:
            raise GamePaused()

        if team.current_stage != node.node_id:
            logger.info(
                f"Team {team_id} scanned node {node.node_id} at stage {team.current_stage}"
            )
            raise OutOfSequence()

        if not hmac.compare_digest(secret.encode("utf-8"), node.correct_code.encode("utf-8")):
            logger.info(f"Team {team_id} scanned a wrong code for node {node.node_id}")
            raise WrongCode()

        logger.info(f"Team {team_id} unlocked node {node.node_id}")
        return node

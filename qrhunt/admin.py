"""
Admin gate: the shared admin secret and the game settings singleton.

The secret is kept only as a salted PBKDF2 hash and checked in constant time.
"""

import asyncio
import hashlib
import hmac
import logging
import secrets
from typing import Any, Optional

from .database import DatabaseManager
from .errors import InvalidConfiguration, NotFound, Unauthorized
from .models import GameSettings, fits_store_int, is_store_id

logger = logging.getLogger(__name__)

HASH_SCHEME = "pbkdf2_sha256"
SALT_BYTES = 16


def hash_secret(secret: str, iterations: int) -> str:
    """
    Hash an admin secret for storage.

    @param secret: Plaintext secret
    @param iterations: PBKDF2 iteration count
    @return: Encoded hash ``pbkdf2_sha256$<iterations>$<salt>$<digest>``
    """
    salt = secrets.token_bytes(SALT_BYTES)
    digest = hashlib.pbkdf2_hmac("sha256", secret.encode("utf-8"), salt, iterations)
    return f"{HASH_SCHEME}${iterations}${salt.hex()}${digest.hex()}"


def check_secret(candidate: str, encoded: str) -> bool:
    """
    Compare a candidate secret against a stored hash in constant time.

    @param candidate: Secret supplied by the caller
    @param encoded: Stored hash from hash_secret
    @return: True on an exact match
    """
    try:
        scheme, iterations, salt_hex, digest_hex = encoded.split("$")
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(digest_hex)
        rounds = int(iterations)
    except ValueError:
        logger.error("Stored admin secret hash is unreadable")
        return False
    if scheme != HASH_SCHEME:
        logger.error(f"Unsupported admin secret hash scheme: {scheme}")
        return False

    actual = hashlib.pbkdf2_hmac("sha256", candidate.encode("utf-8"), salt, rounds)
    return hmac.compare_digest(actual, expected)


def _validate_settings(total_nodes: Any, points_per_node: Any) -> None:
    if not is_store_id(total_nodes):
        raise InvalidConfiguration("total_nodes must be a positive integer")
    if not fits_store_int(points_per_node) or points_per_node < 0:
        raise InvalidConfiguration("points_per_node must be a non-negative integer")


def _validate_secret(secret: Any) -> None:
    if not isinstance(secret, str) or not secret.strip():
        raise InvalidConfiguration("admin secret must not be blank")


class AdminGate:
    """Guards admin operations and owns the game settings record."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        config: Any,
    ) -> None:
        self.db = db_manager
        self.config = config
        self.iterations = config.get("security", "hash_iterations")

    async def get_settings(self) -> Optional[GameSettings]:
        async with self.db.read() as db:
            return await self.db.fetch_settings(db)

    async def verify_secret(
        self,
        candidate: Optional[str],
    ) -> bool:
        """
        Check a candidate admin secret.

        @param candidate: Secret supplied by the caller
        @return: False when no settings exist yet or the secret does not match
        """
        if not isinstance(candidate, str):
            return False
        settings = await self.get_settings()
        if settings is None:
            return False
        # PBKDF2 is CPU-bound; keep it off the event loop
        return await asyncio.to_thread(check_secret, candidate, settings.admin_secret_hash)

    async def require(
        self,
        candidate: Optional[str],
    ) -> None:
        """
        Raise Unauthorized unless the candidate is the admin secret.
        """
        if not await self.verify_secret(candidate):
            logger.warning("Rejected admin request with invalid secret")
            raise Unauthorized()

    async def initialize_settings(
        self,
        total_nodes: int,
        points_per_node: int,
        admin_secret: str,
        current_secret: Optional[str] = None,
    ) -> GameSettings:
        """
        Create the settings record, or overwrite it with the current secret.

        The game is (re)activated either way.

        @param total_nodes: Number of nodes in the hunt
        @param points_per_node: Points per accepted answer
        @param admin_secret: New admin secret
        @param current_secret: Existing secret, required once settings exist
        @return: Stored settings
        """
        _validate_settings(total_nodes, points_per_node)
        _validate_secret(admin_secret)

        settings = GameSettings(
            total_nodes=total_nodes,
            game_active=True,
            points_per_node=points_per_node,
            admin_secret_hash=await asyncio.to_thread(hash_secret, admin_secret, self.iterations),
        )

        async with self.db.transaction() as db:
            existing = await self.db.fetch_settings(db)
            if existing is not None:
                if not isinstance(current_secret, str) or not await asyncio.to_thread(
                    check_secret, current_secret, existing.admin_secret_hash
                ):
                    raise Unauthorized("Settings already exist; current admin secret required")
            await self.db.save_settings(db, settings)

        logger.info(
            f"Game settings {'re' if existing else ''}initialized: "
            f"{total_nodes} nodes, {points_per_node} points per node"
        )
        return settings

    async def update_settings(
        self,
        total_nodes: int,
        game_active: bool,
        points_per_node: int,
        admin_secret: Optional[str] = None,
    ) -> GameSettings:
        """
        Overwrite the settings fields.

        @param admin_secret: Replacement secret; None keeps the current one
        @return: Stored settings
        @raise NotFound: If settings were never initialized
        """
        _validate_settings(total_nodes, points_per_node)
        if admin_secret is not None:
            _validate_secret(admin_secret)
            secret_hash = await asyncio.to_thread(hash_secret, admin_secret, self.iterations)

        async with self.db.transaction() as db:
            existing = await self.db.fetch_settings(db)
            if existing is None:
                raise NotFound("Game settings not found")
            settings = GameSettings(
                total_nodes=total_nodes,
                game_active=bool(game_active),
                points_per_node=points_per_node,
                admin_secret_hash=(
                    secret_hash if admin_secret is not None else existing.admin_secret_hash
                ),
            )
            await self.db.save_settings(db, settings)

        logger.info(
            f"Game settings updated: {total_nodes} nodes, {points_per_node} points, "
            f"active={settings.game_active}"
            + (", admin secret rotated" if admin_secret is not None else "")
        )
        return settings

    async def toggle_active(
        self,
        active: bool,
    ) -> GameSettings:
        async with self.db.transaction() as db:
            if not await self.db.set_game_active(db, bool(active)):
                raise NotFound("Game settings not found")
            settings = await self.db.fetch_settings(db)

        logger.info(f"Game {'resumed' if active else 'paused'}")
        return settings

"""
Database operations for the QR hunt.
"""

import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

import aiosqlite

from .errors import NotFound
from .models import GameSettings, Node, Submission, Team, STATUS_PENDING

logger = logging.getLogger(__name__)

_SUBMISSION_WITH_TEAM = """
    SELECT
        s.id, s.team_id, s.node_id, s.submitted_answer, s.status,
        s.submitted_at, s.reviewed_at, s.reviewed_by,
        t.name AS team_name, t.members AS team_members,
        t.current_stage AS team_current_stage, t.score AS team_score,
        t.created_at AS team_created_at, t.team_code AS team_team_code
    FROM submissions s
    LEFT JOIN teams t ON t.id = s.team_id
"""


class DatabaseManager:
    """Manages hunt storage with per-operation transactions and a leaderboard cache."""

    def __init__(
        self,
        db_path: str,
        config: Any,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.db_path = db_path
        self.config = config
        self.clock = clock or time.time
        self.busy_timeout = float(config.get("database", "busy_timeout") or 5.0)
        # Simple in-memory cache with TTL
        self._cache: Dict[str, Tuple[Any, float]] = {}
        self._cache_ttl = config.get("cache", "ttl") or 0

    def _get_cache_key(self, *args: Any) -> str:
        """
        Generate a cache key from arguments.

        @param args: Variable arguments to create cache key from
        @return: String cache key generated from arguments
        """
        return ":".join(str(arg) for arg in args)

    def _get_from_cache(
        self,
        cache_key: str,
    ) -> Optional[Any]:
        """
        Get value from cache if valid.

        @param cache_key: String cache key to lookup
        @return: Cached data if valid, None if expired or not found
        """
        if cache_key in self._cache:
            data, timestamp = self._cache[cache_key]

            if time.monotonic() - timestamp < self._cache_ttl:
                return data
            else:
                del self._cache[cache_key]
        return None

    def _set_cache(
        self,
        cache_key: str,
        data: Any,
    ) -> None:
        self._cache[cache_key] = (data, time.monotonic())

    def _invalidate_cache(self) -> None:
        self._cache.clear()

    def now(self) -> float:
        return self.clock()

    @asynccontextmanager
    async def read(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Open a connection for read-only work.

        @return: Connection with rows addressable by column name
        """
        async with aiosqlite.connect(
            self.db_path, isolation_level=None, timeout=self.busy_timeout
        ) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys=ON")
            yield db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Open a write transaction.

        BEGIN IMMEDIATE takes the database write lock up front, so concurrent
        writers serialize instead of reading stale rows. Everything done on the
        yielded connection commits together or not at all.

        @return: Connection inside an open transaction
        """
        async with self.read() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield db
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            await db.execute("COMMIT")
        # Any committed write may move the leaderboard
        self._invalidate_cache()

    async def init_db(self) -> None:
        """
        Initialize the SQLite database schema and indexes.
        """
        async with aiosqlite.connect(self.db_path) as db:
            # Enable WAL mode for better concurrent access
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA synchronous=NORMAL")

            await db.execute("""
                CREATE TABLE IF NOT EXISTS teams (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    members TEXT NOT NULL,
                    current_stage INTEGER NOT NULL DEFAULT 1 CHECK (current_stage >= 1),
                    score INTEGER NOT NULL DEFAULT 0 CHECK (score >= 0),
                    created_at REAL NOT NULL,
                    team_code TEXT NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS nodes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    node_id INTEGER NOT NULL CHECK (node_id >= 1),
                    clue TEXT NOT NULL,
                    question TEXT NOT NULL,
                    correct_code TEXT NOT NULL,
                    expected_answer TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at REAL NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS submissions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    team_id INTEGER NOT NULL REFERENCES teams(id),
                    node_id INTEGER NOT NULL,
                    submitted_answer TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending'
                        CHECK (status IN ('pending', 'accepted', 'rejected')),
                    submitted_at REAL NOT NULL,
                    reviewed_at REAL,
                    reviewed_by TEXT
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS game_settings (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    total_nodes INTEGER NOT NULL,
                    game_active INTEGER NOT NULL DEFAULT 1,
                    points_per_node INTEGER NOT NULL,
                    admin_secret_hash TEXT NOT NULL
                )
            """)

            await db.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_team_code ON teams(team_code)"
            )
            await db.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_node_sequence ON nodes(node_id)"
            )
            await db.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_node_code ON nodes(correct_code)"
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_node_active ON nodes(is_active)"
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_submission_status ON submissions(status)"
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_submission_team ON submissions(team_id)"
            )

            await db.commit()
        logger.info(f"Database ready at {self.db_path}")

    # Teams

    async def insert_team(
        self,
        db: aiosqlite.Connection,
        name: str,
        members: List[str],
        team_code: str,
    ) -> Team:
        """
        Insert a team at stage 1 with no points.

        @param db: Connection inside a write transaction
        @param name: Team display name
        @param members: Member names
        @param team_code: Join code, must be unique
        @return: The stored team
        @raise aiosqlite.IntegrityError: If the team code is taken
        """
        created_at = self.now()
        cursor = await db.execute(
            "INSERT INTO teams (name, members, current_stage, score, created_at, team_code) "
            "VALUES (?, ?, 1, 0, ?, ?)",
            (name, json.dumps(members), created_at, team_code),
        )
        return Team(
            id=cursor.lastrowid,
            name=name,
            members=list(members),
            current_stage=1,
            score=0,
            created_at=created_at,
            team_code=team_code,
        )

    async def fetch_team(
        self,
        db: aiosqlite.Connection,
        team_id: int,
    ) -> Optional[Team]:
        cursor = await db.execute("SELECT * FROM teams WHERE id = ?", (team_id,))
        row = await cursor.fetchone()
        return Team.from_row(row) if row else None

    async def fetch_team_by_code(
        self,
        db: aiosqlite.Connection,
        team_code: str,
    ) -> Optional[Team]:
        cursor = await db.execute(
            "SELECT * FROM teams WHERE team_code = ?", (team_code,)
        )
        row = await cursor.fetchone()
        return Team.from_row(row) if row else None

    async def fetch_ranked_teams(
        self,
        db: aiosqlite.Connection,
        limit: Optional[int] = None,
    ) -> List[Team]:
        """
        Get teams in leaderboard order.

        @param db: Active connection
        @param limit: Maximum number of teams, None for all
        @return: Teams by score, then stage, then earliest registration
        """
        cursor = await db.execute(
            """
            SELECT * FROM teams
            ORDER BY score DESC, current_stage DESC, created_at ASC, id ASC
            LIMIT ?
            """,
            (limit if limit is not None else -1,),
        )
        return [Team.from_row(row) for row in await cursor.fetchall()]

    async def advance_team(
        self,
        db: aiosqlite.Connection,
        team_id: int,
        points_to_add: int,
    ) -> Team:
        """
        Move a team one stage forward and credit points.

        The increment happens in SQL so it always applies to the latest row.

        @param db: Connection inside a write transaction
        @param team_id: Team to advance
        @param points_to_add: Points credited
        @return: The team after the update
        @raise NotFound: If the team does not exist
        """
        cursor = await db.execute(
            "UPDATE teams SET current_stage = current_stage + 1, score = score + ? "
            "WHERE id = ?",
            (points_to_add, team_id),
        )
        if cursor.rowcount == 0:
            raise NotFound(f"Team {team_id} not found")
        return await self.fetch_team(db, team_id)

    async def set_team_progress(
        self,
        db: aiosqlite.Connection,
        team_id: int,
        current_stage: int,
        score: int,
    ) -> None:
        cursor = await db.execute(
            "UPDATE teams SET current_stage = ?, score = ? WHERE id = ?",
            (current_stage, score, team_id),
        )
        if cursor.rowcount == 0:
            raise NotFound(f"Team {team_id} not found")

    async def count_teams(self, db: aiosqlite.Connection) -> int:
        cursor = await db.execute("SELECT COUNT(*) FROM teams")
        return (await cursor.fetchone())[0]

    async def get_leaderboard(
        self,
        limit: int,
    ) -> List[Team]:
        """
        Get the leaderboard, served from cache while it is fresh.

        @param limit: Maximum number of teams to return
        @return: Teams in leaderboard order
        """
        cache_key = self._get_cache_key("leaderboard", limit)
        cached_data = self._get_from_cache(cache_key)

        if cached_data is None:
            async with self.read() as db:
                cached_data = await self.fetch_ranked_teams(db, limit)
            self._set_cache(cache_key, cached_data)

        # callers get their own copies; the cached list stays untouched
        return [replace(team, members=list(team.members)) for team in cached_data]

    # Nodes

    async def insert_node(
        self,
        db: aiosqlite.Connection,
        node_id: int,
        clue: str,
        question: str,
        correct_code: str,
        expected_answer: Optional[str] = None,
    ) -> Node:
        """
        Insert an active node.

        @raise aiosqlite.IntegrityError: If the sequence number or code is taken
        """
        created_at = self.now()
        await db.execute(
            "INSERT INTO nodes (node_id, clue, question, correct_code, expected_answer, "
            "is_active, created_at) VALUES (?, ?, ?, ?, ?, 1, ?)",
            (node_id, clue, question, correct_code, expected_answer, created_at),
        )
        return Node(
            node_id=node_id,
            clue=clue,
            question=question,
            correct_code=correct_code,
            expected_answer=expected_answer,
            is_active=True,
            created_at=created_at,
        )

    async def fetch_node(
        self,
        db: aiosqlite.Connection,
        node_id: int,
    ) -> Optional[Node]:
        cursor = await db.execute("SELECT * FROM nodes WHERE node_id = ?", (node_id,))
        row = await cursor.fetchone()
        return Node.from_row(row) if row else None

    async def fetch_nodes(
        self,
        db: aiosqlite.Connection,
        active_only: bool = False,
    ) -> List[Node]:
        if active_only:
            cursor = await db.execute(
                "SELECT * FROM nodes WHERE is_active = 1 ORDER BY node_id"
            )
        else:
            cursor = await db.execute("SELECT * FROM nodes ORDER BY node_id")
        return [Node.from_row(row) for row in await cursor.fetchall()]

    async def update_node(
        self,
        db: aiosqlite.Connection,
        node_id: int,
        clue: str,
        question: str,
        expected_answer: Optional[str],
        is_active: bool,
    ) -> Node:
        cursor = await db.execute(
            "UPDATE nodes SET clue = ?, question = ?, expected_answer = ?, is_active = ? "
            "WHERE node_id = ?",
            (clue, question, expected_answer, int(is_active), node_id),
        )
        if cursor.rowcount == 0:
            raise NotFound(f"Node {node_id} not found")
        return await self.fetch_node(db, node_id)

    async def count_active_nodes(self, db: aiosqlite.Connection) -> int:
        cursor = await db.execute("SELECT COUNT(*) FROM nodes WHERE is_active = 1")
        return (await cursor.fetchone())[0]

    # Submissions

    async def insert_submission(
        self,
        db: aiosqlite.Connection,
        team_id: int,
        node_id: int,
        submitted_answer: str,
    ) -> Submission:
        submitted_at = self.now()
        cursor = await db.execute(
            "INSERT INTO submissions (team_id, node_id, submitted_answer, status, submitted_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (team_id, node_id, submitted_answer, STATUS_PENDING, submitted_at),
        )
        return Submission(
            id=cursor.lastrowid,
            team_id=team_id,
            node_id=node_id,
            submitted_answer=submitted_answer,
            status=STATUS_PENDING,
            submitted_at=submitted_at,
        )

    def _submission_from_joined_row(self, row: Any) -> Submission:
        team = None
        if row["team_name"] is not None:
            team = Team(
                id=row["team_id"],
                name=row["team_name"],
                members=json.loads(row["team_members"]),
                current_stage=row["team_current_stage"],
                score=row["team_score"],
                created_at=row["team_created_at"],
                team_code=row["team_team_code"],
            )
        return Submission.from_row(row, team=team)

    async def fetch_submission(
        self,
        db: aiosqlite.Connection,
        submission_id: int,
    ) -> Optional[Submission]:
        cursor = await db.execute(
            _SUBMISSION_WITH_TEAM + " WHERE s.id = ?", (submission_id,)
        )
        row = await cursor.fetchone()
        return self._submission_from_joined_row(row) if row else None

    async def fetch_submissions(
        self,
        db: aiosqlite.Connection,
        status: Optional[str] = None,
        team_id: Optional[int] = None,
    ) -> List[Submission]:
        """
        Get submissions joined with their team, newest first.

        @param db: Active connection
        @param status: Only submissions with this status (optional)
        @param team_id: Only submissions of this team (optional)
        @return: Matching submissions
        """
        clauses = []
        params: List[Any] = []
        if status is not None:
            clauses.append("s.status = ?")
            params.append(status)
        if team_id is not None:
            clauses.append("s.team_id = ?")
            params.append(team_id)

        query = _SUBMISSION_WITH_TEAM
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY s.submitted_at DESC, s.id DESC"

        cursor = await db.execute(query, params)
        return [self._submission_from_joined_row(row) for row in await cursor.fetchall()]

    async def has_pending_submission(
        self,
        db: aiosqlite.Connection,
        team_id: int,
        node_id: int,
    ) -> bool:
        cursor = await db.execute(
            "SELECT 1 FROM submissions WHERE team_id = ? AND node_id = ? AND status = ? LIMIT 1",
            (team_id, node_id, STATUS_PENDING),
        )
        return await cursor.fetchone() is not None

    async def mark_reviewed(
        self,
        db: aiosqlite.Connection,
        submission_id: int,
        status: str,
        reviewed_by: str,
    ) -> bool:
        """
        Move a pending submission to a terminal status.

        @return: False if the submission was no longer pending
        """
        cursor = await db.execute(
            "UPDATE submissions SET status = ?, reviewed_at = ?, reviewed_by = ? "
            "WHERE id = ? AND status = ?",
            (status, self.now(), reviewed_by, submission_id, STATUS_PENDING),
        )
        return cursor.rowcount == 1

    async def count_submissions_by_status(
        self,
        db: aiosqlite.Connection,
    ) -> Dict[str, int]:
        cursor = await db.execute(
            "SELECT status, COUNT(*) FROM submissions GROUP BY status"
        )
        return {status: count for status, count in await cursor.fetchall()}

    # Settings

    async def fetch_settings(
        self,
        db: aiosqlite.Connection,
    ) -> Optional[GameSettings]:
        cursor = await db.execute("SELECT * FROM game_settings WHERE id = 1")
        row = await cursor.fetchone()
        return GameSettings.from_row(row) if row else None

    async def save_settings(
        self,
        db: aiosqlite.Connection,
        settings: GameSettings,
    ) -> None:
        """
        Create or overwrite the settings row.

        @param db: Connection inside a write transaction
        @param settings: Complete settings record
        """
        await db.execute(
            """
            INSERT INTO game_settings (id, total_nodes, game_active, points_per_node, admin_secret_hash)
            VALUES (1, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                total_nodes = excluded.total_nodes,
                game_active = excluded.game_active,
                points_per_node = excluded.points_per_node,
                admin_secret_hash = excluded.admin_secret_hash
            """,
            (
                settings.total_nodes,
                int(settings.game_active),
                settings.points_per_node,
                settings.admin_secret_hash,
            ),
        )

    async def set_game_active(
        self,
        db: aiosqlite.Connection,
        active: bool,
    ) -> bool:
        cursor = await db.execute(
            "UPDATE game_settings SET game_active = ? WHERE id = 1", (int(active),)
        )
        return cursor.rowcount == 1

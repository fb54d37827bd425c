"""
Shared pytest fixtures for the QR hunt test suite

Provides:
- Isolated configuration and SQLite database per test
- A deterministic clock so registration order is well defined
- Service and web client fixtures
"""

import json

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from qrhunt.config import HuntConfig
from qrhunt.database import DatabaseManager
from qrhunt.hunt import HuntSystem
from qrhunt.service import HuntService

ADMIN_SECRET = "hunt-master-42"
POINTS_PER_NODE = 100
TOTAL_NODES = 3

CONFIG_ENV_VARS = [
    "HUNT_NAME", "HOST", "WEB_PORT", "CORS_ENABLED", "DB_PATH", "DB_BUSY_TIMEOUT",
    "DEFAULT_POINTS_PER_NODE", "LEADERBOARD_LIMIT", "MAX_LEADERBOARD_ENTRIES",
    "MAX_ANSWER_LENGTH", "TEAM_CODE_LENGTH", "HASH_ITERATIONS", "CACHE_TTL", "LOG_LEVEL",
]


class FakeClock:
    """Clock that moves forward one second per reading."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        self.current += 1.0
        return self.current


@pytest.fixture
def clean_env(monkeypatch):
    """Remove config environment overrides inherited from the shell"""
    for var in CONFIG_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


@pytest.fixture
def config(tmp_path, clean_env):
    """Config pointing at a temporary database, with cheap secret hashing"""
    path = tmp_path / "hunt_config.json"
    path.write_text(json.dumps({
        "database": {"path": str(tmp_path / "hunt.db")},
        "security": {"hash_iterations": 1000},
    }))
    return HuntConfig(str(path))


@pytest_asyncio.fixture
async def db(config):
    manager = DatabaseManager(config.get("database", "path"), config, clock=FakeClock())
    await manager.init_db()
    return manager


@pytest_asyncio.fixture
async def service(db, config):
    return HuntService(db, config)


@pytest_asyncio.fixture
async def game(service):
    """Service with settings initialized and nodes 1..TOTAL_NODES created"""
    await service.initialize_settings(TOTAL_NODES, POINTS_PER_NODE, ADMIN_SECRET)
    payloads = {}
    for sequence in range(1, TOTAL_NODES + 1):
        result = await service.create_node(
            ADMIN_SECRET,
            sequence,
            f"Clue {sequence}",
            f"Question {sequence}?",
            expected_answer=f"answer {sequence}",
        )
        payloads[sequence] = result["unlock_payload"]
    service.payloads = payloads
    return service


@pytest_asyncio.fixture
async def team_id(service):
    result = await service.create_team("Trailblazers", ["Ada", "Grace"])
    return result["team_id"]


@pytest_asyncio.fixture
async def system(config):
    hunt = HuntSystem(config)
    await hunt.init_db()
    return hunt


@pytest_asyncio.fixture
async def client(system):
    async with TestClient(TestServer(system.create_app())) as test_client:
        yield test_client

"""
Tests for the aiohttp web API.
"""
import pytest

from tests.conftest import ADMIN_SECRET

ADMIN = {"X-Admin-Secret": ADMIN_SECRET}


async def setup_game(client, total_nodes=2):
    resp = await client.post("/api/settings", json={
        "total_nodes": total_nodes, "points_per_node": 100, "admin_secret": ADMIN_SECRET,
    })
    assert resp.status == 201
    payloads = {}
    for sequence in range(1, total_nodes + 1):
        resp = await client.post("/api/admin/nodes", headers=ADMIN, json={
            "node_id": sequence, "clue": f"Clue {sequence}", "question": f"Q{sequence}?",
        })
        assert resp.status == 201
        payloads[sequence] = (await resp.json())["unlock_payload"]
    return payloads


async def register(client, name="Owls"):
    resp = await client.post("/api/teams", json={"name": name, "members": ["Ada", "Alan"]})
    assert resp.status == 201
    return await resp.json()


class TestPlayerFlow:
    """End-to-end play through the HTTP API."""

    @pytest.mark.asyncio
    async def test_scan_submit_review(self, client):
        payloads = await setup_game(client)
        team = await register(client)
        team_id = team["team_id"]

        resp = await client.post("/api/scan", json={"team_id": team_id, "payload": payloads[1]})
        body = await resp.json()
        assert resp.status == 200
        assert body["valid"] is True
        assert body["node"] == {"node_id": 1, "clue": "Clue 1", "question": "Q1?"}

        resp = await client.post("/api/submissions", json={
            "team_id": team_id, "node_id": 1, "answer": "red door",
        })
        assert resp.status == 201
        submission_id = (await resp.json())["submission"]["id"]

        resp = await client.get("/api/admin/submissions", headers=ADMIN)
        queue = (await resp.json())["submissions"]
        assert [s["id"] for s in queue] == [submission_id]
        assert queue[0]["team"]["name"] == "Owls"

        resp = await client.post(
            f"/api/admin/submissions/{submission_id}/review",
            headers=ADMIN,
            json={"approved": True, "reviewer": "judge"},
        )
        assert resp.status == 200
        assert (await resp.json())["submission"]["status"] == "accepted"

        resp = await client.post(
            f"/api/admin/submissions/{submission_id}/review",
            headers=ADMIN,
            json={"approved": True},
        )
        assert resp.status == 409
        assert (await resp.json())["error"] == "already_reviewed"

        resp = await client.get(f"/api/teams/{team_id}")
        data = (await resp.json())["team"]
        assert (data["current_stage"], data["score"], data["completed"]) == (2, 100, False)

    @pytest.mark.asyncio
    async def test_scan_failures_are_structured(self, client):
        payloads = await setup_game(client)
        team_id = (await register(client))["team_id"]

        resp = await client.post("/api/scan", json={"team_id": team_id, "payload": payloads[2]})
        body = await resp.json()
        assert resp.status == 200
        assert body == {
            "valid": False,
            "error": "out_of_sequence",
            "message": "Wrong sequence! Complete previous nodes first.",
        }

        resp = await client.post("/api/scan", json={"team_id": team_id, "payload": "garbage"})
        assert (await resp.json())["error"] == "malformed_payload"

    @pytest.mark.asyncio
    async def test_team_lookup_and_history(self, client):
        await setup_game(client)
        team = await register(client)

        resp = await client.get(f"/api/teams/code/{team['team_code']}")
        assert (await resp.json())["team"]["id"] == team["team_id"]

        resp = await client.get("/api/teams/code/ZZZZZZ")
        assert resp.status == 404

        resp = await client.get(f"/api/teams/{team['team_id']}/submissions")
        assert (await resp.json())["submissions"] == []

        resp = await client.get("/api/teams/not-a-number")
        assert resp.status == 400
        assert (await resp.json())["error"] == "invalid_input"

    @pytest.mark.asyncio
    async def test_leaderboard_and_stats(self, client):
        await setup_game(client)
        await register(client, "Owls")
        await register(client, "Larks")

        resp = await client.get("/api/leaderboard?limit=5")
        board = (await resp.json())["leaderboard"]
        assert [t["name"] for t in board] == ["Owls", "Larks"]
        assert [t["rank"] for t in board] == [1, 1]
        assert all(t["is_tied"] for t in board)
        assert "team_code" not in board[0]

        resp = await client.get("/api/stats")
        stats = await resp.json()
        assert stats["active_teams"] == 2
        assert stats["active_node_count"] == 2

        resp = await client.get("/")
        assert resp.status == 200
        html = await resp.text()
        assert "Owls" in html and "Larks" in html

    @pytest.mark.asyncio
    async def test_bad_body(self, client):
        resp = await client.post("/api/teams", data="not json")
        assert resp.status == 400
        assert (await resp.json())["error"] == "invalid_input"

    @pytest.mark.asyncio
    async def test_oversized_ids_are_rejected(self, client):
        payloads = await setup_game(client)
        team_id = (await register(client))["team_id"]

        resp = await client.get("/api/teams/9999999999999999999999999")
        assert resp.status == 400
        assert (await resp.json())["error"] == "invalid_input"

        resp = await client.post("/api/submissions", json={
            "team_id": team_id, "node_id": 10 ** 20, "answer": "far away",
        })
        assert resp.status == 400
        assert (await resp.json())["error"] == "invalid_input"

        resp = await client.post("/api/scan", json={
            "team_id": team_id, "payload": '{"nodeId": 100000000000000000000, "qrSecret": "x"}',
        })
        assert resp.status == 200
        assert (await resp.json())["error"] == "malformed_payload"

        resp = await client.post("/api/scan", json={
            "team_id": 2 ** 63, "payload": payloads[1],
        })
        assert resp.status == 400


class TestAdminApi:
    """Admin endpoints and the shared secret."""

    @pytest.mark.asyncio
    async def test_verify(self, client):
        resp = await client.post("/api/admin/verify", json={"secret": ADMIN_SECRET})
        assert (await resp.json())["valid"] is False

        await setup_game(client)

        resp = await client.post("/api/admin/verify", json={"secret": ADMIN_SECRET})
        assert (await resp.json())["valid"] is True

    @pytest.mark.asyncio
    async def test_admin_routes_require_secret(self, client):
        await setup_game(client)

        for method, path in [
            ("GET", "/api/admin/nodes"),
            ("GET", "/api/admin/submissions"),
        ]:
            resp = await client.request(method, path, headers={"X-Admin-Secret": "wrong"})
            assert resp.status == 401
            assert (await resp.json())["error"] == "unauthorized"

        resp = await client.post("/api/admin/nodes", json={
            "node_id": 9, "clue": "c", "question": "q",
        })
        assert resp.status == 401

    @pytest.mark.asyncio
    async def test_settings_endpoints(self, client):
        resp = await client.get("/api/settings")
        assert (await resp.json())["settings"] is None

        await setup_game(client)

        resp = await client.post("/api/settings", json={
            "total_nodes": 3, "points_per_node": 10, "admin_secret": "takeover",
        })
        assert resp.status == 401

        resp = await client.put("/api/admin/settings", headers=ADMIN, json={
            "total_nodes": 4, "game_active": True, "points_per_node": 50,
        })
        assert (await resp.json())["settings"]["points_per_node"] == 50

        resp = await client.post(
            "/api/admin/settings/active", headers=ADMIN, json={"active": False}
        )
        assert (await resp.json())["settings"]["game_active"] is False

        resp = await client.get("/api/settings")
        settings = (await resp.json())["settings"]
        assert settings == {"total_nodes": 4, "game_active": False, "points_per_node": 50}

        resp = await client.put("/api/admin/settings", headers=ADMIN, json={
            "total_nodes": 0, "game_active": True, "points_per_node": 50,
        })
        assert resp.status == 400
        assert (await resp.json())["error"] == "invalid_configuration"

    @pytest.mark.asyncio
    async def test_node_admin_and_override(self, client):
        await setup_game(client)
        team_id = (await register(client))["team_id"]

        resp = await client.put("/api/admin/nodes/2", headers=ADMIN, json={
            "clue": "Moved", "question": "Still?", "is_active": False,
        })
        assert (await resp.json())["node"]["is_active"] is False

        resp = await client.get("/api/nodes")
        assert [n["node_id"] for n in (await resp.json())["nodes"]] == [1]

        resp = await client.post(
            f"/api/admin/teams/{team_id}/progress",
            headers=ADMIN,
            json={"new_stage": 3, "points_to_add": 200},
        )
        team = (await resp.json())["team"]
        assert (team["current_stage"], team["score"]) == (3, 200)

        resp = await client.get(f"/api/teams/{team_id}")
        assert (await resp.json())["team"]["completed"] is True

    @pytest.mark.asyncio
    async def test_admin_ids_out_of_range(self, client):
        await setup_game(client)

        resp = await client.post("/api/admin/nodes", headers=ADMIN, json={
            "node_id": 2 ** 64, "clue": "c", "question": "q",
        })
        assert resp.status == 400
        assert (await resp.json())["error"] == "invalid_input"

        resp = await client.post(
            "/api/admin/submissions/99999999999999999999/review",
            headers=ADMIN,
            json={"approved": True},
        )
        assert resp.status == 400

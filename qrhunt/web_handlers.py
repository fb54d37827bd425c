"""
Web route handlers for the QR hunt.
"""

import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from aiohttp import web
from jinja2 import Environment, FileSystemLoader, select_autoescape

from .errors import HuntError, InvalidInput, NotFound
from .models import Team, fits_store_int, is_store_id
from .service import HuntService

logger = logging.getLogger(__name__)

ADMIN_HEADER = "X-Admin-Secret"
TEMPLATES_PATH = Path(__file__).parent / "templates"


@web.middleware
async def error_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """
    Turn hunt errors into structured JSON responses.

    @param request: Incoming request
    @param handler: Next handler in the chain
    @return: Handler response, or a JSON error body with the error's status
    """
    try:
        return await handler(request)
    except HuntError as e:
        logger.debug(f"{request.method} {request.path} failed: {e.kind} ({e.message})")
        return web.json_response(e.to_dict(), status=e.status)


async def _json_body(request: web.Request) -> Dict[str, Any]:
    try:
        data = await request.json()
    except ValueError:
        raise InvalidInput("Request body must be JSON") from None
    if not isinstance(data, dict):
        raise InvalidInput("Request body must be a JSON object")
    return data


def _int_param(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise InvalidInput(f"{name} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{name} must be an integer") from None
    if not fits_store_int(number):
        raise InvalidInput(f"{name} is out of range")
    return number


def _id_param(value: Any, name: str) -> int:
    number = _int_param(value, name)
    if not is_store_id(number):
        raise InvalidInput(f"{name} must be a positive integer")
    return number


def _bool_param(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise InvalidInput(f"{name} must be true or false")
    return value


def _admin_secret(request: web.Request) -> Optional[str]:
    return request.headers.get(ADMIN_HEADER)


class WebHandlers:
    """Handles web routes and responses."""

    def __init__(
        self,
        service: HuntService,
        config: Any,
        templates_path: Path = TEMPLATES_PATH,
    ) -> None:
        self.service = service
        self.config = config

        self.jinja_env = Environment(
            loader=FileSystemLoader(str(templates_path)),
            autoescape=select_autoescape(["html"]),
            auto_reload=False,
            cache_size=50,
        )

    def calculate_ranks_with_ties(
        self,
        teams: List[Team],
    ) -> List[Dict[str, Any]]:
        """
        Calculate display ranks; teams level on score and stage share a rank.

        @param teams: Teams already in leaderboard order
        @return: List of dictionaries with ranking information and tie indicators
        """
        ranked = []
        current_rank = 1
        previous_key = None
        keys = [(team.score, team.current_stage) for team in teams]

        for i, team in enumerate(teams):
            key = keys[i]
            if previous_key is not None and key != previous_key:
                current_rank = i + 1

            is_tied = (i > 0 and keys[i - 1] == key) or (
                i < len(keys) - 1 and keys[i + 1] == key
            )

            rank_class = {1: "gold", 2: "silver", 3: "bronze"}.get(current_rank, "")

            ranked.append(
                {
                    "rank": current_rank,
                    "rank_class": rank_class,
                    "team_id": team.id,
                    "name": team.name,
                    "members": list(team.members),
                    "current_stage": team.current_stage,
                    "score": team.score,
                    "is_tied": is_tied,
                }
            )
            previous_key = key

        return ranked

    async def web_index(
        self,
        _: web.Request,
    ) -> web.Response:
        """
        Leaderboard page.

        @param _: Unused request parameter
        @return: HTTP response with rendered leaderboard
        """
        teams = await self.service.get_leaderboard()
        settings = await self.service.get_settings()

        template = self.jinja_env.get_template("leaderboard.html")
        html = template.render(
            title="Leaderboard",
            hunt_name=self.config.get("hunt_name"),
            teams=self.calculate_ranks_with_ties(teams),
            settings=settings,
        )
        return web.Response(text=html, content_type="text/html")

    # Teams

    async def api_create_team(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        result = await self.service.create_team(data.get("name"), data.get("members"))
        return web.json_response({"success": True, **result}, status=201)

    async def api_team_by_code(self, request: web.Request) -> web.Response:
        team = await self.service.lookup_team_by_code(request.match_info["code"])
        if team is None:
            raise NotFound("No team with that code")
        return web.json_response({"team": team.to_dict()})

    async def api_get_team(self, request: web.Request) -> web.Response:
        team_id = _id_param(request.match_info["team_id"], "team_id")
        team = await self.service.get_team(team_id)
        data = team.to_dict()
        data["completed"] = await self.service.is_team_complete(team)
        return web.json_response({"team": data})

    async def api_team_submissions(self, request: web.Request) -> web.Response:
        team_id = _id_param(request.match_info["team_id"], "team_id")
        submissions = await self.service.get_team_submissions(team_id)
        return web.json_response({"submissions": [s.to_dict() for s in submissions]})

    async def api_leaderboard(self, request: web.Request) -> web.Response:
        """
        API endpoint for the leaderboard.

        @param request: HTTP request with optional ``limit`` query parameter
        @return: JSON response with ranked teams
        """
        limit = request.query.get("limit")
        teams = await self.service.get_leaderboard(
            _int_param(limit, "limit") if limit is not None else None
        )
        return web.json_response({"leaderboard": self.calculate_ranks_with_ties(teams)})

    # Nodes and play

    async def api_active_nodes(self, _: web.Request) -> web.Response:
        return web.json_response({"nodes": await self.service.list_active_nodes()})

    async def api_scan(self, request: web.Request) -> web.Response:
        """
        Validate a scanned code.

        Scan failures are part of normal play and answer 200 with ``valid: false``.
        """
        data = await _json_body(request)
        team_id = _id_param(data.get("team_id"), "team_id")
        outcome = await self.service.validate_scan(team_id, data.get("payload"))
        return web.json_response(outcome.to_dict())

    async def api_submit_answer(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        submission = await self.service.submit_answer(
            _id_param(data.get("team_id"), "team_id"),
            _id_param(data.get("node_id"), "node_id"),
            data.get("answer"),
        )
        return web.json_response(
            {"success": True, "submission": submission.to_dict()}, status=201
        )

    async def api_stats(self, _: web.Request) -> web.Response:
        return web.json_response(await self.service.get_game_stats())

    # Settings

    async def api_get_settings(self, _: web.Request) -> web.Response:
        return web.json_response({"settings": await self.service.get_settings()})

    async def api_initialize_settings(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        settings = await self.service.initialize_settings(
            data.get("total_nodes"),
            data.get("points_per_node", self.config.get("game", "default_points_per_node")),
            data.get("admin_secret"),
            current_secret=_admin_secret(request),
        )
        return web.json_response({"success": True, "settings": settings}, status=201)

    async def api_verify_admin(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        return web.json_response(
            {"valid": await self.service.verify_admin_secret(data.get("secret"))}
        )

    async def api_update_settings(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        settings = await self.service.update_settings(
            _admin_secret(request),
            data.get("total_nodes"),
            _bool_param(data.get("game_active"), "game_active"),
            data.get("points_per_node"),
            new_admin_secret=data.get("admin_secret"),
        )
        return web.json_response({"success": True, "settings": settings})

    async def api_toggle_active(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        settings = await self.service.toggle_active(
            _admin_secret(request), _bool_param(data.get("active"), "active")
        )
        return web.json_response({"success": True, "settings": settings})

    # Admin

    async def api_list_nodes(self, request: web.Request) -> web.Response:
        nodes = await self.service.list_nodes(_admin_secret(request))
        return web.json_response({"nodes": nodes})

    async def api_create_node(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        result = await self.service.create_node(
            _admin_secret(request),
            _id_param(data.get("node_id"), "node_id"),
            data.get("clue"),
            data.get("question"),
            data.get("expected_answer"),
        )
        return web.json_response(
            {
                "success": True,
                "node": result["node"].to_dict(),
                "unlock_payload": result["unlock_payload"],
            },
            status=201,
        )

    async def api_update_node(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        node = await self.service.update_node(
            _admin_secret(request),
            _id_param(request.match_info["sequence"], "sequence"),
            data.get("clue"),
            data.get("question"),
            data.get("expected_answer"),
            _bool_param(data.get("is_active", True), "is_active"),
        )
        return web.json_response({"success": True, "node": node.to_dict()})

    async def api_list_submissions(self, request: web.Request) -> web.Response:
        """
        Review queue.

        @param request: HTTP request; ``?status=all`` lists every submission
        @return: JSON response with submissions joined with team data
        """
        secret = _admin_secret(request)
        if request.query.get("status") == "all":
            submissions = await self.service.list_all_submissions(secret)
        else:
            submissions = await self.service.list_pending_submissions(secret)
        return web.json_response({"submissions": [s.to_dict() for s in submissions]})

    async def api_review_submission(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        submission = await self.service.review_submission(
            _admin_secret(request),
            _id_param(request.match_info["submission_id"], "submission_id"),
            _bool_param(data.get("approved"), "approved"),
            data.get("reviewer", "admin"),
        )
        return web.json_response({"success": True, "submission": submission.to_dict()})

    async def api_override_progress(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        team = await self.service.override_team_progress(
            _admin_secret(request),
            _id_param(request.match_info["team_id"], "team_id"),
            _int_param(data.get("new_stage"), "new_stage"),
            _int_param(data.get("points_to_add", 0), "points_to_add"),
        )
        return web.json_response({"success": True, "team": team.to_dict()})

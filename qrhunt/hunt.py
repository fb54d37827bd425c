"""
Main HuntSystem class that orchestrates all components.
"""

import asyncio
import logging
from typing import Optional

from aiohttp import web, web_runner
import aiohttp_cors

from .config import HuntConfig
from .database import DatabaseManager
from .service import HuntService
from .web_handlers import WebHandlers, error_middleware

logger = logging.getLogger(__name__)


class HuntSystem:
    """QR hunt server: storage, game service and web interface."""

    def __init__(
        self,
        config: HuntConfig,
        db_path: Optional[str] = None,
    ) -> None:
        self.config = config
        self.host = config.get("server", "host")
        self.web_port = config.get("server", "port")
        self.db_path = db_path or config.get("database", "path")

        # Initialize components
        self.db = DatabaseManager(self.db_path, self.config)
        self.service = HuntService(self.db, self.config)
        self.web_handlers = WebHandlers(self.service, self.config)

    async def init_db(self) -> None:
        """
        Initialize the database.

        Creates database tables and indexes.
        """
        await self.db.init_db()

    def create_app(self) -> web.Application:
        """
        Build the web application with all routes.

        @return: aiohttp application
        """
        app = web.Application(middlewares=[error_middleware])
        h = self.web_handlers

        app.router.add_get("/", h.web_index)

        # Player API
        app.router.add_post("/api/teams", h.api_create_team)
        app.router.add_get("/api/teams/code/{code}", h.api_team_by_code)
        app.router.add_get("/api/teams/{team_id}", h.api_get_team)
        app.router.add_get("/api/teams/{team_id}/submissions", h.api_team_submissions)
        app.router.add_get("/api/leaderboard", h.api_leaderboard)
        app.router.add_get("/api/nodes", h.api_active_nodes)
        app.router.add_post("/api/scan", h.api_scan)
        app.router.add_post("/api/submissions", h.api_submit_answer)
        app.router.add_get("/api/stats", h.api_stats)
        app.router.add_get("/api/settings", h.api_get_settings)
        app.router.add_post("/api/settings", h.api_initialize_settings)

        # Admin API
        app.router.add_post("/api/admin/verify", h.api_verify_admin)
        app.router.add_put("/api/admin/settings", h.api_update_settings)
        app.router.add_post("/api/admin/settings/active", h.api_toggle_active)
        app.router.add_get("/api/admin/nodes", h.api_list_nodes)
        app.router.add_post("/api/admin/nodes", h.api_create_node)
        app.router.add_put("/api/admin/nodes/{sequence}", h.api_update_node)
        app.router.add_get("/api/admin/submissions", h.api_list_submissions)
        app.router.add_post(
            "/api/admin/submissions/{submission_id}/review", h.api_review_submission
        )
        app.router.add_post(
            "/api/admin/teams/{team_id}/progress", h.api_override_progress
        )

        if self.config.get("server", "cors_enabled"):
            cors = aiohttp_cors.setup(
                app,
                defaults={
                    "*": aiohttp_cors.ResourceOptions(
                        allow_credentials=True,
                        expose_headers="*",
                        allow_headers="*",
                        allow_methods="*",
                    )
                },
            )
            for route in list(app.router.routes()):
                cors.add(route)

        return app

    async def start_web_server(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ) -> web_runner.AppRunner:
        """
        Start the web server.

        @param host: Host address to bind (default uses configured host)
        @param port: Port number to use (default uses configured port)
        @return: AppRunner instance for the web server
        """
        if host is None:
            host = self.host
        if port is None:
            port = self.web_port

        app_runner = web_runner.AppRunner(self.create_app())
        await app_runner.setup()

        site = web_runner.TCPSite(app_runner, host, port)
        await site.start()

        logger.info(f"Web server running on http://{host}:{port}")
        return app_runner

    async def run(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ) -> None:
        """
        Run the web server until cancelled.
        """
        runner = await self.start_web_server(host, port)
        try:
            await asyncio.Event().wait()
        finally:
            logger.info("Shutting down web server...")
            await runner.cleanup()

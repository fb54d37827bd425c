#!/usr/bin/env python3
"""
QR hunt server.
Serves the player and admin JSON API and the leaderboard page.
"""

import argparse
import asyncio
import logging
import os
from pathlib import Path

from qrhunt.config import HuntConfig
from qrhunt.hunt import HuntSystem


async def main():
    """Main function with command line interface."""

    parser = argparse.ArgumentParser(
        description="QR scavenger hunt server",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "hunt_config.json"),
        help="Configuration file path (env: CONFIG_PATH)"
    )
    parser.add_argument(
        "--web-port",
        type=int,
        default=None,
        help="Web server port (overrides config, env: WEB_PORT)"
    )
    parser.add_argument(
        "--db",
        default=None,
        help="SQLite database file path (overrides config, env: DB_PATH)"
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Host to bind the server to (overrides config, env: HOST)"
    )

    args = parser.parse_args()

    config_path = Path(args.config)

    if config_path.exists() and not config_path.is_file():
        print(f"Error: {args.config} exists but is not a file")
        return

    config = HuntConfig(args.config)
    logging.basicConfig(
        level=config.get("logging", "level"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    system = HuntSystem(config, db_path=args.db)
    await system.init_db()

    print(f"\n{config.get('hunt_name')} running!")
    print("Press Ctrl+C to stop...\n")

    await system.run(host=args.host, port=args.web_port)


def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nServer interrupted")


if __name__ == "__main__":
    cli()

"""
QR Hunt - a server for location-based scavenger hunts.

This package provides:
- Team registration and join codes
- Nodes unlocked by scanning printed codes in sequence
- Free-text answers reviewed by an admin before a team advances
- A leaderboard and game statistics over a JSON web API
- A single shared admin secret, stored hashed
"""

from .config import HuntConfig
from .database import DatabaseManager
from .service import HuntService
from .web_handlers import WebHandlers
from .hunt import HuntSystem

__version__ = "1.0.0"

__all__ = [
    "HuntConfig",
    "DatabaseManager",
    "HuntService",
    "WebHandlers",
    "HuntSystem",
]

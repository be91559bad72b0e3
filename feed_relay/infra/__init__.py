"""Infra layer utilities (SQLite storage, Discord lookups)."""

from .discord_api import CONFIRMED_ABSENCE_CODES, DiscordAPI, PlatformAPIError
from .storage import HistoryRepository, SQLiteManager, SubscriberRepository

__all__ = [
    "CONFIRMED_ABSENCE_CODES",
    "DiscordAPI",
    "HistoryRepository",
    "PlatformAPIError",
    "SQLiteManager",
    "SubscriberRepository",
]

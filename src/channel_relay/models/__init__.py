"""Database models for Channel Relay."""

from .base import Base, SessionLocal, init_db, session_scope
from .channel import Channel, DownloadStatus, mask_key

__all__ = [
    "Base",
    "SessionLocal",
    "init_db",
    "session_scope",
    "Channel",
    "DownloadStatus",
    "mask_key",
]

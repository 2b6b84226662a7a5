"""Relay channel model."""

from enum import Enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text
from sqlalchemy.sql import func
from .base import Base

class DownloadStatus(str, Enum):
    IDLE = "IDLE"
    DOWNLOADING = "DOWNLOADING"
    READY = "READY"
    ERROR = "ERROR"

class Channel(Base):
    """A local video file relayed to a remote RTMP endpoint."""

    __tablename__ = "channels"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    rtmp_url = Column(String(500), nullable=False)
    rtmp_key = Column(String(500), nullable=False)
    video_source_path = Column(String(1000))
    looping_enabled = Column(Boolean, nullable=False, default=True)
    download_status = Column(String(20), nullable=False, default=DownloadStatus.IDLE.value)
    last_error = Column(Text)
    schedule_start_time = Column(String(5))  # HH:MM
    schedule_stop_time = Column(String(5))  # HH:MM
    is_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now())

    @property
    def masked_endpoint(self) -> str:
        """Endpoint with the stream key shortened, safe for logs."""
        return f"{self.rtmp_url.rstrip('/')}/{mask_key(self.rtmp_key)}"

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'rtmp_url': self.rtmp_url,
            'rtmp_key': self.rtmp_key,
            'video_source_path': self.video_source_path,
            'looping_enabled': bool(self.looping_enabled),
            'download_status': self.download_status,
            'last_error': self.last_error,
            'schedule_start_time': self.schedule_start_time,
            'schedule_stop_time': self.schedule_stop_time,
            'is_active': bool(self.is_active),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Channel(name='{self.name}', status={self.download_status}, active={self.is_active})>"

def mask_key(key: str) -> str:
    """Keep the first four characters of a stream key."""
    if not key:
        return ""
    return f"{key[:4]}****"

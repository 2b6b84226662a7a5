"""Durable channel records.

The store is plain CRUD over the ``channels`` table. It holds no business
rules; the service and supervisor decide what to write. Update and delete
report the number of rows affected so callers can map 0 to ``NotFound``.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from .models import Channel, DownloadStatus, SessionLocal, session_scope

logger = logging.getLogger(__name__)

class ChannelStore:
    """Reads and writes channel rows."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def _session(self):
        return session_scope(self.session_factory)

    def get(self, channel_id: int) -> Optional[Channel]:
        with self._session() as session:
            return session.get(Channel, channel_id)

    def list_all(self) -> List[Channel]:
        """All channels, newest first."""
        with self._session() as session:
            return (
                session.query(Channel)
                .order_by(Channel.created_at.desc(), Channel.id.desc())
                .all()
            )

    def list_scheduled_ready(self) -> List[Channel]:
        """Channels with a schedule window and a downloaded source."""
        with self._session() as session:
            return (
                session.query(Channel)
                .filter(
                    Channel.schedule_start_time.isnot(None),
                    Channel.schedule_stop_time.isnot(None),
                    Channel.download_status == DownloadStatus.READY.value,
                )
                .order_by(Channel.id)
                .all()
            )

    def insert(self, **fields) -> Channel:
        with self._session() as session:
            channel = Channel(**fields)
            session.add(channel)
            session.flush()
            # Pull server-side defaults such as created_at.
            session.refresh(channel)
            logger.debug(f"Inserted channel {channel.id}")
            return channel

    def update(self, channel_id: int, **fields) -> int:
        """Apply only the supplied fields. Returns rows affected."""
        if not fields:
            return 1 if self.get(channel_id) is not None else 0
        with self._session() as session:
            return (
                session.query(Channel)
                .filter(Channel.id == channel_id)
                .update(fields, synchronize_session=False)
            )

    def delete(self, channel_id: int) -> int:
        with self._session() as session:
            return (
                session.query(Channel)
                .filter(Channel.id == channel_id)
                .delete(synchronize_session=False)
            )

    def clear_active_flags(self) -> int:
        """Mark every channel inactive. Used once at startup."""
        with self._session() as session:
            return (
                session.query(Channel)
                .filter(Channel.is_active.is_(True))
                .update({Channel.is_active: False}, synchronize_session=False)
            )

    def fail_interrupted_downloads(self, message: str) -> int:
        """Move rows stuck in DOWNLOADING to ERROR."""
        with self._session() as session:
            return (
                session.query(Channel)
                .filter(Channel.download_status == DownloadStatus.DOWNLOADING.value)
                .update(
                    {
                        Channel.download_status: DownloadStatus.ERROR.value,
                        Channel.last_error: message,
                    },
                    synchronize_session=False,
                )
            )

"""Channel commands exposed to the HTTP layer.

``ChannelService`` validates input, keeps the store and the relay
supervisor consistent (a channel is stopped before it is deleted), and
runs video imports in the background.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

from .errors import NotFound, ValidationError
from .models import Channel, DownloadStatus
from .reconciler import format_hhmm, parse_hhmm

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {
    "name",
    "rtmp_url",
    "rtmp_key",
    "looping_enabled",
    "schedule_start_time",
    "schedule_stop_time",
}
REQUIRED_TEXT_FIELDS = ("name", "rtmp_url", "rtmp_key")
INTERRUPTED_DOWNLOAD_MESSAGE = "Download interrupted by restart"

def _clean_time(value) -> Optional[str]:
    """Normalise a schedule time; empty means no schedule."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return format_hhmm(parse_hhmm(value))

def _check_window(start: Optional[str], stop: Optional[str]):
    if (start is None) != (stop is None):
        raise ValidationError("Schedule needs both a start and a stop time")

def _check_flag(field: str, value) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be true or false")
    return value

class ChannelService:
    """Orchestrates channel records, downloads and relay processes."""

    def __init__(self, store, supervisor, fetcher):
        self.store = store
        self.supervisor = supervisor
        self.fetcher = fetcher
        self._listeners: List[Callable[[int, str], None]] = []

    def add_listener(self, callback: Callable[[int, str], None]):
        """Register ``callback(channel_id, download_status)`` for finished imports."""
        self._listeners.append(callback)

    # -- CRUD --

    def list_channels(self) -> List[Channel]:
        return self.store.list_all()

    def get_channel(self, channel_id: int) -> Channel:
        channel = self.store.get(channel_id)
        if channel is None:
            raise NotFound(f"Channel {channel_id} not found")
        return channel

    def create_channel(self, name: str = None, rtmp_url: str = None, rtmp_key: str = None,
                       looping_enabled: bool = True, schedule_start_time: str = None,
                       schedule_stop_time: str = None) -> Channel:
        values = {"name": name, "rtmp_url": rtmp_url, "rtmp_key": rtmp_key}
        missing = [field for field, value in values.items()
                   if not isinstance(value, str) or not value.strip()]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        looping = _check_flag("looping_enabled", looping_enabled)
        start = _clean_time(schedule_start_time)
        stop = _clean_time(schedule_stop_time)
        _check_window(start, stop)

        channel = self.store.insert(
            name=name.strip(),
            rtmp_url=rtmp_url.strip(),
            rtmp_key=rtmp_key.strip(),
            looping_enabled=looping,
            schedule_start_time=start,
            schedule_stop_time=stop,
            download_status=DownloadStatus.IDLE.value,
            is_active=False,
        )
        logger.info(f"Created channel {channel.id}: {channel.name}")
        return channel

    def update_channel(self, channel_id: int, fields: dict) -> Channel:
        """Apply the given subset of ``EDITABLE_FIELDS`` to a channel."""
        if not isinstance(fields, dict):
            raise ValidationError("Channel fields must be an object")
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        fields = dict(fields)
        for field in REQUIRED_TEXT_FIELDS:
            if field in fields:
                value = fields[field]
                if not isinstance(value, str) or not value.strip():
                    raise ValidationError(f"{field} cannot be empty")
                fields[field] = value.strip()
        if "looping_enabled" in fields:
            _check_flag("looping_enabled", fields["looping_enabled"])

        if "schedule_start_time" in fields or "schedule_stop_time" in fields:
            current = self.get_channel(channel_id)
            for field in ("schedule_start_time", "schedule_stop_time"):
                if field in fields:
                    fields[field] = _clean_time(fields[field])
            _check_window(
                fields.get("schedule_start_time", current.schedule_start_time),
                fields.get("schedule_stop_time", current.schedule_stop_time),
            )

        if self.store.update(channel_id, **fields) == 0:
            raise NotFound(f"Channel {channel_id} not found")
        logger.info(f"Updated channel {channel_id}: {', '.join(sorted(fields)) or 'no changes'}")
        return self.get_channel(channel_id)

    def delete_channel(self, channel_id: int):
        self.get_channel(channel_id)
        self.supervisor.stop(channel_id)
        if self.store.delete(channel_id) == 0:
            raise NotFound(f"Channel {channel_id} not found")
        self.supervisor.discard_log(channel_id)
        logger.info(f"Deleted channel {channel_id}")

    # -- Media --

    def import_video(self, channel_id: int, source_reference: str) -> str:
        """Start downloading ``source_reference`` for a channel. Returns the file name."""
        if not isinstance(source_reference, str) or not source_reference.strip():
            raise ValidationError("Missing video source URL")
        self.get_channel(channel_id)

        # A source path is only kept alongside READY.
        self.store.update(
            channel_id,
            download_status=DownloadStatus.DOWNLOADING.value,
            video_source_path=None,
            last_error=None,
        )
        filename = f"video_{channel_id}_{int(time.time() * 1000)}.mp4"

        worker = threading.Thread(
            target=self._acquire,
            args=(channel_id, source_reference.strip(), filename),
            name=f"import-{channel_id}",
            daemon=True,
        )
        worker.start()
        logger.info(f"Download started for channel {channel_id}: {filename}")
        return filename

    def _acquire(self, channel_id: int, source_reference: str, filename: str):
        """Background download; the outcome only ever lands in the store."""
        try:
            path = self.fetcher.acquire(source_reference, filename)
        except Exception as e:
            logger.error(f"Download error for channel {channel_id}: {e}")
            status = DownloadStatus.ERROR
            fields = {"download_status": status.value, "last_error": str(e) or type(e).__name__}
        else:
            logger.info(f"Download complete for channel {channel_id}: {path}")
            status = DownloadStatus.READY
            fields = {"download_status": status.value, "video_source_path": str(path), "last_error": None}

        try:
            if self.store.update(channel_id, **fields) == 0:
                logger.warning(f"Channel {channel_id} was deleted during download")
                if status is DownloadStatus.READY:
                    Path(path).unlink(missing_ok=True)
                return
        except Exception as e:
            logger.error(f"Could not record download result for channel {channel_id}: {e}")
            return

        for callback in list(self._listeners):
            try:
                callback(channel_id, status.value)
            except Exception as e:
                logger.warning(f"Download listener failed for channel {channel_id}: {e}")

    # -- Streaming --

    def start_stream(self, channel_id: int):
        self.supervisor.start(channel_id)

    def stop_stream(self, channel_id: int):
        self.get_channel(channel_id)
        self.supervisor.stop(channel_id)

    def get_logs(self, channel_id: int) -> List[str]:
        self.get_channel(channel_id)
        return self.supervisor.get_recent_log(channel_id)

    # -- Lifecycle --

    def reset_stale_state(self):
        """Clear state left behind by a previous process; nothing is running yet."""
        cleared = self.store.clear_active_flags()
        failed = self.store.fail_interrupted_downloads(INTERRUPTED_DOWNLOAD_MESSAGE)
        if cleared or failed:
            logger.info(f"Startup sweep: cleared {cleared} active flag(s), failed {failed} interrupted download(s)")

    def shutdown(self):
        logger.info("Stopping all relays")
        self.supervisor.stop_all()

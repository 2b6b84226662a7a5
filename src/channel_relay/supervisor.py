"""Relay process supervision.

One ffmpeg process per active channel reads the channel's local video file
at native rate and pushes it to the channel's RTMP endpoint. The supervisor
owns the process table and the per-channel log buffers. Watcher threads
never touch that state themselves: they post events onto a queue, and
``process_events`` applies them under the supervisor lock.
"""

import logging
import queue
import subprocess
import threading
from collections import deque
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import config
from .errors import AlreadyRunning, NotFound, NotReady, ProcessFailure
from .models import Channel, DownloadStatus, mask_key

logger = logging.getLogger(__name__)

ERROR_TAIL_LINES = 5

class RelayState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"

class RelayProcess:
    """A supervised relay process handle."""

    def __init__(self, channel_id: int, process: subprocess.Popen):
        self.channel_id = channel_id
        self.process = process
        self.state = RelayState.STARTING
        self.watcher: Optional[threading.Thread] = None

    def __repr__(self):
        return f"<RelayProcess(channel={self.channel_id}, pid={self.process.pid}, state={self.state.value})>"

class RelayEvent:
    """Something a watcher thread observed about a relay process."""

    OUTPUT = "output"
    STARTED = "started"
    EXITED = "exited"

    def __init__(self, kind: str, channel_id: int, process: Any, detail: Any = None):
        self.kind = kind
        self.channel_id = channel_id
        self.process = process
        self.detail = detail

def full_endpoint(channel: Channel) -> str:
    return f"{channel.rtmp_url.rstrip('/')}/{channel.rtmp_key}"

def build_relay_command(channel: Channel, ffmpeg_path: str = None) -> List[str]:
    """Get the ffmpeg command that relays ``channel``'s file to its endpoint."""
    cmd = [ffmpeg_path or config.FFMPEG_PATH, "-hide_banner", "-re"]
    if channel.looping_enabled:
        cmd.extend(["-stream_loop", "-1"])
    cmd.extend(["-i", channel.video_source_path])

    cmd.extend([
        "-c:v", "libx264",
        "-preset", "veryfast",
        "-b:v", config.VIDEO_BITRATE,
        "-maxrate", config.VIDEO_BITRATE,
        "-bufsize", config.VIDEO_BUFSIZE,
        "-g", str(config.KEYFRAME_INTERVAL),
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", config.AUDIO_BITRATE,
        "-ar", "44100",
        "-f", "flv",
    ])
    cmd.append(full_endpoint(channel))
    return cmd

def is_progress_line(line: str) -> bool:
    return line.startswith("frame=") or line.startswith("size=")

def signals_encoding(line: str) -> bool:
    """True once ffmpeg reports that it has begun encoding."""
    return line.startswith("frame=") or "Press [q]" in line

class RelaySupervisor:
    """Starts, watches and kills relay processes, one per channel."""

    def __init__(self, store, ffmpeg_path: str = None, log_size: int = None,
                 popen: Callable[..., subprocess.Popen] = subprocess.Popen):
        self.store = store
        self.ffmpeg_path = ffmpeg_path or config.FFMPEG_PATH
        self.log_size = log_size or config.LOG_BUFFER_SIZE
        self.popen = popen

        self._lock = threading.RLock()
        self._processes: Dict[int, RelayProcess] = {}
        self._logs: Dict[int, deque] = {}
        self._events: "queue.Queue[RelayEvent]" = queue.Queue()
        self._listeners: List[Callable[[int, str], None]] = []

    # -- Commands --

    def start(self, channel_id: int) -> RelayProcess:
        """Spawn the relay for ``channel_id`` and return without waiting on it."""
        with self._lock:
            if channel_id in self._processes:
                raise AlreadyRunning(f"Stream is already running for channel {channel_id}")

            channel = self.store.get(channel_id)
            if channel is None:
                raise NotFound(f"Channel {channel_id} not found")
            if channel.download_status != DownloadStatus.READY.value or not channel.video_source_path:
                raise NotReady(f"Channel {channel_id} has no downloaded video")
            source = Path(channel.video_source_path)
            if not source.is_file():
                raise NotReady(f"Video file not found: {source.name}")

            self._logs[channel_id] = deque(maxlen=self.log_size)
            self._append_log(channel_id, f"Starting stream... Source: {source.name} -> {channel.masked_endpoint}")

            self.store.update(channel_id, last_error=None)
            cmd = build_relay_command(channel, self.ffmpeg_path)
            try:
                process = self.popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    bufsize=1,
                    universal_newlines=True,
                )
            except OSError as e:
                message = f"Failed to spawn relay process: {e}"
                self._append_log(channel_id, f"ERROR: {message}")
                self.store.update(channel_id, is_active=False, last_error=message)
                logger.error(f"Channel {channel_id}: {message}")
                raise ProcessFailure(message) from e

            relay = RelayProcess(channel_id, process)
            self._processes[channel_id] = relay
            self._append_log(channel_id, f"Spawned relay process (pid {process.pid})")

            relay.watcher = threading.Thread(
                target=self._watch,
                args=(relay, channel.rtmp_key),
                name=f"relay-watch-{channel_id}",
                daemon=True,
            )
            relay.watcher.start()

        logger.info(f"Started relay for channel {channel_id} ({channel.name}) -> {channel.masked_endpoint}")
        self._notify(channel_id, RelayState.STARTING)
        return relay

    def stop(self, channel_id: int) -> bool:
        """Kill the relay for ``channel_id`` if there is one. Always clears is_active."""
        with self._lock:
            relay = self._processes.pop(channel_id, None)
            if relay is not None:
                try:
                    relay.process.kill()
                except OSError as e:
                    logger.warning(f"Channel {channel_id}: error killing relay process: {e}")
                self._append_log(channel_id, "Stream stopped")

        # Without a process this only repairs stale state, e.g. after a restart.
        self.store.update(channel_id, is_active=False)
        if relay is None:
            logger.debug(f"Stop requested for channel {channel_id}, no relay was running")
            return False

        logger.info(f"Stopped relay for channel {channel_id}")
        self._notify(channel_id, RelayState.STOPPED)
        return True

    def stop_all(self):
        """Stop every supervised relay."""
        for channel_id in self.running_ids():
            try:
                self.stop(channel_id)
            except Exception as e:
                logger.error(f"Failed to stop channel {channel_id}: {e}")

    # -- Queries --

    def get_recent_log(self, channel_id: int) -> List[str]:
        with self._lock:
            return list(self._logs.get(channel_id, ()))

    def discard_log(self, channel_id: int):
        with self._lock:
            self._logs.pop(channel_id, None)

    def is_running(self, channel_id: int) -> bool:
        with self._lock:
            return channel_id in self._processes

    def running_ids(self) -> List[int]:
        with self._lock:
            return list(self._processes)

    def state_of(self, channel_id: int) -> RelayState:
        with self._lock:
            relay = self._processes.get(channel_id)
            return relay.state if relay else RelayState.STOPPED

    def add_listener(self, callback: Callable[[int, str], None]):
        """Register ``callback(channel_id, state)`` for relay transitions."""
        self._listeners.append(callback)

    # -- Event handling --

    def process_events(self, timeout: float = None) -> int:
        """Apply queued watcher events. Blocks up to ``timeout`` for the first one."""
        handled = 0
        while True:
            try:
                if handled == 0 and timeout is not None:
                    event = self._events.get(timeout=timeout)
                else:
                    event = self._events.get_nowait()
            except queue.Empty:
                return handled
            try:
                self._apply(event)
            except Exception:
                logger.exception(f"Channel {event.channel_id}: failed to apply {event.kind} event")
            handled += 1

    def run_dispatcher(self, stop_event: threading.Event, poll_interval: float = 0.5):
        """Apply events until ``stop_event`` is set."""
        logger.info("Relay event dispatcher started")
        while not stop_event.is_set():
            self.process_events(timeout=poll_interval)
        logger.info("Relay event dispatcher stopped")

    def _apply(self, event: RelayEvent):
        channel_id = event.channel_id
        transition = None

        with self._lock:
            relay = self._processes.get(channel_id)
            if relay is None or relay.process is not event.process:
                # Stopped or replaced since the event was posted.
                return

            if event.kind == RelayEvent.OUTPUT:
                self._append_log(channel_id, event.detail)

            elif event.kind == RelayEvent.STARTED:
                if relay.state == RelayState.STARTING:
                    relay.state = RelayState.RUNNING
                    self._append_log(channel_id, "Relay is encoding, stream is live")
                    self.store.update(channel_id, is_active=True)
                    transition = RelayState.RUNNING

            elif event.kind == RelayEvent.EXITED:
                returncode, tail = event.detail
                del self._processes[channel_id]
                if returncode == 0:
                    self._append_log(channel_id, "Stream ended: input finished")
                    self.store.update(channel_id, is_active=False)
                    logger.info(f"Relay for channel {channel_id} ended")
                else:
                    error = " | ".join(tail) or f"Relay exited with code {returncode}"
                    self._append_log(channel_id, f"ERROR: relay exited with code {returncode}")
                    self.store.update(channel_id, is_active=False, last_error=error)
                    logger.error(f"Relay for channel {channel_id} crashed (code {returncode}): {error}")
                transition = RelayState.STOPPED

        if transition is not None:
            self._notify(channel_id, transition)

    def _watch(self, relay: RelayProcess, secret: str):
        """Read ffmpeg's stderr until it closes, then report the exit code."""
        process = relay.process
        tail = deque(maxlen=ERROR_TAIL_LINES)
        announced = False
        try:
            for raw in process.stderr:
                line = raw.strip()
                if not line:
                    continue
                if secret:
                    line = line.replace(secret, mask_key(secret))
                if not announced and signals_encoding(line):
                    announced = True
                    self._events.put(RelayEvent(RelayEvent.STARTED, relay.channel_id, process))
                if is_progress_line(line):
                    continue
                tail.append(line)
                self._events.put(RelayEvent(RelayEvent.OUTPUT, relay.channel_id, process, line))
        except (OSError, ValueError) as e:
            logger.debug(f"Channel {relay.channel_id}: stopped reading relay output: {e}")

        returncode = process.wait()
        self._events.put(RelayEvent(RelayEvent.EXITED, relay.channel_id, process, (returncode, list(tail))))

    def _append_log(self, channel_id: int, message: str):
        buffer = self._logs.get(channel_id)
        if buffer is None:
            buffer = self._logs[channel_id] = deque(maxlen=self.log_size)
        buffer.append(f"[{datetime.now().strftime('%H:%M:%S')}] {message}")

    def _notify(self, channel_id: int, state: RelayState):
        for callback in list(self._listeners):
            try:
                callback(channel_id, state.value)
            except Exception as e:
                logger.warning(f"Relay listener failed for channel {channel_id}: {e}")

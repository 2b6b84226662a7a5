"""Schedule reconciliation for Channel Relay.

Every tick compares, for each scheduled channel with a downloaded video,
whether it should be relaying right now against whether it is, and starts
or stops it to match. Ticks are independent of each other: a skipped or
late tick is corrected by the next one.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Dict

from .config import config
from .errors import ValidationError

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60

def parse_hhmm(value: str) -> int:
    """Convert ``"HH:MM"`` into a minute of the day."""
    try:
        hours, minutes = str(value).strip().split(":")
        hours, minutes = int(hours), int(minutes)
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid time '{value}', use HH:MM")
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValidationError(f"Invalid time '{value}', use HH:MM")
    return hours * 60 + minutes

def format_hhmm(minute: int) -> str:
    return f"{minute // 60:02d}:{minute % 60:02d}"

def minute_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute

def is_within_window(minute: int, start: int, stop: int) -> bool:
    """Check whether ``minute`` falls in the daily window [start, stop)."""
    if start < stop:
        # Same day (e.g., 08:00 - 17:00)
        return start <= minute < stop
    # Crosses midnight (e.g., 22:00 - 06:00)
    return minute >= start or minute < stop

class ScheduleReconciler:
    """Starts and stops scheduled channels to match their daily windows."""

    def __init__(self, store, supervisor, interval: int = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.supervisor = supervisor
        self.interval = interval or config.RECONCILE_INTERVAL
        self.clock = clock

    def tick(self, now: datetime = None) -> Dict[int, str]:
        """Run one reconciliation pass. Returns the actions taken by channel id."""
        now = now or self.clock()
        current = minute_of_day(now)
        actions = {}

        for channel in self.store.list_scheduled_ready():
            try:
                start = parse_hhmm(channel.schedule_start_time)
                stop = parse_hhmm(channel.schedule_stop_time)
                should_run = is_within_window(current, start, stop)
                running = channel.is_active or self.supervisor.is_running(channel.id)

                if should_run and not running:
                    logger.info(f"[Reconciler] Starting channel {channel.name} ({channel.id}) at {format_hhmm(current)}")
                    self.supervisor.start(channel.id)
                    actions[channel.id] = "started"
                elif not should_run and running:
                    logger.info(f"[Reconciler] Stopping channel {channel.name} ({channel.id}) at {format_hhmm(current)}")
                    self.supervisor.stop(channel.id)
                    actions[channel.id] = "stopped"
            except Exception as e:
                logger.error(f"[Reconciler] Failed to reconcile channel {channel.name} ({channel.id}): {e}")
                actions[channel.id] = "failed"

        return actions

    def run(self, stop_event: threading.Event):
        """Tick now, then every ``interval`` seconds until ``stop_event`` is set."""
        logger.info(f"Schedule reconciler started (every {self.interval}s)")
        next_due = time.monotonic()

        while not stop_event.is_set():
            if time.monotonic() >= next_due:
                try:
                    self.tick()
                except Exception as e:
                    # Store unreachable; try again next interval.
                    logger.error(f"[Reconciler] Tick failed: {e}")
                next_due = time.monotonic() + self.interval
            stop_event.wait(min(1.0, max(0.0, next_due - time.monotonic())))

        logger.info("Schedule reconciler stopped")

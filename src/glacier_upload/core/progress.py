"""Progress reporting for upload runs.

Reporters only observe: nothing raised while computing or delivering
statistics ever reaches the orchestrator.
"""

import logging
import time
from typing import Callable, Optional

from .models import ProgressEvent, ProgressStats

logger = logging.getLogger(__name__)

# Estimates from the first minute of a transfer are too noisy to show.
DEFAULT_ETA_THRESHOLD = 60.0


def human_mb_per_s(bytes_per_second: float) -> float:
    return bytes_per_second / (1024 * 1024)


def format_duration(seconds: Optional[float]) -> str:
    if seconds is None:
        return "?"
    return time.strftime("%Hh %Mm %Ss", time.gmtime(max(0, seconds)))


class ProgressReporter:
    """Derive throughput and ETA from progress events.

    Args:
        callback: Optional sink called with a ``ProgressStats`` per event
        eta_threshold: Seconds of run time before an ETA is estimated
    """

    def __init__(
        self,
        callback: Optional[Callable[[ProgressStats], None]] = None,
        eta_threshold: float = DEFAULT_ETA_THRESHOLD,
    ) -> None:
        self.callback = callback
        self.eta_threshold = eta_threshold
        self.last_stats: Optional[ProgressStats] = None

    def observe(self, event: ProgressEvent) -> None:
        """Record an event; never raises."""
        try:
            stats = self.compute(event)
            self.last_stats = stats
            self.report(stats)
        except Exception as e:
            logger.warning(f"Progress reporting error: {e}")

    def compute(self, event: ProgressEvent) -> ProgressStats:
        run_bytes = event.total_bytes - event.skipped_bytes
        done = event.skipped_bytes + event.bytes_done
        percent = 100.0 * done / event.total_bytes if event.total_bytes else 100.0

        instantaneous = (
            event.part_bytes_done / event.part_elapsed if event.part_elapsed > 0 else 0.0
        )
        average = event.bytes_done / event.elapsed if event.elapsed > 0 else 0.0

        eta = None
        if event.elapsed > self.eta_threshold and average > 0:
            eta = max(0.0, (run_bytes - event.bytes_done) / average)

        return ProgressStats(
            event=event,
            percent=min(percent, 100.0),
            instantaneous_bps=instantaneous,
            average_bps=average,
            eta_seconds=eta,
        )

    def report(self, stats: ProgressStats) -> None:
        if self.callback:
            self.callback(stats)


class LoggingProgressReporter(ProgressReporter):
    """Log one line per confirmed part."""

    def report(self, stats: ProgressStats) -> None:
        super().report(stats)
        event = stats.event
        if not event.part_complete:
            return
        logger.info(
            f"Part {event.part_number}/{event.total_parts}: uploaded, "
            f"progress: {stats.percent:.1f}%, "
            f"speed: {human_mb_per_s(stats.average_bps):.2f} MB/s, "
            f"est time remaining: {format_duration(stats.eta_seconds)}"
        )

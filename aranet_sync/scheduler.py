"""Refresh loop: read the device, validate readings, sync them to Prometheus."""
import time
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from aranet_sync.acquisition import Acquirer
from aranet_sync.config import Config
from aranet_sync.errors import AcquisitionFailed, CycleDeadlineExceeded, SyncError
from aranet_sync.prom_exporter import SelfMetrics
from aranet_sync.syncer import Syncer
from aranet_sync.validation import validate_readings

logger = logging.getLogger(__name__)


@dataclass
class RefreshOutcome:
    """Result of one refresh cycle."""
    status: str  # "success" or "error"
    latency: float
    last_reported: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


class RefreshScheduler:
    """Runs refresh cycles one at a time, once per interval."""

    def __init__(
        self,
        config: Config,
        acquirer: Acquirer,
        syncer: Syncer,
        metrics: Optional[SelfMetrics] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.acquirer = acquirer
        self.syncer = syncer
        self.metrics = metrics or syncer.metrics
        self._now = clock or (lambda: datetime.now(timezone.utc))

        self._lock = threading.Lock()
        self._last_success: Optional[datetime] = None
        self._last_reported: Optional[datetime] = None
        self.last_outcome: Optional[RefreshOutcome] = None
        self.cycle_count = 0

        self._wake = threading.Event()
        self.running = False

        self.metrics.track_last_success(
            lambda: self.last_success.timestamp() if self.last_success else 0.0
        )

    @property
    def last_success(self) -> Optional[datetime]:
        with self._lock:
            return self._last_success

    @property
    def last_reported(self) -> Optional[datetime]:
        with self._lock:
            return self._last_reported

    def refresh(self) -> RefreshOutcome:
        """Execute one cycle; failures are logged, never raised."""
        t0 = time.monotonic()
        try:
            last_reported = self._refresh(deadline=t0 + self.config.refresh.cycle_timeout_s)
        except Exception as e:
            logger.error(f"Failed to refresh: {e}", exc_info=not isinstance(e, SyncError))
            outcome = RefreshOutcome("error", time.monotonic() - t0, error=str(e))
        else:
            outcome = RefreshOutcome("success", time.monotonic() - t0, last_reported=last_reported)
            with self._lock:
                if last_reported is not None:
                    self._last_reported = last_reported
                self._last_success = self._now()

        self.metrics.record_refresh(outcome.status, outcome.latency)
        self.last_outcome = outcome
        self.cycle_count += 1
        return outcome

    def _remaining(self, deadline: float) -> float:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise CycleDeadlineExceeded(
                f"refresh cycle exceeded {self.config.refresh.cycle_timeout_s}s budget"
            )
        return remaining

    def _refresh(self, deadline: float) -> Optional[datetime]:
        read_timeout = min(self.config.device.read_timeout_s, self._remaining(deadline))
        try:
            latest, readings = self.acquirer.acquire(timeout=read_timeout)
        except Exception as e:
            raise AcquisitionFailed(f"reading data: {e}") from e
        logger.info(f"Read data: {len(readings)} records")

        if latest is not None and latest.battery > -1:
            self.syncer.report_metric(
                "battery_level_percent", latest.time, float(latest.battery),
                timeout=self._remaining(deadline),
            )

        if not readings:
            logger.warning("No history read")
            return None

        last_reported = None
        for reading in validate_readings(readings):
            logger.debug(f"Reporting record: {reading}")
            for sample in reading.samples():
                self.syncer.report_metric(
                    sample.metric_name, sample.timestamp, sample.value,
                    timeout=self._remaining(deadline),
                )
            last_reported = reading.time
        return last_reported

    def next_wait(self) -> float:
        """Seconds until the next cycle is due; <= 0 when overdue."""
        last = self.last_success
        if last is None:
            return 0.0
        interval = timedelta(seconds=self.config.refresh.interval_s)
        return (last + interval - self._now()).total_seconds()

    def run(self):
        """Run refresh cycles until stop() is called."""
        self.running = True
        logger.info("Starting refresh loop")

        self.refresh()
        while self.running:
            wait = self.next_wait()
            if wait > 0:
                logger.info(f"Waiting {wait:.0f}s for next interval")
            else:
                # Behind schedule or last cycle failed: retry after a short pause
                wait = self.config.refresh.retry_backoff_s
            self._wake.wait(wait)
            self._wake.clear()
            if not self.running:
                break
            self.refresh()

    def trigger(self):
        """Wake the loop so the next cycle starts now."""
        logger.info("Refresh requested")
        self._wake.set()

    def stop(self):
        """Stop the refresh loop after the current cycle."""
        logger.info("Stopping refresh loop")
        self.running = False
        self._wake.set()


def run_scheduler_thread(scheduler: RefreshScheduler):
    """Run the scheduler in a separate thread."""
    try:
        scheduler.run()
    except Exception as e:
        logger.error(f"Scheduler thread error: {e}", exc_info=True)
        scheduler.stop()

"""Deduplicating sync of samples into Prometheus via remote write."""
import logging
import threading
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, Optional

import httpx

from aranet_sync.config import PrometheusConfig
from aranet_sync.errors import (
    AmbiguousSeries,
    BackendQueryFailed,
    InvalidTimestamp,
    TimestampTooFarFuture,
    WriteFailed,
)
from aranet_sync.prom_client import PrometheusAPIError, PrometheusClient, TimeSeries
from aranet_sync.prom_exporter import SelfMetrics
from aranet_sync.series import LabelSet, as_utc, is_zero_time, label_set, selector

logger = logging.getLogger(__name__)

MAX_FUTURE_SKEW = timedelta(hours=1)


class WriteResult(str, Enum):
    """Outcome of a non-failing report_metric call."""
    SUCCESS = "success"
    SKIPPED = "skipped"


class Syncer:
    """
    Writes metrics to Prometheus, skipping samples that are already there.

    The last written timestamp of each metric is cached for the lifetime of
    the process. On a cache miss the backend is asked for the newest sample
    of the series, so a restarted process neither re-sends old data nor
    writes samples older than what Prometheus already holds.
    """

    def __init__(
        self,
        config: PrometheusConfig,
        labels: Dict[str, str],
        client: Optional[PrometheusClient] = None,
        metrics: Optional[SelfMetrics] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.labels = dict(labels)
        self.client = client or PrometheusClient(config.url)
        self.metrics = metrics or SelfMetrics(prefix=config.prefix)
        self._now = clock or (lambda: datetime.now(timezone.utc))

        # metric name -> last written timestamp
        self.last_times: Dict[str, datetime] = {}
        self._metric_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

        logger.debug(
            f"Prometheus syncer created: url={config.url}, prefix={config.prefix}, "
            f"labels={self.labels}, dry_run={config.dry_run}"
        )

    def label_set(self, metric_name: str) -> LabelSet:
        """Full, name-sorted label set for a metric."""
        return label_set(metric_name, self.config.prefix, self.labels)

    def _lock_for(self, metric_name: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._metric_locks.get(metric_name)
            if lock is None:
                lock = self._metric_locks[metric_name] = threading.Lock()
            return lock

    @staticmethod
    def _budget(configured: float, timeout: Optional[float]) -> float:
        if timeout is None:
            return configured
        return min(configured, timeout)

    def last_time(self, metric_name: str, timeout: Optional[float] = None) -> Optional[datetime]:
        """
        Return the last time a metric was written, or None if never.

        Callers must hold the metric's lock.
        """
        last = self.last_times.get(metric_name)
        if last is not None:
            return last

        query = f"timestamp({selector(self.label_set(metric_name))})"
        try:
            result = self.client.query(
                query,
                at=self._now(),
                lookback_delta=timedelta(days=self.config.lookback_days),
                timeout=self._budget(self.config.query_timeout_s, timeout),
            )
        except (httpx.HTTPError, PrometheusAPIError) as e:
            raise BackendQueryFailed(f"querying metric {metric_name!r}: {e}") from e

        if result.warnings:
            logger.warning(f"Warnings querying metric {metric_name}: query={query} warnings={result.warnings}")
        logger.debug(f"Query result: query={query} type={result.result_type} value={result.result}")

        if result.result_type != "vector":
            raise BackendQueryFailed(f"query {query} returned non-vector value ({result.result_type})")
        if not result.result:
            # Not cached: the next call asks again until a first write lands
            logger.warning(f"No time series matched query {query}")
            return None
        if len(result.result) > 1:
            raise AmbiguousSeries(f"multiple time series matched query {query}: {result.result}")

        try:
            ts = float(result.result[0]["value"][1])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise BackendQueryFailed(f"query {query} returned a malformed sample: {result.result[0]}") from e

        last = datetime.fromtimestamp(ts, tz=timezone.utc)
        logger.debug(f"Last time for {metric_name}: {last} ({ts})")
        self.last_times[metric_name] = last
        return last

    def report_metric(
        self,
        name: str,
        ts: Optional[datetime],
        value: float,
        timeout: Optional[float] = None,
    ) -> WriteResult:
        """Write one sample unless it is not newer than the last written one."""
        try:
            result = self._report(name, ts, value, timeout)
        except Exception:
            self.metrics.record_write("error")
            raise
        self.metrics.record_write(result.value)
        return result

    def _report(self, name, ts, value, timeout) -> WriteResult:
        if is_zero_time(ts):
            raise InvalidTimestamp(f"cannot report metric {name!r} with zero timestamp")
        ts = as_utc(ts)
        if ts > self._now() + MAX_FUTURE_SKEW:
            raise TimestampTooFarFuture(
                f"timestamp {ts} for metric {name!r} is too far in the future "
                f"(more than 1 hour ahead of now)"
            )

        with self._lock_for(name):
            last = self.last_time(name, timeout)
            if last is not None and ts <= last:
                logger.debug(f"Skipping {name} at {ts}: not after last reported {last}")
                return WriteResult.SKIPPED

            series = TimeSeries(labels=self.label_set(name), samples=[(value, ts)])
            if self.config.dry_run:
                logger.info(f"Dry run, skipping write: {series}")
            else:
                try:
                    self.client.write([series], timeout=self._budget(self.config.write_timeout_s, timeout))
                except httpx.HTTPError as e:
                    raise WriteFailed(f"writing {name}={value} at {ts}: {e}") from e

            self.last_times[name] = ts
            return WriteResult.SUCCESS

    def close(self):
        """Release the backend HTTP connection pool."""
        self.client.close()

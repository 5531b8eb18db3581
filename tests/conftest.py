"""Shared fixtures: a fake Prometheus backend and syncer/scheduler builders."""
import time
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import httpx
import pytest
import snappy

from aranet_sync.acquisition import Acquirer
from aranet_sync.config import Config, DeviceConfig, PrometheusConfig
from aranet_sync.passkey import PasskeyMediator
from aranet_sync.prom_client import PrometheusClient, WriteRequest
from aranet_sync.prom_exporter import SelfMetrics
from aranet_sync.series import Reading
from aranet_sync.syncer import Syncer

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
LABELS = {"job": "test", "instance": "host-1", "device_addr": "AA:BB"}


class FakePrometheus:
    """httpx.MockTransport handler emulating /api/v1/query and /api/v1/write."""

    def __init__(self):
        # Each entry is one matching series; its value is the last timestamp
        self.series: List[float] = []
        self.query_status = 200
        self.query_body: Optional[dict] = None
        self.fail_writes = False
        self.queries: List[httpx.Request] = []
        self.writes: List[httpx.Request] = []

    @property
    def requests(self):
        return self.queries + self.writes

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/v1/query":
            self.queries.append(request)
            if self.query_body is not None:
                return httpx.Response(self.query_status, json=self.query_body)
            result = [
                {"metric": {"job": "test"}, "value": [NOW.timestamp(), str(ts)]}
                for ts in self.series
            ]
            return httpx.Response(
                self.query_status,
                json={"status": "success", "data": {"resultType": "vector", "result": result}},
            )
        if request.url.path == "/api/v1/write" and request.method == "POST":
            self.writes.append(request)
            if self.fail_writes:
                return httpx.Response(500, text="write failed")
            return httpx.Response(204)
        return httpx.Response(404)

    def decoded_writes(self):
        return [WriteRequest.FromString(snappy.decompress(r.content)) for r in self.writes]


@pytest.fixture
def backend():
    return FakePrometheus()


@pytest.fixture
def prom_config():
    return PrometheusConfig(url="http://prometheus.test:9090/", prefix="test_")


@pytest.fixture
def make_syncer(backend, prom_config):
    """Build a syncer wired to the fake backend."""
    def _make(clock=lambda: NOW, **overrides):
        config = prom_config.model_copy(update=overrides)
        client = PrometheusClient(config.url, transport=httpx.MockTransport(backend.handler))
        return Syncer(config, LABELS, client=client, metrics=SelfMetrics(prefix=config.prefix), clock=clock)
    return _make


@pytest.fixture
def syncer(make_syncer):
    return make_syncer()


def write_count(syncer: Syncer, status: str) -> float:
    value = syncer.metrics.registry.get_sample_value(
        "test_prometheus_writes_total", {"status": status}
    )
    return value or 0.0


@pytest.fixture
def app_config():
    return Config(**{
        "prometheus": {"url": "http://prometheus.test:9090/", "prefix": "test_"},
        "refresh": {"interval_s": 3600, "retry_backoff_s": 0.01, "cycle_timeout_s": 30},
    })


def minutes_ago(n: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(minutes=n)


class FakeAcquirer(Acquirer):
    """Returns canned readings, or raises."""

    def __init__(self, latest=None, readings=(), error=None, delay=0.0):
        super().__init__(DeviceConfig(), PasskeyMediator())
        self.latest = latest
        self.readings = list(readings)
        self.error = error
        self.delay = delay
        self.calls = 0
        self.on_acquire = None

    def acquire(self, timeout):
        self.calls += 1
        if self.on_acquire:
            self.on_acquire(self.calls)
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.latest, self.readings


def reading(t, co2=420, pressure=1010.0, battery=-1):
    return Reading(time=t, co2=co2, temperature=21.0, humidity=45.0, pressure=pressure, battery=battery)

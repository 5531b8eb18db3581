"""Tests for configuration loading and validation."""
from pathlib import Path

import pytest

from aranet_sync.acquisition import Acquirer, load_acquirer
from aranet_sync.config import Config, DeviceConfig, PrometheusConfig, load_config
from aranet_sync.passkey import PasskeyMediator

EXAMPLE_CONFIG = Path(__file__).parent.parent / "configs" / "example.yaml"


class StaticAcquirer(Acquirer):
    def acquire(self, timeout):
        return None, []


def test_defaults():
    config = Config()
    assert config.prometheus.prefix == "aranet4_"
    assert config.prometheus.lookback_days == 30
    assert config.refresh.interval_s == 3600
    assert config.refresh.retry_backoff_s == 1
    assert config.pairing.delivery_timeout_s == 5
    assert config.server.port == 9090
    assert config.global_.log_level == "INFO"


def test_series_labels():
    config = Config(**{"prometheus": {"job": "j", "instance": "i"}, "device": {"address": "AA"}})
    assert config.series_labels() == {"job": "j", "instance": "i", "device_addr": "AA"}


@pytest.mark.parametrize("url, message", [
    ("", "required"),
    ("http://", "has no host"),
    ("localhost:9090", "has no host"),
    ("//prometheus:9090", "has no scheme"),
])
def test_invalid_prometheus_url(url, message):
    with pytest.raises(ValueError, match=message):
        PrometheusConfig(url=url)


def test_example_config_loads(monkeypatch):
    monkeypatch.delenv("PROMETHEUS_URL", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("DRY_RUN", raising=False)

    config = load_config(str(EXAMPLE_CONFIG))

    assert config.prometheus.url == "http://localhost:9090/"
    assert config.device.acquirer == "my_aranet_ble:BleAcquirer"
    assert config.pairing.pairing_timeout_s == 120


def test_env_overrides(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("prometheus:\n  url: http://a:9090/\n")
    monkeypatch.setenv("PROMETHEUS_URL", "http://b:9090/")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("DRY_RUN", "true")

    config = load_config(str(path))

    assert config.prometheus.url == "http://b:9090/"
    assert config.prometheus.dry_run is True
    assert config.global_.log_level == "DEBUG"


def test_invalid_config_is_value_error(tmp_path, monkeypatch):
    monkeypatch.delenv("PROMETHEUS_URL", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text("refresh:\n  interval_s: 0\n")
    with pytest.raises(ValueError, match="Configuration validation failed"):
        load_config(str(path))


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


def test_load_acquirer_by_reference():
    config = DeviceConfig(acquirer="test_config:StaticAcquirer")
    acquirer = load_acquirer(config, PasskeyMediator())
    assert type(acquirer).__name__ == "StaticAcquirer"
    assert acquirer.config is config


@pytest.mark.parametrize("reference", [None, "no_colon", "aranet_sync.config:Missing", "aranet_sync.config:Config"])
def test_load_acquirer_rejects_bad_references(reference):
    with pytest.raises(ValueError):
        load_acquirer(DeviceConfig(acquirer=reference), PasskeyMediator())

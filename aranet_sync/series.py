"""Data structures for readings, samples and series label sets."""
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional, Tuple

LabelSet = Tuple[Tuple[str, str], ...]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def as_utc(ts: datetime) -> datetime:
    """Interpret naive datetimes as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def is_zero_time(ts: Optional[datetime]) -> bool:
    """True for a missing timestamp or the Unix epoch."""
    return ts is None or as_utc(ts) == EPOCH


@dataclass
class Sample:
    """A single timestamped value for one metric."""
    metric_name: str
    timestamp: datetime
    value: float


@dataclass
class Reading:
    """One record read from the device."""
    time: Optional[datetime]
    co2: int
    temperature: float
    humidity: float
    pressure: float
    battery: int = -1

    def samples(self) -> Iterator[Sample]:
        """Expand the reading into per-metric samples."""
        yield Sample("co2_ppm", self.time, float(self.co2))
        yield Sample("humidity_percent", self.time, float(self.humidity))
        yield Sample("pressure_hpa", self.time, float(self.pressure))
        yield Sample("temperature_celsius", self.time, float(self.temperature))


def label_set(metric_name: str, prefix: str, labels: Dict[str, str]) -> LabelSet:
    """Build the canonical, name-sorted label set for a metric."""
    items = dict(labels)
    items["__name__"] = f"{prefix}{metric_name}"
    return tuple(sorted(items.items()))


def selector(labels: LabelSet) -> str:
    """Render a label set as a PromQL series selector."""
    # JSON string escaping matches PromQL's double-quoted string rules
    return "{" + ", ".join(f"{k}={json.dumps(v)}" for k, v in labels) + "}"

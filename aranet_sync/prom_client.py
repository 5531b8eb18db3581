"""Prometheus HTTP API client: instant queries and remote write."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

import httpx
import snappy
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

from aranet_sync.series import LabelSet

logger = logging.getLogger(__name__)

QUERY_PATH = "/api/v1/query"
WRITE_PATH = "/api/v1/write"

_F = descriptor_pb2.FieldDescriptorProto


def _remote_write_proto() -> descriptor_pb2.FileDescriptorProto:
    """Describe the subset of prometheus/prompb used by remote write 1.0."""
    fdp = descriptor_pb2.FileDescriptorProto(
        name="aranet_sync/remote.proto",
        package="prometheus",
        syntax="proto3",
    )

    label = fdp.message_type.add(name="Label")
    label.field.add(name="name", number=1, type=_F.TYPE_STRING, label=_F.LABEL_OPTIONAL)
    label.field.add(name="value", number=2, type=_F.TYPE_STRING, label=_F.LABEL_OPTIONAL)

    sample = fdp.message_type.add(name="Sample")
    sample.field.add(name="value", number=1, type=_F.TYPE_DOUBLE, label=_F.LABEL_OPTIONAL)
    sample.field.add(name="timestamp", number=2, type=_F.TYPE_INT64, label=_F.LABEL_OPTIONAL)

    series = fdp.message_type.add(name="TimeSeries")
    series.field.add(name="labels", number=1, type=_F.TYPE_MESSAGE,
                     type_name=".prometheus.Label", label=_F.LABEL_REPEATED)
    series.field.add(name="samples", number=2, type=_F.TYPE_MESSAGE,
                     type_name=".prometheus.Sample", label=_F.LABEL_REPEATED)

    request = fdp.message_type.add(name="WriteRequest")
    request.field.add(name="timeseries", number=1, type=_F.TYPE_MESSAGE,
                      type_name=".prometheus.TimeSeries", label=_F.LABEL_REPEATED)
    return fdp


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_remote_write_proto().SerializeToString())
WriteRequest = message_factory.GetMessageClass(_pool.FindMessageTypeByName("prometheus.WriteRequest"))


class PrometheusAPIError(Exception):
    """The query API answered with an error or an unexpected payload."""


@dataclass
class QueryResult:
    """Decoded ``data`` section of an instant query response."""
    result_type: str
    result: List[Dict[str, Any]]
    warnings: List[str] = field(default_factory=list)


@dataclass
class TimeSeries:
    """One series of a remote write request."""
    labels: LabelSet
    samples: Sequence[Tuple[float, datetime]]


def encode_write_request(series: Sequence[TimeSeries]) -> bytes:
    """Serialize series into a snappy-compressed WriteRequest body."""
    req = WriteRequest()
    for ts in series:
        pb = req.timeseries.add()
        # Remote write requires labels sorted by name
        for name, value in sorted(ts.labels):
            pb.labels.add(name=name, value=value)
        for value, at in ts.samples:
            pb.samples.add(value=value, timestamp=int(at.timestamp() * 1000))
    return snappy.compress(req.SerializeToString())


class PrometheusClient:
    """Thin httpx wrapper around the Prometheus query and write endpoints."""

    def __init__(self, base_url: str, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url
        self._client = httpx.Client(base_url=base_url, transport=transport)
        logger.debug(f"Prometheus client created for {base_url}")

    def query(self, expr: str, at: datetime, lookback_delta: timedelta, timeout: float) -> QueryResult:
        """Evaluate an instant query at a given time."""
        params = {
            "query": expr,
            "time": f"{at.timestamp():.3f}",
            "lookback_delta": f"{int(lookback_delta.total_seconds())}s",
        }
        response = self._client.get(QUERY_PATH, params=params, timeout=timeout)

        try:
            body = response.json()
        except ValueError:
            response.raise_for_status()
            raise PrometheusAPIError(f"query {expr} returned a non-JSON body")

        if body.get("status") != "success":
            raise PrometheusAPIError(
                f"query {expr} failed with HTTP {response.status_code}: "
                f"{body.get('errorType', 'unknown')}: {body.get('error', '')}"
            )

        data = body.get("data")
        if not isinstance(data, dict) or "resultType" not in data:
            raise PrometheusAPIError(f"query {expr} returned no data")

        return QueryResult(
            result_type=data["resultType"],
            result=data.get("result") or [],
            warnings=body.get("warnings") or [],
        )

    def write(self, series: Sequence[TimeSeries], timeout: float) -> None:
        """Push samples via the remote write endpoint."""
        response = self._client.post(
            WRITE_PATH,
            content=encode_write_request(series),
            headers={
                "Content-Encoding": "snappy",
                "Content-Type": "application/x-protobuf",
                "X-Prometheus-Remote-Write-Version": "0.1.0",
            },
            timeout=timeout,
        )
        response.raise_for_status()

    def close(self):
        self._client.close()

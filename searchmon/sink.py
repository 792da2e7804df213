"""
Metric sink.

MetricAccumulator collects metrics and per-aggregation errors; writes are
lock-guarded so concurrent collection tasks can append directly.
to_line_protocol renders a Metric in InfluxDB line protocol for stdout output.
"""

import logging
import threading
from typing import List, Optional, Tuple

from .models import Metric

logger = logging.getLogger("searchmon.sink")


class MetricAccumulator:
    """Thread-safe collector of metrics and errors for one or more cycles."""

    def __init__(self):
        self._lock = threading.Lock()
        self._metrics: List[Metric] = []
        self._errors: List[Exception] = []

    def add_metric(self, metric: Metric) -> None:
        with self._lock:
            self._metrics.append(metric)

    def add_metrics(self, metrics: List[Metric]) -> None:
        with self._lock:
            self._metrics.extend(metrics)

    def add_error(self, error: Exception) -> None:
        with self._lock:
            self._errors.append(error)

    def drain(self) -> Tuple[List[Metric], List[Exception]]:
        """Return and clear everything collected so far."""
        with self._lock:
            metrics, errors = self._metrics, self._errors
            self._metrics, self._errors = [], []
        return metrics, errors


def _escape(value: str, chars: str) -> str:
    value = value.replace("\\", "\\\\")
    for ch in chars:
        value = value.replace(ch, "\\" + ch)
    return value


def _format_field(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"{value}i"
    if isinstance(value, float):
        return repr(value)
    return '"' + str(value).replace("\\", "\\\\").replace('"', '\\"') + '"'


def to_line_protocol(metric: Metric) -> Optional[str]:
    """
    Render a metric as one line of InfluxDB line protocol.

    Returns None for metrics without fields (not representable).
    """
    if not metric.fields:
        logger.debug(f"{metric.measurement}: dropping metric without fields, tags={metric.tags}")
        return None

    parts = [_escape(metric.measurement, ", ")]
    for key in sorted(metric.tags):
        value = metric.tags[key]
        if value == "":
            continue
        parts.append(f"{_escape(key, ',= ')}={_escape(value, ',= ')}")

    fields = ",".join(
        f"{_escape(key, ',= ')}={_format_field(value)}" for key, value in metric.fields.items()
    )
    timestamp_ns = int(metric.timestamp.timestamp() * 1_000_000) * 1000
    return f"{','.join(parts)} {fields} {timestamp_ns}"

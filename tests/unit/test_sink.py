"""Unit tests for the metric sink and line protocol output"""
import threading
from datetime import datetime, timezone

from searchmon.models import Metric
from searchmon.sink import MetricAccumulator, to_line_protocol

TS = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
TS_NS = 1714564800 * 1_000_000_000


class TestMetricAccumulator:
    """Test thread-safe accumulation"""

    def test_drain_clears(self):
        acc = MetricAccumulator()
        acc.add_metric(Metric("m", fields={"v": 1.0}, timestamp=TS))
        acc.add_error(RuntimeError("x"))

        metrics, errors = acc.drain()
        assert len(metrics) == 1
        assert len(errors) == 1
        assert acc.drain() == ([], [])

    def test_concurrent_writes(self):
        acc = MetricAccumulator()

        def writer(n):
            for i in range(200):
                acc.add_metrics([Metric(f"w{n}", fields={"i": i}, timestamp=TS)])

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        metrics, _ = acc.drain()
        assert len(metrics) == 8 * 200


class TestLineProtocol:
    """Test InfluxDB line protocol rendering"""

    def test_basic(self):
        metric = Metric("system", {"host": "web-1", "region": "eu"}, {"cpu": 10.5, "count": 3}, TS)
        assert to_line_protocol(metric) == f"system,host=web-1,region=eu cpu=10.5,count=3i {TS_NS}"

    def test_tags_sorted_and_escaped(self):
        metric = Metric("my measurement", {"z": "1", "a key": "v,1=2"}, {"f": 1.0}, TS)
        assert to_line_protocol(metric) == f"my\\ measurement,a\\ key=v\\,1\\=2,z=1 f=1.0 {TS_NS}"

    def test_empty_tag_value_dropped(self):
        metric = Metric("m", {"host": ""}, {"f": 2.0}, TS)
        assert to_line_protocol(metric) == f"m f=2.0 {TS_NS}"

    def test_no_fields(self):
        assert to_line_protocol(Metric("m", {"host": "a"}, {}, TS)) is None

    def test_default_timestamp(self):
        metric = Metric("m", fields={"f": 1.0})
        assert metric.timestamp.tzinfo is not None
        assert metric.tags == {}

"""Unit tests for configuration loading"""
import argparse
import os
from unittest.mock import patch

import pytest

from searchmon.config import AggregationConfig, SearchmonConfig, load_config, load_config_from, parse_duration
from searchmon.errors import ConfigurationError
from searchmon.models import MissingTagPolicy

SAMPLE_CONFIG = """
urls:
  - https://node1:9200
  - https://node2:9200
username: monitor
timeout: 10s
interval: 1m
aggregation:
  - index: "metrics-*"
    measurement_name: cpu_by_host
    date_field: "@timestamp"
    query_period: 5m
    metric_fields: [cpu, mem]
    metric_function: avg
    tags: [region, host.name]
    include_missing_tag: true
    missing_tag_value: unknown
  - index: "logs-*"
    measurement_name: raw_logs
    date_field: ts
    date_field_custom_format: "%Y-%m-%d %H:%M:%S"
    metric_fields: [latency]
"""


class TestParseDuration:
    """Test telegraf style duration parsing"""

    @pytest.mark.parametrize("value,expected", [
        ("500ms", 0.5),
        ("10s", 10.0),
        ("1m", 60.0),
        ("1h30m", 5400.0),
        ("2.5s", 2.5),
        ("30", 30.0),
        (15, 15.0),
        (0.25, 0.25),
    ])
    def test_valid(self, value, expected):
        assert parse_duration(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["", "ten seconds", "5x", "1m garbage", True])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


class TestAggregationConfig:
    """Test per-aggregation config"""

    def test_defaults(self):
        agg = AggregationConfig(index="idx", measurement_name="m", date_field="@timestamp")

        assert agg.query_period == 60.0
        assert agg.tags == []
        assert agg.metric_function is None
        assert agg.missing_policy() == MissingTagPolicy.SKIP

    def test_missing_policy(self):
        agg = AggregationConfig(index="idx", measurement_name="m", date_field="ts",
                                include_missing_tag=True, missing_tag_value="n/a")
        assert agg.missing_policy() == MissingTagPolicy.SUBSTITUTE

    def test_include_missing_without_value_skips(self):
        agg = AggregationConfig(index="idx", measurement_name="m", date_field="ts", include_missing_tag=True)
        assert agg.missing_policy() == MissingTagPolicy.SKIP

    def test_blank_strings_become_none(self):
        agg = AggregationConfig(index="idx", measurement_name="m", date_field="ts",
                                metric_function="  ", filter_query="")
        assert agg.metric_function is None
        assert agg.filter_query is None

    @pytest.mark.parametrize("missing", ["index", "measurement_name", "date_field"])
    def test_required_fields(self, missing):
        data = {"index": "idx", "measurement_name": "m", "date_field": "ts"}
        data[missing] = ""
        with pytest.raises(ValueError):
            AggregationConfig(**data)

    def test_duplicate_tags_rejected(self):
        with pytest.raises(ValueError, match="duplicate tags: host.name"):
            AggregationConfig(index="idx", measurement_name="m", date_field="ts",
                              tags=["host.name", "region", "host.name"])

    def test_to_spec(self):
        agg = AggregationConfig(index="idx", measurement_name="m", date_field="ts", query_period="2m",
                                metric_fields=["cpu"], metric_function="max", tags=["host"],
                                include_missing_tag=True, missing_tag_value="none")
        spec = agg.to_spec()

        assert spec.index == "idx"
        assert spec.query_period == 120.0
        assert spec.metric_fields == ["cpu"]
        assert spec.tags == ["host"]
        assert spec.missing_policy == MissingTagPolicy.SUBSTITUTE
        assert spec.missing_tag_value == "none"
        assert spec.compiled is None


class TestLoadConfig:
    """Test YAML loading"""

    def test_load_sample(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(SAMPLE_CONFIG)

        config = load_config_from(path)

        assert config.urls == ["https://node1:9200", "https://node2:9200"]
        assert config.username == "monitor"
        assert config.timeout == 10.0
        assert config.interval == 60.0
        assert config.health_check_interval == 10.0
        assert len(config.aggregations) == 2
        first, second = config.specs()
        assert first.query_period == 300.0
        assert first.missing_policy == MissingTagPolicy.SUBSTITUTE
        assert second.metric_function is None
        assert second.date_field_custom_format == "%Y-%m-%d %H:%M:%S"

    def test_missing_urls(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("timeout: 5s\n")
        with pytest.raises(ConfigurationError, match="invalid config"):
            load_config_from(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("urls: [unclosed\n")
        with pytest.raises(ConfigurationError, match="invalid YAML"):
            load_config_from(path)

    def test_env_lookup(self, tmp_path):
        path = tmp_path / "from-env.yaml"
        path.write_text("urls: [http://localhost:9200]\n")
        with patch.dict(os.environ, {"SEARCHMON_CONFIG": str(path)}):
            config = load_config()
        assert config.urls == ["http://localhost:9200"]

    def test_nothing_found(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("SEARCHMON_CONFIG", raising=False)
        with patch("searchmon.config.DEFAULT_CONFIG_FILES", ["./config.yaml"]):
            with pytest.raises(ConfigurationError, match="no configuration file found"):
                load_config()


class TestOverrideWithArgs:
    """Test CLI overrides"""

    def test_overrides(self):
        config = SearchmonConfig(urls=["http://localhost:9200"])
        args = argparse.Namespace(interval="30s", log_level="DEBUG", once=True)

        config.override_with_args(args)

        assert config.interval == 30.0
        assert config.log_level == "DEBUG"
        assert config.once is True

    def test_unset_args_keep_file_values(self):
        config = SearchmonConfig(urls=["http://localhost:9200"], interval="2m", log_level="warning")
        args = argparse.Namespace(interval=None, log_level=None, once=False)

        config.override_with_args(args)

        assert config.interval == 120.0
        assert config.log_level == "WARNING"
        assert config.once is False

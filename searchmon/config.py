#!/usr/bin/env python3
"""
searchmon configuration

YAML file validated with pydantic. Lookup order when no path is given:
1. Environment variable SEARCHMON_CONFIG
2. ./config.yaml
3. /etc/searchmon/config.yaml

Example:

    urls: ["https://localhost:9200"]
    timeout: 5s
    aggregations:
      - index: "logs-*"
        measurement_name: http_requests
        date_field: "@timestamp"
        query_period: 1m
        metric_fields: [response_time]
        metric_function: avg
        tags: [host.name, http.method]
"""

import argparse
import logging
import os
import re
from pathlib import Path
from typing import List, Optional, Union

import yaml
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .models import AggregationSpec, MissingTagPolicy

logger = logging.getLogger("searchmon.config")

DEFAULT_CONFIG_FILES = [
    "./config.yaml",
    "/etc/searchmon/config.yaml",
]

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a duration into seconds.

    Accepts plain numbers (seconds) or strings like "500ms", "10s", "1m", "1h30m".
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    if not text:
        raise ValueError("empty duration")
    try:
        return float(text)
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


class AggregationConfig(BaseModel):
    index: str = Field(..., min_length=1)
    measurement_name: str = Field(..., min_length=1)
    date_field: str = Field(..., min_length=1)
    date_field_custom_format: Optional[str] = None
    query_period: float = 60.0
    filter_query: Optional[str] = None
    metric_fields: List[str] = []
    metric_function: Optional[str] = None
    tags: List[str] = []
    include_missing_tag: bool = False
    missing_tag_value: str = ""
    # Not in the minimal surface: doc_count per metric, flat-mode page size
    include_doc_count: bool = False
    size: int = Field(100, ge=1, le=10000)

    @field_validator("query_period", mode="before")
    @classmethod
    def _parse_period(cls, v):
        return parse_duration(v)

    @field_validator("filter_query", "metric_function", "date_field_custom_format", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, v: List[str]) -> List[str]:
        duplicates = sorted({t for t in v if v.count(t) > 1})
        if duplicates:
            raise ValueError(f"duplicate tags: {', '.join(duplicates)}")
        return v

    def missing_policy(self) -> MissingTagPolicy:
        # An empty placeholder would produce an empty tag value, so it behaves as skip
        if self.include_missing_tag and self.missing_tag_value:
            return MissingTagPolicy.SUBSTITUTE
        return MissingTagPolicy.SKIP

    def to_spec(self) -> AggregationSpec:
        return AggregationSpec(
            index=self.index,
            measurement_name=self.measurement_name,
            date_field=self.date_field,
            date_field_custom_format=self.date_field_custom_format,
            query_period=self.query_period,
            filter_query=self.filter_query,
            metric_fields=list(self.metric_fields),
            metric_function=self.metric_function,
            tags=list(self.tags),
            missing_policy=self.missing_policy(),
            missing_tag_value=self.missing_tag_value,
            include_doc_count=self.include_doc_count,
            size=self.size,
        )


class SearchmonConfig(BaseModel):
    urls: List[str] = Field(..., min_length=1)
    username: Optional[str] = None
    password: Optional[str] = None
    enable_sniffer: bool = False
    timeout: float = 5.0
    health_check_interval: float = 10.0
    # TLS
    insecure_skip_verify: bool = False
    tls_ca: Optional[str] = None
    tls_cert: Optional[str] = None
    tls_key: Optional[str] = None
    # Collection loop
    interval: float = 60.0
    log_level: str = "INFO"
    once: bool = False
    aggregations: List[AggregationConfig] = Field(
        default_factory=list,
        validation_alias=AliasChoices("aggregations", "aggregation"),
    )

    @field_validator("timeout", "health_check_interval", "interval", mode="before")
    @classmethod
    def _parse_durations(cls, v):
        return parse_duration(v)

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ValueError(f"unknown log level: {v}")
        return level

    def specs(self) -> List[AggregationSpec]:
        return [agg.to_spec() for agg in self.aggregations]

    def override_with_args(self, args: argparse.Namespace) -> "SearchmonConfig":
        """Override config with command line arguments if provided"""
        if getattr(args, "interval", None) is not None:
            self.interval = parse_duration(args.interval)
        if getattr(args, "log_level", None) is not None:
            self.log_level = args.log_level
        if getattr(args, "once", False):
            self.once = True
        return self


def load_config_from(path: Union[str, Path]) -> SearchmonConfig:
    """Load configuration from a YAML file. Raises ConfigurationError."""
    path = Path(path)
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"cannot read config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML in {path}: {e}") from e

    try:
        return SearchmonConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(f"invalid config {path}: {e}") from e


def load_config(config_path: Optional[str] = None) -> SearchmonConfig:
    """Find and load the configuration file (see module docstring for lookup order)."""
    if config_path:
        return load_config_from(config_path)

    candidates = [os.environ.get("SEARCHMON_CONFIG")] + DEFAULT_CONFIG_FILES
    for candidate in candidates:
        if candidate and Path(candidate).exists():
            logger.info(f"Loading configuration from: {candidate}")
            return load_config_from(candidate)

    raise ConfigurationError("no configuration file found")

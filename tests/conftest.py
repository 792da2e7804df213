"""Pytest configuration and shared fixtures"""
import copy
import time
from datetime import datetime, timezone

import pytest

from searchmon.models import AggregationSpec


# Real-world shaped mapping response (OpenSearch 2.x, one index matched)
MOCK_MAPPING_RESPONSE = {
    "metrics-2024.05.01": {
        "mappings": {
            "properties": {
                "@timestamp": {"type": "date"},
                "cpu": {"type": "double"},
                "mem": {"type": "long"},
                "status": {"type": "keyword"},
                "message": {"type": "text", "fields": {"keyword": {"type": "keyword", "ignore_above": 256}}},
                "host": {
                    "properties": {
                        "name": {"type": "keyword"},
                        "ip": {"type": "ip"},
                    }
                },
                "region": {"type": "keyword"},
            }
        }
    }
}

MOCK_FIELD_TYPES = {
    "@timestamp": "date",
    "cpu": "double",
    "mem": "long",
    "status": "keyword",
    "message": "text",
    "message.keyword": "keyword",
    "host": "object",
    "host.name": "keyword",
    "host.ip": "ip",
    "region": "keyword",
}


class FakeStoreClient:
    """In-memory stand-in for SearchStoreClient"""

    def __init__(self, mappings=None, responses=None, delays=None, errors=None):
        self.mappings = mappings if mappings is not None else {"metrics-*": MOCK_MAPPING_RESPONSE}
        self.responses = responses or {}
        self.delays = delays or {}
        self.errors = errors or {}
        self.search_calls = []
        self.mapping_calls = []

    def field_mapping(self, index, timeout=None):
        self.mapping_calls.append(index)
        if "field_mapping" in self.errors:
            raise self.errors["field_mapping"]
        if f"{index}/_mapping" in self.errors:
            raise self.errors[f"{index}/_mapping"]
        return self.mappings[index]

    def search(self, index, body, timeout=None):
        self.search_calls.append((index, body))
        if index in self.delays:
            time.sleep(self.delays[index])
        if index in self.errors:
            raise self.errors[index]
        return self.responses[index]


@pytest.fixture
def fake_client():
    return FakeStoreClient()


@pytest.fixture
def make_client():
    """Factory for FakeStoreClient with custom responses/errors/delays"""
    return FakeStoreClient


@pytest.fixture
def mapping_response():
    return copy.deepcopy(MOCK_MAPPING_RESPONSE)


@pytest.fixture
def field_types():
    return dict(MOCK_FIELD_TYPES)


@pytest.fixture
def make_spec():
    """Factory for aggregation specs with sensible defaults"""
    def _make(**overrides):
        params = dict(
            index="metrics-*",
            measurement_name="system",
            date_field="@timestamp",
            query_period=60.0,
            metric_fields=["cpu"],
            metric_function="avg",
            tags=[],
        )
        params.update(overrides)
        return AggregationSpec(**params)
    return _make


@pytest.fixture
def reference_time():
    return datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

"""
searchmon data model.

AggregationSpec is built once from configuration and carries its compiled
query after the first successful compilation. Metric instances are created
fresh on every collection cycle.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

Number = Union[int, float]

# Placeholders rendered by CompiledQuery.render() at execution time
WINDOW_START = "{{window_start}}"
WINDOW_END = "{{window_end}}"


class MetricFunction(str, Enum):
    AVG = "avg"
    SUM = "sum"
    MIN = "min"
    MAX = "max"
    COUNT = "count"
    DISTINCT_COUNT = "distinct_count"

    @property
    def store_aggregation(self) -> str:
        """Aggregation type name used in the query document."""
        return _STORE_AGGREGATIONS[self]

    @property
    def requires_numeric(self) -> bool:
        return self in (MetricFunction.AVG, MetricFunction.SUM, MetricFunction.MIN, MetricFunction.MAX)

    @classmethod
    def parse(cls, name: str) -> "MetricFunction":
        """Resolve a configured function name (aliases accepted). Raises ValueError."""
        key = name.strip().lower()
        key = _FUNCTION_ALIASES.get(key, key)
        return cls(key)


_STORE_AGGREGATIONS = {
    MetricFunction.AVG: "avg",
    MetricFunction.SUM: "sum",
    MetricFunction.MIN: "min",
    MetricFunction.MAX: "max",
    MetricFunction.COUNT: "value_count",
    MetricFunction.DISTINCT_COUNT: "cardinality",
}

_FUNCTION_ALIASES = {
    "average": "avg",
    "mean": "avg",
    "value_count": "count",
    "cardinality": "distinct_count",
    "distinct-count": "distinct_count",
}


class MissingTagPolicy(str, Enum):
    SKIP = "skip"
    SUBSTITUTE = "substitute"


class SpecState(str, Enum):
    UNVALIDATED = "unvalidated"
    COMPILED = "compiled"
    EXECUTING = "executing"
    FAILED = "failed"


@dataclass(frozen=True)
class GroupLevel:
    """One grouping level: the tag plus the aggregation names used for it."""
    tag: str
    bucket_name: str
    missing_name: str


@dataclass(frozen=True)
class CompiledQuery:
    """Query template plus the naming needed to read its response back."""
    body: Dict[str, Any]
    levels: Tuple[GroupLevel, ...] = ()
    metric_aggs: Tuple[Tuple[str, str], ...] = ()  # (metric field, aggregation name)
    function: Optional[MetricFunction] = None

    @property
    def is_flat(self) -> bool:
        return self.function is None

    def render(self, window_start: datetime, window_end: datetime) -> Dict[str, Any]:
        """Return a fresh request document with the time window filled in."""
        bounds = {
            WINDOW_START: _epoch_millis(window_start),
            WINDOW_END: _epoch_millis(window_end),
        }
        return _substitute(copy.deepcopy(self.body), bounds)


def _epoch_millis(ts: datetime) -> int:
    return int(ts.timestamp() * 1000)


def _substitute(node: Any, values: Dict[str, Any]) -> Any:
    if isinstance(node, dict):
        return {k: _substitute(v, values) for k, v in node.items()}
    if isinstance(node, list):
        return [_substitute(v, values) for v in node]
    if isinstance(node, str) and node in values:
        return values[node]
    return node


@dataclass
class AggregationSpec:
    """One configured aggregation rule (index -> measurement)."""
    index: str
    measurement_name: str
    date_field: str
    query_period: float  # lookback window, seconds
    metric_fields: List[str] = field(default_factory=list)
    metric_function: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    date_field_custom_format: Optional[str] = None
    filter_query: Optional[str] = None
    missing_policy: MissingTagPolicy = MissingTagPolicy.SKIP
    missing_tag_value: str = ""
    include_doc_count: bool = False
    size: int = 100

    # Populated by the orchestrator
    field_types: Optional[Dict[str, str]] = None
    compiled: Optional[CompiledQuery] = None
    state: SpecState = SpecState.UNVALIDATED
    last_error: Optional[Exception] = None

    @property
    def is_compiled(self) -> bool:
        return self.compiled is not None


@dataclass
class Metric:
    """Single output metric"""
    measurement: str
    tags: Dict[str, str] = None
    fields: Dict[str, Number] = None
    timestamp: datetime = None

    def __post_init__(self):
        if self.tags is None:
            self.tags = {}
        if self.fields is None:
            self.fields = {}
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)

"""
Result decompiler.

Turns a search response back into flat Metric tuples.

Two response shapes:
- flat: no "aggregations" key, one Metric per returned document
- bucketed: the aggregation tree is parsed into LeafBucket / GroupBucket
  nodes (depth = number of grouping levels of the compiled query), then
  walked depth-first, accumulating one tag per level

Decompilation is all-or-nothing: any structural problem raises
ResponseShapeError and no metrics are returned for that response.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from ..errors import ResponseShapeError
from ..models import AggregationSpec, CompiledQuery, Metric, MetricFunction, MissingTagPolicy, Number

logger = logging.getLogger("searchmon.decompiler")


@dataclass
class LeafBucket:
    """Innermost bucket; values maps metric field -> raw value from the store (None if null)."""
    key: Optional[str]
    doc_count: int
    values: Dict[str, Any] = field(default_factory=dict)
    is_missing: bool = False


@dataclass
class GroupBucket:
    """Bucket with one more grouping level below it."""
    key: Optional[str]
    doc_count: int
    children: List["BucketNode"] = field(default_factory=list)
    missing: Optional["BucketNode"] = None
    is_missing: bool = False


BucketNode = Union[LeafBucket, GroupBucket]


def decompile(spec: AggregationSpec, response: Dict[str, Any], reference_time: datetime) -> List[Metric]:
    """
    Convert a search response into metrics.

    Args:
        spec: Compiled aggregation spec the response belongs to
        response: Parsed search response body
        reference_time: Query issue time, used as timestamp of aggregated metrics

    Raises:
        ResponseShapeError: response does not match the compiled query
    """
    compiled = spec.compiled
    if compiled is None:
        raise RuntimeError(f"aggregation '{spec.measurement_name}' is not compiled")
    if not isinstance(response, dict):
        raise ResponseShapeError("search response is not an object")

    if response.get("timed_out"):
        logger.warning(f"{spec.measurement_name}: store reported a timed out (partial) search")
    failed_shards = (response.get("_shards") or {}).get("failed") or 0
    if failed_shards:
        logger.warning(f"{spec.measurement_name}: {failed_shards} shard(s) failed")

    if "aggregations" not in response:
        if not compiled.is_flat:
            raise ResponseShapeError("expected aggregations in response")
        return decompile_documents(spec, response)

    if compiled.is_flat:
        raise ResponseShapeError("unexpected aggregations in flat document response")

    root = parse_bucket_tree(compiled, response["aggregations"], total_hits(response))
    metrics: List[Metric] = []
    _walk(spec, compiled, root, 0, [], reference_time, metrics)
    return metrics


# ---------- Flat documents ----------

def decompile_documents(spec: AggregationSpec, response: Dict[str, Any]) -> List[Metric]:
    """One Metric per document hit: raw metric field values, document timestamp."""
    hits = (response.get("hits") or {}).get("hits")
    if not isinstance(hits, list):
        raise ResponseShapeError("response has no hits list")

    metrics: List[Metric] = []
    for hit in hits:
        source = hit.get("_source") if isinstance(hit, dict) else None
        if not isinstance(source, dict):
            raise ResponseShapeError("document hit without _source")

        raw_ts = lookup_path(source, spec.date_field)
        if raw_ts is None:
            raise ResponseShapeError(f"document {hit.get('_id')} has no '{spec.date_field}' value")
        try:
            timestamp = parse_timestamp(raw_ts, spec.date_field_custom_format)
        except ValueError as e:
            raise ResponseShapeError(f"document {hit.get('_id')}: {e}") from e

        tags: Dict[str, str] = {}
        for tag in spec.tags:
            value = lookup_path(source, tag)
            if value is None or isinstance(value, (dict, list)):
                _apply_missing_policy(spec, tag, tags)
            else:
                tags[tag] = format_key(value)

        fields: Dict[str, Number] = {}
        for metric_field in spec.metric_fields:
            value = lookup_path(source, metric_field)
            if is_number(value):
                fields[metric_field] = value

        metrics.append(Metric(spec.measurement_name, tags, fields, timestamp))
    return metrics


def lookup_path(source: Dict[str, Any], path: str) -> Any:
    """Resolve a dotted field path in a document; literal dotted keys win."""
    if path in source:
        return source[path]
    node: Any = source
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def parse_timestamp(value: Any, custom_format: Optional[str] = None) -> datetime:
    """
    Parse a document timestamp.

    With custom_format the value is parsed with datetime.strptime. Otherwise
    numbers (and digit strings) are epoch milliseconds, other strings ISO-8601.
    Naive results are taken as UTC.
    """
    if custom_format:
        ts = datetime.strptime(str(value), custom_format)
    elif is_number(value):
        ts = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    elif isinstance(value, str) and value.isdigit():
        ts = datetime.fromtimestamp(int(value) / 1000.0, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        ts = datetime.fromisoformat(text)
    else:
        raise ValueError(f"unsupported timestamp value: {value!r}")

    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


# ---------- Bucket tree ----------

def parse_bucket_tree(compiled: CompiledQuery, aggregations: Dict[str, Any], doc_count: int) -> BucketNode:
    """Parse the response "aggregations" object into a BucketNode tree."""
    if not isinstance(aggregations, dict):
        raise ResponseShapeError("aggregations is not an object")
    return _parse_node(compiled, aggregations, None, doc_count, 0, False)


def _parse_node(compiled: CompiledQuery, node: Dict[str, Any], key: Optional[str],
                doc_count: int, depth: int, is_missing: bool) -> BucketNode:
    if depth == len(compiled.levels):
        return LeafBucket(key, doc_count, _read_metric_values(compiled, node), is_missing)

    level = compiled.levels[depth]
    terms = node.get(level.bucket_name)
    if not isinstance(terms, dict) or not isinstance(terms.get("buckets"), list):
        raise ResponseShapeError(f"missing '{level.bucket_name}' buckets at depth {depth}")

    children = []
    for bucket in terms["buckets"]:
        if not isinstance(bucket, dict) or "key" not in bucket:
            raise ResponseShapeError(f"malformed bucket under '{level.bucket_name}'")
        children.append(
            _parse_node(compiled, bucket, format_key(bucket), _doc_count(bucket), depth + 1, False)
        )

    missing = None
    missing_agg = node.get(level.missing_name)
    if missing_agg is not None:
        if not isinstance(missing_agg, dict):
            raise ResponseShapeError(f"malformed '{level.missing_name}' bucket")
        missing_count = _doc_count(missing_agg)
        if missing_count > 0:
            missing = _parse_node(compiled, missing_agg, None, missing_count, depth + 1, True)

    return GroupBucket(key, doc_count, children, missing, is_missing)


def _read_metric_values(compiled: CompiledQuery, node: Dict[str, Any]) -> Dict[str, Any]:
    values = {}
    for metric_field, agg_name in compiled.metric_aggs:
        agg = node.get(agg_name)
        if not isinstance(agg, dict):
            raise ResponseShapeError(f"missing metric aggregation '{agg_name}'")
        values[metric_field] = agg.get("value")
    return values


def _doc_count(bucket: Dict[str, Any]) -> int:
    count = bucket.get("doc_count")
    if not isinstance(count, int) or isinstance(count, bool):
        raise ResponseShapeError(f"bucket without integer doc_count: {bucket.get('key')!r}")
    return count


def _walk(spec: AggregationSpec, compiled: CompiledQuery, node: BucketNode, depth: int,
          tags: List[Tuple[str, str]], reference_time: datetime, out: List[Metric]) -> None:
    if isinstance(node, LeafBucket):
        out.append(_leaf_metric(spec, compiled, node, tags, reference_time))
        return

    tag = compiled.levels[depth].tag
    for child in node.children:
        _walk(spec, compiled, child, depth + 1, tags + [(tag, child.key)], reference_time, out)

    if node.missing is not None:
        missing_tags = dict(tags)
        _apply_missing_policy(spec, tag, missing_tags)
        _walk(spec, compiled, node.missing, depth + 1, list(missing_tags.items()), reference_time, out)


def _apply_missing_policy(spec: AggregationSpec, tag: str, tags: Dict[str, str]) -> None:
    if spec.missing_policy == MissingTagPolicy.SUBSTITUTE:
        tags[tag] = spec.missing_tag_value


def _leaf_metric(spec: AggregationSpec, compiled: CompiledQuery, leaf: LeafBucket,
                 tags: List[Tuple[str, str]], reference_time: datetime) -> Metric:
    fields: Dict[str, Number] = {}
    for metric_field, _ in compiled.metric_aggs:
        value = leaf.values.get(metric_field)
        if compiled.function == MetricFunction.COUNT:
            fields[metric_field] = int(value) if is_number(value) else 0
        elif is_number(value):
            fields[metric_field] = value
    if spec.include_doc_count:
        fields["doc_count"] = leaf.doc_count
    return Metric(spec.measurement_name, dict(tags), fields, reference_time)


# ---------- Helpers ----------

def total_hits(response: Dict[str, Any]) -> int:
    """hits.total as an int, for both {"value": n} and legacy integer layouts."""
    total = (response.get("hits") or {}).get("total", 0)
    if isinstance(total, dict):
        total = total.get("value", 0)
    return total if isinstance(total, int) else 0


def is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def format_key(bucket_or_value: Any) -> str:
    """Render a bucket key (or raw document value) as a tag value."""
    if isinstance(bucket_or_value, dict):
        if bucket_or_value.get("key_as_string") is not None:
            return str(bucket_or_value["key_as_string"])
        value = bucket_or_value.get("key")
    else:
        value = bucket_or_value

    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)

"""
Aggregation query compiler.

Turns an AggregationSpec plus its validated field catalog into a query
document template:

    query.bool.filter = [range(date_field, window), query_string(filter_query)?]
    aggs = by_<tag0> (terms) / missing_<tag0> (missing)
             -> by_<tag1> / missing_<tag1>
               -> ... -> <field>_<function> metric clauses

With no tags the metric clauses sit directly under the top-level aggs. With no
metric function the query is a plain document search (flat mode).
Compilation is pure: it never talks to the store.
"""

import copy
import logging
from typing import Any, Dict, List, Optional

from ..errors import ConfigurationError
from ..models import WINDOW_END, WINDOW_START, AggregationSpec, CompiledQuery, GroupLevel, MetricFunction
from .catalog import validate_metric_fields

logger = logging.getLogger("searchmon.compiler")

NUMERIC_TYPES = {
    "long", "integer", "short", "byte", "double", "float",
    "half_float", "scaled_float", "unsigned_long",
}

TERMS_SIZE = 1000


def resolve_function(name: Optional[str]) -> Optional[MetricFunction]:
    """Map a configured function name to MetricFunction; None means flat mode."""
    if name is None:
        return None
    try:
        return MetricFunction.parse(name)
    except ValueError:
        valid = ", ".join(f.value for f in MetricFunction)
        raise ConfigurationError(f"unknown metric function '{name}' (expected one of: {valid})") from None


def metric_aggregation_name(field: str, function: MetricFunction) -> str:
    return f"{field.replace('.', '_')}_{function.value}"


def compile_query(spec: AggregationSpec, field_types: Dict[str, str]) -> CompiledQuery:
    """
    Compile an aggregation spec.

    Args:
        spec: Aggregation spec
        field_types: Field catalog of spec.index (see FieldCatalog.discover)

    Raises:
        ConfigurationError: unknown function, no metric fields, unknown field,
            or a numeric function on a non-numeric field
    """
    function = resolve_function(spec.metric_function)

    if function is not None and not spec.metric_fields:
        raise ConfigurationError("metric_fields is empty; nothing to aggregate")

    validate_metric_fields(spec.index, spec.metric_fields, field_types)

    if function is not None and function.requires_numeric:
        for metric_field in spec.metric_fields:
            field_type = field_types[metric_field]
            if field_type not in NUMERIC_TYPES:
                raise ConfigurationError(
                    f"metric function '{function.value}' needs a numeric field; "
                    f"'{metric_field}' on index '{spec.index}' is '{field_type}'"
                )

    body: Dict[str, Any] = {"query": {"bool": {"filter": _filter_clauses(spec)}}}

    if function is None:
        body["size"] = spec.size
        body["sort"] = [{spec.date_field: {"order": "desc"}}]
        body["_source"] = _unique([spec.date_field] + list(spec.tags) + list(spec.metric_fields))
        logger.debug(f"{spec.measurement_name}: compiled flat document query")
        return CompiledQuery(body=body)

    metric_aggs = tuple((f, metric_aggregation_name(f, function)) for f in spec.metric_fields)
    seen: Dict[str, str] = {}
    for metric_field, name in metric_aggs:
        other = seen.setdefault(name, metric_field)
        if other != metric_field:
            raise ConfigurationError(
                f"metric fields '{other}' and '{metric_field}' both map to aggregation '{name}'"
            )
    aggs: Dict[str, Any] = {
        name: {function.store_aggregation: {"field": f}} for f, name in metric_aggs
    }

    # Build inside-out so tags[0] ends up outermost. Each level copies its
    # subtree under the missing bucket, so the document grows as 2**len(tags)
    levels: List[GroupLevel] = []
    for depth in range(len(spec.tags) - 1, -1, -1):
        tag = spec.tags[depth]
        level = GroupLevel(
            tag=tag,
            bucket_name=f"by_{tag}",
            missing_name=f"missing_{tag}",
        )
        aggs = {
            level.bucket_name: {
                "terms": {"field": tag, "size": TERMS_SIZE},
                "aggs": aggs,
            },
            level.missing_name: {
                "missing": {"field": tag},
                "aggs": copy.deepcopy(aggs),
            },
        }
        levels.insert(0, level)

    body["size"] = 0
    body["aggs"] = aggs

    logger.debug(
        f"{spec.measurement_name}: compiled {function.value} over {len(metric_aggs)} fields, "
        f"{len(levels)} grouping levels"
    )
    return CompiledQuery(body=body, levels=tuple(levels), metric_aggs=metric_aggs, function=function)


def _filter_clauses(spec: AggregationSpec) -> List[Dict[str, Any]]:
    clauses: List[Dict[str, Any]] = [{
        "range": {
            spec.date_field: {
                "gte": WINDOW_START,
                "lte": WINDOW_END,
                "format": "epoch_millis",
            }
        }
    }]
    if spec.filter_query and spec.filter_query.strip() != "*":
        clauses.append({"query_string": {"query": spec.filter_query}})
    return clauses


def _unique(items: List[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out

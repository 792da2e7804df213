"""
Aggregation query modules

- catalog.py: field discovery and metric field validation
- compiler.py: AggregationSpec -> query document
- decompiler.py: search response -> Metric tuples
"""

from .catalog import FieldCatalog, flatten_mapping, validate_metric_fields
from .compiler import compile_query, metric_aggregation_name, resolve_function
from .decompiler import GroupBucket, LeafBucket, decompile, parse_bucket_tree, parse_timestamp

__all__ = [
    # Field catalog
    'FieldCatalog',
    'flatten_mapping',
    'validate_metric_fields',

    # Compiler
    'compile_query',
    'metric_aggregation_name',
    'resolve_function',

    # Decompiler
    'LeafBucket',
    'GroupBucket',
    'decompile',
    'parse_bucket_tree',
    'parse_timestamp',
]

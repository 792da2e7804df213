"""searchmon - periodic aggregation queries against a search store, emitted as metrics"""

from .models import AggregationSpec, CompiledQuery, Metric, MetricFunction, MissingTagPolicy, SpecState
from .orchestrator import AggregationError, CycleResult, Orchestrator

__version__ = "0.1.0"

__all__ = [
    'AggregationSpec',
    'CompiledQuery',
    'Metric',
    'MetricFunction',
    'MissingTagPolicy',
    'SpecState',
    'AggregationError',
    'CycleResult',
    'Orchestrator',
]

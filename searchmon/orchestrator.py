"""
Aggregation orchestrator - coordinates compilation and per-cycle execution.

Per aggregation state machine:

    UNVALIDATED --(catalog + compile ok)--> COMPILED <--> EXECUTING
    UNVALIDATED --(configuration error)---> FAILED (never retried)

Specs still UNVALIDATED (store unreachable at startup) are retried
synchronously at the start of every cycle, before the concurrent section.
Execution errors never touch the cached compiled query.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from .errors import ConfigurationError, SearchmonError
from .executor import execute
from .models import AggregationSpec, Metric, SpecState
from .query.catalog import FieldCatalog
from .query.compiler import compile_query
from .query.decompiler import decompile


@dataclass
class AggregationError:
    """Cycle-scoped diagnostic for one aggregation"""
    measurement: str
    error: Exception

    def __str__(self) -> str:
        return f"aggregation {self.measurement}: {self.error}"


@dataclass
class AggregationResult:
    measurement: str
    metrics: List[Metric] = field(default_factory=list)
    error: Optional[Exception] = None


@dataclass
class CycleResult:
    metrics: List[Metric] = field(default_factory=list)
    errors: List[AggregationError] = field(default_factory=list)


class Orchestrator:
    """Owns the aggregation specs and runs collection cycles."""

    def __init__(self, client, specs: List[AggregationSpec], timeout: float = 5.0,
                 catalog: Optional[FieldCatalog] = None):
        """
        Args:
            client: Store client (search / field_mapping)
            specs: Aggregation specs from configuration
            timeout: Per-query deadline in seconds
            catalog: Field catalog, defaults to one backed by client
        """
        self.client = client
        self.specs = specs
        self.timeout = timeout
        self.catalog = catalog or FieldCatalog(client)
        self.logger = logging.getLogger("searchmon.orchestrator")

    def initialize(self) -> List[AggregationError]:
        """Validate and compile every spec once. Returns the errors encountered."""
        self.logger.info(f"Compiling {len(self.specs)} aggregations...")
        errors = []
        for spec in self.specs:
            error = self._prepare(spec)
            if error is not None:
                errors.append(error)
        compiled = sum(1 for s in self.specs if s.state == SpecState.COMPILED)
        self.logger.info(f"Compiled {compiled}/{len(self.specs)} aggregations")
        return errors

    def _prepare(self, spec: AggregationSpec) -> Optional[AggregationError]:
        if spec.state != SpecState.UNVALIDATED:
            return None

        try:
            field_types = self.catalog.discover(spec.index)
            compiled = compile_query(spec, field_types)
        except ConfigurationError as e:
            spec.state = SpecState.FAILED
            spec.last_error = e
            self.logger.error(f"aggregation {spec.measurement_name} disabled: {e}")
            return AggregationError(spec.measurement_name, e)
        except SearchmonError as e:
            spec.last_error = e
            self.logger.warning(f"aggregation {spec.measurement_name} not compiled, will retry: {e}")
            return AggregationError(spec.measurement_name, e)
        except Exception as e:
            # Unexpected failure while compiling; keep it scoped to this aggregation and retry
            spec.last_error = e
            self.logger.exception(f"aggregation {spec.measurement_name} not compiled, will retry")
            return AggregationError(spec.measurement_name, e)

        spec.field_types = field_types
        spec.compiled = compiled
        spec.state = SpecState.COMPILED
        spec.last_error = None
        self.logger.debug(f"aggregation {spec.measurement_name} compiled")
        return None

    async def _run(self, spec: AggregationSpec) -> AggregationResult:
        spec.state = SpecState.EXECUTING
        reference_time = datetime.now(timezone.utc)
        try:
            response = await execute(self.client, spec, reference_time, self.timeout)
            metrics = decompile(spec, response, reference_time)
        except SearchmonError as e:
            return AggregationResult(spec.measurement_name, error=e)
        finally:
            spec.state = SpecState.COMPILED
        return AggregationResult(spec.measurement_name, metrics=metrics)

    async def collect(self, accumulator=None) -> CycleResult:
        """
        Run one collection cycle across all aggregations.

        Args:
            accumulator: Optional sink (add_metrics / add_error) fed after the join

        Returns:
            CycleResult with all metrics and per-aggregation errors
        """
        result = CycleResult()

        # Recovery path for specs the store could not validate yet
        for spec in self.specs:
            error = self._prepare(spec)
            if error is not None:
                result.errors.append(error)

        ready = [s for s in self.specs if s.state == SpecState.COMPILED]
        outcomes = await asyncio.gather(*(self._run(s) for s in ready), return_exceptions=True)

        for spec, outcome in zip(ready, outcomes):
            if isinstance(outcome, BaseException):
                # Unexpected failure inside the task; keep it scoped to this aggregation
                self.logger.exception(f"aggregation {spec.measurement_name} crashed", exc_info=outcome)
                result.errors.append(AggregationError(spec.measurement_name, outcome))
            elif outcome.error is not None:
                self.logger.error(f"aggregation {spec.measurement_name} failed: {outcome.error}")
                result.errors.append(AggregationError(spec.measurement_name, outcome.error))
            else:
                self.logger.debug(f"aggregation {spec.measurement_name}: {len(outcome.metrics)} metrics")
                result.metrics.extend(outcome.metrics)

        if accumulator is not None:
            accumulator.add_metrics(result.metrics)
            for error in result.errors:
                accumulator.add_error(error)

        self.logger.info(
            f"cycle done: {len(ready)} aggregations, {len(result.metrics)} metrics, {len(result.errors)} errors"
        )
        return result

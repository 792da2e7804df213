#!/usr/bin/env python3
"""
searchmon

Flow:
- Load YAML config (see searchmon.config), CLI args override file values
- Validate metric fields against each index mapping and compile the queries
  (aggregations whose store is unreachable are retried on every cycle)
- Every --interval seconds run all aggregation queries concurrently and
  print the resulting metrics to stdout in InfluxDB line protocol
"""

import argparse
import asyncio
import logging
import sys

from .config import load_config
from .errors import ConfigurationError, ConnectivityError
from .orchestrator import Orchestrator
from .sink import MetricAccumulator, to_line_protocol
from .store import SearchStoreClient

logger = logging.getLogger("searchmon")


def emit(accumulator: MetricAccumulator, out=None) -> int:
    """Write drained metrics to out (stdout by default); returns lines written."""
    out = out or sys.stdout
    metrics, _ = accumulator.drain()
    written = 0
    for metric in metrics:
        line = to_line_protocol(metric)
        if line is not None:
            out.write(line + "\n")
            written += 1
    out.flush()
    return written


async def collection_loop(config, orchestrator: Orchestrator) -> None:
    """Main collection loop."""
    logger.info("collection loop starting; querying %s every %ss", ", ".join(config.urls), config.interval)
    accumulator = MetricAccumulator()

    while True:
        try:
            result = await orchestrator.collect(accumulator)
            written = emit(accumulator)
            logger.debug("wrote %d metrics", written)
            if result.errors and not result.metrics:
                logger.warning("no metrics collected this cycle")
        except Exception as e:
            logger.exception("unexpected error during collection: %s", e)

        if config.once:
            break
        await asyncio.sleep(max(1, config.interval))


async def run(config) -> None:
    """Main orchestration."""
    if config.enable_sniffer:
        logger.info("enable_sniffer is set; node discovery is not supported, using configured urls only")
    logger.debug("health_check_interval=%ss (passed through, not used)", config.health_check_interval)

    client = SearchStoreClient.from_config(config)
    orchestrator = Orchestrator(client, config.specs(), timeout=config.timeout)
    orchestrator.initialize()
    await collection_loop(config, orchestrator)


def main():
    parser = argparse.ArgumentParser(description="searchmon - search store aggregation metrics")
    parser.add_argument("--config", "-c",
                        help="YAML configuration file (default: $SEARCHMON_CONFIG or ./config.yaml)")
    parser.add_argument("--interval",
                        help="time between collection cycles, e.g. 30s or 1m")
    parser.add_argument("--once", action="store_true",
                        help="run one collection cycle and exit")
    parser.add_argument("--log-level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="logging level")
    args = parser.parse_args()

    try:
        config = load_config(args.config).override_with_args(args)
    except (ConfigurationError, ValueError) as e:
        # Logging is not configured yet
        print(f"ERROR: {e}", file=sys.stderr)
        raise SystemExit(2)

    # Logs go to stderr, metrics to stdout
    logging.basicConfig(level=getattr(logging, config.log_level), stream=sys.stderr)
    logger.info(f"searchmon starting with config: urls={config.urls}, "
                f"aggregations={len(config.aggregations)}, interval={config.interval}s")

    try:
        asyncio.run(run(config))
    except ConnectivityError as e:
        # Raised before the first cycle, e.g. unreadable TLS files
        print(f"ERROR: {e}", file=sys.stderr)
        raise SystemExit(2)
    except KeyboardInterrupt:
        print("\nInterrupted. Bye!", file=sys.stderr)


if __name__ == "__main__":
    main()

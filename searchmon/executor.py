"""
Query executor.

Renders the compiled query for the current window and runs it against the
store. The blocking HTTP call runs in the loop's default executor and is
bounded by asyncio.wait_for, mirroring the socket timeout of the client.
"""

import asyncio
import functools
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict

from .errors import QueryTimeoutError
from .models import AggregationSpec

logger = logging.getLogger("searchmon.executor")


async def execute(client, spec: AggregationSpec, now: datetime, timeout: float) -> Dict[str, Any]:
    """
    Run one aggregation query.

    Args:
        client: Store client providing search(index, body, timeout)
        spec: Compiled aggregation spec
        now: Reference time; the window is [now - query_period, now]
        timeout: Deadline in seconds for this query

    Raises:
        QueryTimeoutError: deadline expired
        ConnectivityError / ResponseShapeError: from the client
    """
    body = spec.compiled.render(now - timedelta(seconds=spec.query_period), now)
    loop = asyncio.get_running_loop()
    call = functools.partial(client.search, spec.index, body, timeout)

    start_time = time.time()
    try:
        response = await asyncio.wait_for(loop.run_in_executor(None, call), timeout=timeout)
    except asyncio.TimeoutError:
        raise QueryTimeoutError(f"query on index '{spec.index}' exceeded {timeout}s") from None

    logger.debug(f"{spec.measurement_name}: query took {time.time() - start_time:.2f}s")
    return response

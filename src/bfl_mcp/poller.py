"""Fixed-interval polling of a submitted request until it is Ready or Error."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .errors import PollingTimeout, ProviderError
from .providers.base import StatusReport

logger = logging.getLogger("bfl-mcp.poller")


class Poller:
    """Drives repeated status checks against one polling URL.

    Iterations for one request never overlap. A timeout leaves the
    provider-side job untouched; it may still finish and can be queried
    again later.

    By default any fetch failure aborts the poll. With ``transient_retries``
    set, connection failures and 429/5xx responses consume an attempt from
    the same budget instead, up to that many in a row.
    """

    def __init__(
        self,
        client,
        max_attempts: int = 60,
        interval_ms: int = 2000,
        transient_retries: int = 0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.max_attempts = max_attempts
        self.interval_ms = interval_ms
        self.transient_retries = transient_retries
        self._sleep = sleep

    async def poll_until_terminal(
        self,
        polling_url: str,
        request_id: Optional[str] = None,
        max_attempts: Optional[int] = None,
        interval_ms: Optional[int] = None,
    ) -> StatusReport:
        """Poll until the request reaches a terminal state.

        Raises:
            PollingTimeout: still Pending after ``max_attempts`` fetches.
            ProviderError, SchemaError, UnknownJob: from the status fetch.
        """
        attempts_allowed = max_attempts if max_attempts is not None else self.max_attempts
        interval = (interval_ms if interval_ms is not None else self.interval_ms) / 1000
        consecutive_failures = 0

        for attempt in range(1, attempts_allowed + 1):
            try:
                report = await self.client.fetch_status(polling_url, request_id)
            except ProviderError as e:
                consecutive_failures += 1
                if (
                    not e.transient
                    or consecutive_failures > self.transient_retries
                    or attempt == attempts_allowed
                ):
                    raise
                logger.warning(
                    f"Transient error polling {request_id} "
                    f"(attempt {attempt}/{attempts_allowed}): {e}"
                )
            else:
                consecutive_failures = 0
                logger.debug(f"Poll {attempt}/{attempts_allowed} for {request_id}: {report.status.value}")
                if report.status.terminal:
                    return report

            if attempt < attempts_allowed:
                await self._sleep(interval)

        logger.warning(f"Request {request_id} still pending after {attempts_allowed} attempts")
        raise PollingTimeout(request_id, attempts_allowed)

# /anvil_harness/core/decorators.py
# Reusable retry policies for talking to simulators.
import asyncio
import logging
import aiohttp
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
    wait_fixed,
)
from anvil_harness.core.logger import get_logger

log = get_logger(__name__)

TRANSIENT_NETWORK_ERRORS = (aiohttp.ClientConnectionError, asyncio.TimeoutError)

# Generic retry decorator for network calls that are safe to repeat
retriable_network_call = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception_type(TRANSIENT_NETWORK_ERRORS),
    before_sleep=before_sleep_log(log, logging.WARNING),
    reraise=True,  # Re-raise the last exception after retries are exhausted
)


def poll_until(timeout: float, interval: float = 0.25, retry_on=TRANSIENT_NETWORK_ERRORS) -> AsyncRetrying:
    """Retry the wrapped block until it stops raising `retry_on` or `timeout` expires.

    Usage::

        async for attempt in poll_until(5):
            with attempt:
                await probe()

    The last exception is re-raised once the deadline passes.
    """
    return AsyncRetrying(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_exception_type(retry_on),
        reraise=True,
    )

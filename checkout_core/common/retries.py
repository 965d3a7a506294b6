import asyncio
import functools
import random
from typing import Callable, Optional

import httpx
from sqlalchemy.exc import DBAPIError, OperationalError
from checkout_core.common import logger
from checkout_core.common.circuit_breaker import CircuitBreaker, CircuitOpenError
from checkout_core.common.custom_exceptions import ProviderUnavailable


def is_recoverable_exception(exc: BaseException) -> bool:
    if isinstance(exc, asyncio.CancelledError):
        return False
    # common transient-ish exceptions
    if isinstance(exc, (TimeoutError, ConnectionError, OperationalError)):
        return True
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    if isinstance(exc, DBAPIError):
        # connection_invalidated is set when the pool drops a connection
        if getattr(exc, "connection_invalidated", False):
            return True
        orig = getattr(exc, "orig", None)
        if orig is not None:
            name = type(orig).__name__.lower()
            if any(k in name for k in ("timeout", "connection", "brokenpipe", "connectionrefused", "connectionreset")):
                return True
    if isinstance(exc, OSError):
        return True
    return False


async def _sleep_with_jitter(delay: float, jitter: float) -> None:
    jitter_val = random.uniform(-jitter * delay, jitter * delay)
    await asyncio.sleep(max(0.0, delay + jitter_val))


def retry_with_circuit(
    circuit: CircuitBreaker,
    *,
    attempts: int = 3,
    base_delay: float = 0.2,
    factor: float = 2.0,
    max_delay: float = 2.0,
    jitter: float = 0.15,
    if_retryable: Optional[Callable[[BaseException], bool]] = None,
):
    """Retry transient failures of an async call behind a circuit breaker.

    Transient failures that exhaust the attempts, and an open circuit, surface as
    ProviderUnavailable. Non-transient errors propagate unchanged on first sight.
    """
    if if_retryable is None:
        if_retryable = is_recoverable_exception

    def deco(fn: Callable):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            for attempt in range(1, attempts + 1):
                try:
                    await circuit.before_call()
                except CircuitOpenError as exc:
                    raise ProviderUnavailable(str(exc)) from exc

                try:
                    result = await fn(*args, **kwargs)
                except asyncio.CancelledError:
                    await circuit.after_call(False)
                    raise
                except Exception as exc:
                    retryable = if_retryable(exc)
                    if not retryable:
                        # the remote answered; that is not a circuit failure
                        await circuit.after_call(True)
                        raise

                    await circuit.after_call(False)
                    if attempt == attempts:
                        raise ProviderUnavailable(f"{circuit.name}: {exc}") from exc

                    delay = min(max_delay, base_delay * (factor ** (attempt - 1)))
                    logger.debug("provider call attempt %d failed; retrying in %f: %s", attempt, delay, exc)
                    await _sleep_with_jitter(delay, jitter)
                    continue

                await circuit.after_call(True)
                return result

            raise ProviderUnavailable(f"{circuit.name}: retries exhausted")
        return wrapper
    return deco

"""Store connection with retry and exponential backoff.

Learn: A change-feed driven process is useless without its database, but
a database that is still booting (docker compose, failover) should not
kill the process on the first refused connection. Every store connection
made at startup, and every LISTEN reconnect, goes through
connect_with_retry().
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class StoreUnavailableError(Exception):
    """Raised when the store stays unreachable after every retry."""


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Delay before retry number `attempt` (1-based): base * 2**(attempt-1), capped."""
    return min(maximum, base * (2 ** (attempt - 1)))


async def connect_with_retry(
    connect: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    max_delay: float,
    what: str = "store",
) -> T:
    """Call `connect` until it succeeds or `attempts` are used up.

    Raises StoreUnavailableError chained to the last connection error.
    """
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            result = await connect()
        except Exception as e:
            # asyncpg, SQLAlchemy and OSError failures don't share a base class
            last_error = e
        else:
            if attempt > 1:
                logger.info("store.connected", target=what, attempt=attempt)
            return result

        if attempt == attempts:
            break
        delay = backoff_delay(attempt, base_delay, max_delay)
        logger.warning(
            "store.connect_failed",
            target=what,
            attempt=attempt,
            retry_in=delay,
            error=str(last_error),
        )
        await asyncio.sleep(delay)

    logger.error("store.unavailable", target=what, attempts=attempts, error=str(last_error))
    raise StoreUnavailableError(
        f"{what} unavailable after {attempts} attempts: {last_error}"
    ) from last_error

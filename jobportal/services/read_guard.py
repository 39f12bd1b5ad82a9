from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Awaitable, Callable, TypeVar

import anyio

from jobportal.core.config import settings
from jobportal.core.errors import TransientStoreError

logger = logging.getLogger("jp.store")

T = TypeVar("T")


@dataclass(frozen=True)
class ReadPolicy:
    timeout_seconds: float = 2.0
    retries: int = 2
    backoff_seconds: float = 2.0

    @classmethod
    def from_settings(cls) -> "ReadPolicy":
        return cls(
            timeout_seconds=settings.read_timeout_seconds,
            retries=max(settings.read_retries, 0),
            backoff_seconds=max(settings.read_retry_backoff_seconds, 0.0),
        )


async def _attempt(call: Callable[[], Awaitable[T]], timeout_seconds: float) -> T:
    with anyio.fail_after(timeout_seconds):
        return await call()


async def guarded_read(
    primary: Callable[[], Awaitable[T]],
    *,
    fallback: Callable[[], Awaitable[T]] | None = None,
    policy: ReadPolicy | None = None,
    label: str = "read",
) -> T:
    """
    Runs a read that may hang against the external store.

    Each attempt races the primary query against a timeout; on timeout (or a dropped
    connection) the fallback direct fetch gets the same budget. Failed attempts are
    retried after a fixed backoff, then a TransientStoreError is surfaced.
    """
    policy = policy or ReadPolicy.from_settings()
    attempts = policy.retries + 1
    last_error: BaseException | None = None

    for attempt in range(1, attempts + 1):
        try:
            return await _attempt(primary, policy.timeout_seconds)
        except (TimeoutError, TransientStoreError) as exc:
            last_error = exc
            logger.warning(
                "read_primary_failed",
                extra={"label": label, "attempt": attempt, "error": str(exc) or type(exc).__name__},
            )

        if fallback is not None:
            try:
                return await _attempt(fallback, policy.timeout_seconds)
            except (TimeoutError, TransientStoreError) as exc:
                last_error = exc
                logger.warning(
                    "read_fallback_failed",
                    extra={"label": label, "attempt": attempt, "error": str(exc) or type(exc).__name__},
                )

        if attempt < attempts:
            await anyio.sleep(policy.backoff_seconds)

    logger.error("read_gave_up", extra={"label": label, "attempts": attempts})
    raise TransientStoreError() from last_error

"""Bounded fixed-delay retries that report terminal failure instead of raising."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from vod_runner.storage.error_log import ErrorSink

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_ERROR_SOURCE = "retry"


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry budget for one call site.

    ``max_retries`` counts re-invocations after the first call, so an
    operation runs at most ``max_retries + 1`` times.
    """

    max_retries: int = 5
    delay_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")


@dataclass(slots=True)
class RetryOutcome(Generic[T]):
    """Result of a retried call."""

    ok: bool
    attempts: int
    value: T | None = None
    error: BaseException | None = None
    errors: list[str] = field(default_factory=list)


def retry_call(  # noqa: PLR0913
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    description: str,
    error_log: ErrorSink | None = None,
    category: str | None = None,
    context: dict[str, Any] | None = None,
    retry_if: Callable[[Exception], bool] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RetryOutcome[T]:
    """Run a blocking operation under ``policy``."""

    errors: list[str] = []
    attempt = 0
    while True:
        attempt += 1
        try:
            value = operation()
        except Exception as error:  # noqa: BLE001
            errors.append(str(error))
            if _should_retry(error, attempt=attempt, policy=policy, retry_if=retry_if):
                logger.debug(
                    "%s failed (attempt %d/%d): %s",
                    description,
                    attempt,
                    policy.max_retries + 1,
                    error,
                )
                sleep(policy.delay_seconds)
                continue
            return _terminal_failure(
                error,
                attempts=attempt,
                errors=errors,
                description=description,
                error_log=error_log,
                category=category,
                context=context,
            )
        return RetryOutcome(ok=True, attempts=attempt, value=value, errors=errors)


async def retry_async(  # noqa: PLR0913
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    description: str,
    error_log: ErrorSink | None = None,
    category: str | None = None,
    context: dict[str, Any] | None = None,
    retry_if: Callable[[Exception], bool] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryOutcome[T]:
    """Awaitable twin of :func:`retry_call`.

    Neither the delay nor the terminal error-log write blocks the event loop.
    """

    errors: list[str] = []
    attempt = 0
    while True:
        attempt += 1
        try:
            value = await operation()
        except Exception as error:  # noqa: BLE001
            errors.append(str(error))
            if _should_retry(error, attempt=attempt, policy=policy, retry_if=retry_if):
                logger.debug(
                    "%s failed (attempt %d/%d): %s",
                    description,
                    attempt,
                    policy.max_retries + 1,
                    error,
                )
                await sleep(policy.delay_seconds)
                continue
            return await asyncio.to_thread(
                _terminal_failure,
                error,
                attempts=attempt,
                errors=errors,
                description=description,
                error_log=error_log,
                category=category,
                context=context,
            )
        return RetryOutcome(ok=True, attempts=attempt, value=value, errors=errors)


def _should_retry(
    error: Exception,
    *,
    attempt: int,
    policy: RetryPolicy,
    retry_if: Callable[[Exception], bool] | None,
) -> bool:
    if attempt > policy.max_retries:
        return False
    return retry_if is None or retry_if(error)


def _terminal_failure(  # noqa: PLR0913
    error: Exception,
    *,
    attempts: int,
    errors: list[str],
    description: str,
    error_log: ErrorSink | None,
    category: str | None,
    context: dict[str, Any] | None,
) -> RetryOutcome[Any]:
    message = f"{description} failed after {attempts} attempt(s): {error}"
    logger.error(message)
    if error_log is not None:
        error_log.record(
            message,
            source=RETRY_ERROR_SOURCE,
            category=category,
            context={
                **(context or {}),
                "attempts": attempts,
                "error_type": type(error).__name__,
            },
        )
    return RetryOutcome(ok=False, attempts=attempts, error=error, errors=errors)

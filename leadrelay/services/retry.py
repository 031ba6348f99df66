# leadrelay/services/retry.py
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

from leadrelay.core.config import settings
from leadrelay.core.exceptions import ProviderError
from leadrelay.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryOutcome:
    success: bool
    attempts: int
    error: Optional[str] = None
    response: Any = None


def _error_text(exc: BaseException) -> str:
    parts = [str(exc)]
    payload = getattr(exc, "payload", None)
    if payload is not None:
        try:
            parts.append(json.dumps(payload, default=str))
        except (TypeError, ValueError):
            parts.append(str(payload))
    return " ".join(parts)


def is_transient(exc: BaseException, markers: Sequence[str]) -> bool:
    text = _error_text(exc).lower()
    return any(marker.lower() in text for marker in markers if marker)


async def send_with_retry(
    send_fn: Callable[[], Awaitable[Any]],
    max_attempts: Optional[int] = None,
    *,
    retry_delay: Optional[float] = None,
    transient_markers: Optional[Sequence[str]] = None,
    sleep: SleepFn = asyncio.sleep,
) -> RetryOutcome:
    """
    Call ``send_fn`` until it succeeds, retrying only transient provider errors.

    A failure is transient when the error message or provider payload
    contains one of ``transient_markers`` (the provider's "session not
    ready" family). Transient failures sleep ``retry_delay`` seconds and try
    again while attempts remain; every other failure is terminal.
    """
    max_attempts = max_attempts or settings.remarketing_max_attempts
    retry_delay = settings.remarketing_retry_delay_seconds if retry_delay is None else retry_delay
    markers = settings.transient_markers() if transient_markers is None else list(transient_markers)

    attempt = 0
    while True:
        attempt += 1
        try:
            response = await send_fn()
            return RetryOutcome(success=True, attempts=attempt, response=response)
        except ProviderError as e:
            error = e
        except Exception as e:
            logger.error("retry.send_raised", attempt=attempt, error=str(e), exc_info=True)
            error = e

        message = getattr(error, "message", None) or str(error) or type(error).__name__
        if attempt < max_attempts and is_transient(error, markers):
            logger.warning(
                "retry.transient_error",
                attempt=attempt,
                max_attempts=max_attempts,
                retry_in_seconds=retry_delay,
                error=message,
            )
            await sleep(retry_delay)
            continue

        logger.warning("retry.gave_up", attempts=attempt, error=message)
        return RetryOutcome(success=False, attempts=attempt, error=message)

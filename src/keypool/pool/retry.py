"""Retry helper for API clients calling through a credential pool.

Implements the caller side of the contract: select a credential, try the
call, report the credential on a rate-limit error, and move on to the
next one. The pool itself knows nothing about transport status codes;
the caller decides what counts as rate limiting.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from keypool.config.settings import get_settings
from keypool.core.logging import get_logger
from keypool.pool.manager import CredentialPool
from keypool.pool.protocol import CredentialsExhaustedError, NoCredentialAvailableError
from keypool.pool.types import normalize_provider

logger = get_logger(__name__)

T = TypeVar("T")


async def call_with_rotation(
    pool: CredentialPool,
    provider: str,
    operation: Callable[[str], Awaitable[T]],
    *,
    is_rate_limited: Callable[[Exception], bool],
    rounds: int | None = None,
    initial_delay: float | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run an operation with credential rotation and backoff.

    The operation is attempted up to ``max(count, 1) * rounds`` times.
    A rate-limited credential is reported to the pool and the next one is
    tried immediately. Once every credential has been tried in a round
    (or after each attempt when only one credential exists) the helper
    sleeps, doubling the delay each time.

    Args:
        pool: Credential pool to draw from
        provider: Provider name
        operation: Coroutine function taking the credential value
        is_rate_limited: Predicate deciding whether an error is a rate limit
        rounds: Attempts per credential (default: settings.retry_rounds)
        initial_delay: First backoff delay in seconds
            (default: settings.retry_initial_delay)
        sleep: Sleep function (injectable for tests)

    Returns:
        The operation's result

    Raises:
        NoCredentialAvailableError: If the provider has no credentials
        CredentialsExhaustedError: If every attempt was rate limited
        Exception: Any error for which is_rate_limited returns False
    """
    if rounds is None or initial_delay is None:
        settings = get_settings()
        rounds = settings.retry_rounds if rounds is None else rounds
        initial_delay = settings.retry_initial_delay if initial_delay is None else initial_delay

    key = normalize_provider(provider)
    total = await pool.credential_count(key)
    max_attempts = max(total, 1) * rounds
    delay = initial_delay
    last_error: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        credential = await pool.get_next_credential(key)
        if credential is None:
            raise NoCredentialAvailableError(key)

        try:
            return await operation(credential)
        except Exception as e:
            if not is_rate_limited(e):
                raise
            last_error = e

        await pool.report_failure(credential, key)
        if attempt == max_attempts:
            break

        if total <= 1 or attempt % total == 0:
            logger.warning(
                "credentials_rate_limited_backing_off",
                provider=key,
                attempt=attempt,
                max_attempts=max_attempts,
                delay_seconds=delay,
            )
            await sleep(delay)
            delay *= 2
        else:
            logger.warning(
                "credential_rate_limited_rotating",
                provider=key,
                attempt=attempt,
                max_attempts=max_attempts,
            )

    raise CredentialsExhaustedError(key, max_attempts) from last_error

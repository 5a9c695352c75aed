"""Credential health tracking with time-boxed quarantine.

A credential reported as failed (typically rate limited) is quarantined
for a fixed cooldown. Expiry is lazy: records are swept whenever health
state is read, so there is no background timer.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from keypool.core.logging import get_logger
from keypool.pool.types import HealthRecord, normalize_provider

logger = get_logger(__name__)

DEFAULT_COOLDOWN_SECONDS = 60.0

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class HealthTracker:
    """Per-provider quarantine records keyed by credential handle.

    Keying by handle rather than by pool position means a removal can
    never shift a quarantine onto a different credential.

    Usage:
        tracker = HealthTracker(cooldown_seconds=60)

        tracker.mark_failed("gemini", handle)
        tracker.is_quarantined("gemini", handle)  # True for 60 seconds
    """

    def __init__(
        self,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Clock | None = None,
    ):
        """Initialize the tracker.

        Args:
            cooldown_seconds: How long a failed credential stays quarantined
            clock: Source of the current time (injectable for tests)
        """
        if cooldown_seconds <= 0:
            raise ValueError("cooldown_seconds must be positive")

        self.cooldown = timedelta(seconds=cooldown_seconds)
        self._clock = clock or utc_now
        self._records: dict[str, dict[str, HealthRecord]] = {}

    def now(self) -> datetime:
        """Current time according to the tracker's clock."""
        return self._clock()

    def mark_failed(self, provider: str, handle: str) -> HealthRecord:
        """Quarantine a credential, overwriting any earlier mark.

        Args:
            provider: Provider name
            handle: Handle of the failed credential

        Returns:
            The new health record
        """
        key = normalize_provider(provider)
        record = HealthRecord(handle=handle, failed_at=self.now())
        self._records.setdefault(key, {})[handle] = record

        logger.warning(
            "credential_quarantined",
            provider=key,
            handle=handle,
            cooldown_seconds=self.cooldown.total_seconds(),
        )
        return record

    def sweep(self, provider: str) -> int:
        """Drop records whose cooldown has elapsed.

        Returns:
            Number of credentials released from quarantine
        """
        key = normalize_provider(provider)
        records = self._records.get(key)
        if not records:
            return 0

        now = self.now()
        expired = [
            handle for handle, record in records.items() if record.is_expired(now, self.cooldown)
        ]
        for handle in expired:
            del records[handle]
            logger.info("credential_released", provider=key, handle=handle)

        if not records:
            del self._records[key]
        return len(expired)

    def is_quarantined(self, provider: str, handle: str) -> bool:
        """Check whether a credential is currently quarantined."""
        return handle in self.quarantined(provider)

    def quarantined(self, provider: str) -> set[str]:
        """Handles currently quarantined for a provider."""
        self.sweep(provider)
        return set(self._records.get(normalize_provider(provider), {}))

    def remaining(self, provider: str, handle: str) -> float:
        """Seconds until a credential rejoins rotation (0 if healthy)."""
        self.sweep(provider)
        record = self._records.get(normalize_provider(provider), {}).get(handle)
        if record is None:
            return 0.0
        return record.remaining(self.now(), self.cooldown)

    def reset(self, provider: str) -> None:
        """Clear all quarantine state for a provider."""
        if self._records.pop(normalize_provider(provider), None):
            logger.info("quarantine_reset", provider=normalize_provider(provider))

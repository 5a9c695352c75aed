"""Round-robin credential selection with quarantine skipping.

The rotator holds no state of its own: the caller passes the resolved
pool and the last-used position, and stores the returned position as
the new cursor.
"""

from collections.abc import Sequence

from keypool.core.logging import get_logger
from keypool.pool.health import HealthTracker
from keypool.pool.types import PoolEntry, Selection, normalize_provider

logger = get_logger(__name__)


class Rotator:
    """Selects the next credential from a provider's pool.

    Over any window without failures every credential is visited once
    before any repeats. Quarantined credentials are skipped. When every
    credential is quarantined, quarantine is cleared and position 0 is
    served, so a non-empty pool always yields a credential.

    Example:
        rotator = Rotator(health)
        selection = rotator.select("gemini", entries, cursor)
        if selection is not None:
            cursor = selection.position
    """

    def __init__(self, health: HealthTracker):
        """Initialize the rotator.

        Args:
            health: Tracker consulted for quarantined credentials
        """
        self.health = health

    def select(
        self,
        provider: str,
        entries: Sequence[PoolEntry],
        cursor: int | None,
    ) -> Selection | None:
        """Pick the next credential.

        Args:
            provider: Provider name
            entries: Resolved pool in ring order
            cursor: Last selected position, or None if nothing selected yet

        Returns:
            The selection, or None when the pool is empty
        """
        key = normalize_provider(provider)
        size = len(entries)

        if size == 0:
            return None

        # Single credential: nothing to rotate
        if size == 1:
            return Selection(entry=entries[0], position=0, rotated=False)

        quarantined = self.health.quarantined(key)
        available = {i for i, entry in enumerate(entries) if entry.handle not in quarantined}

        if not available:
            logger.warning("all_credentials_quarantined", provider=key, count=size)
            self.health.reset(key)
            return Selection(entry=entries[0], position=0, reset=True)

        last = cursor if cursor is not None and 0 <= cursor < size else -1
        position = (last + 1) % size
        attempts = 0
        while position not in available and attempts < size:
            position = (position + 1) % size
            attempts += 1

        logger.debug(
            "credential_selected",
            provider=key,
            position=position + 1,
            count=size,
        )
        return Selection(entry=entries[position], position=position)

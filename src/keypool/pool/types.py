"""Credential pool types and data structures.

This module defines the typed data structures shared by the pool
registry, health tracker, rotator, and migration importers.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

METADATA_VERSION = 2
HANDLE_PREFIX = "kp"


def normalize_provider(provider: str) -> str:
    """Normalize a provider name to its pool key.

    Args:
        provider: Provider name in any case (e.g., "Gemini")

    Returns:
        Lowercased, stripped provider key (e.g., "gemini")
    """
    return provider.strip().lower()


MASK = "\u2022" * 4


def mask_credential(value: str) -> str:
    """Render a credential for display without revealing it.

    Keeps the first and last four characters of values longer than eight
    characters, e.g. ``AIza••••x9Qk``. Shorter values are fully masked.
    """
    if len(value) <= 8:
        return MASK * 2
    return f"{value[:4]}{MASK}{value[-4:]}"


def new_handle(provider: str) -> str:
    """Allocate a fresh credential handle for a provider.

    Handles embed a full random UUID, so a handle is never reissued
    after its credential has been deleted.
    """
    return f"{HANDLE_PREFIX}_{normalize_provider(provider)}_{uuid4().hex}"


@dataclass(frozen=True, slots=True)
class PoolEntry:
    """A credential handle resolved to its secret value.

    Attributes:
        handle: Opaque identifier of the secret in the store
        value: The secret value (excluded from repr)
    """

    handle: str
    value: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class HealthRecord:
    """Failure mark for a single credential.

    Attributes:
        handle: Handle of the credential that failed
        failed_at: When the failure was reported
    """

    handle: str
    failed_at: datetime

    def is_expired(self, now: datetime, cooldown: timedelta) -> bool:
        """Check whether the cooldown has fully elapsed."""
        return now - self.failed_at >= cooldown

    def remaining(self, now: datetime, cooldown: timedelta) -> float:
        """Seconds left until the credential rejoins rotation."""
        return max(0.0, (cooldown - (now - self.failed_at)).total_seconds())


@dataclass(frozen=True, slots=True)
class Selection:
    """Result of a rotation step.

    Attributes:
        entry: The selected credential
        position: Position of the entry in the resolved pool
        rotated: False when the pool had a single entry and no rotation ran
        reset: True when every credential was quarantined and state was reset
    """

    entry: PoolEntry
    position: int
    rotated: bool = True
    reset: bool = False


class PoolMetadata(BaseModel):
    """Persisted pool membership: provider to ordered credential handles.

    Only handles are stored here, never secret values.
    """

    version: int = Field(default=METADATA_VERSION, ge=1)
    pools: dict[str, list[str]] = Field(default_factory=dict)

    @field_validator("version")
    @classmethod
    def check_version(cls, value: int) -> int:
        """Reject files written by a newer release."""
        if value > METADATA_VERSION:
            raise ValueError(
                f"metadata version {value} is newer than supported version {METADATA_VERSION}"
            )
        return value

    @field_validator("pools")
    @classmethod
    def normalize_pools(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        """Lowercase provider keys, drop empty pools and repeated handles."""
        seen: set[str] = set()
        pools: dict[str, list[str]] = {}
        for provider, handles in value.items():
            key = normalize_provider(provider)
            kept = pools.setdefault(key, [])
            for handle in handles:
                if handle and handle not in seen:
                    seen.add(handle)
                    kept.append(handle)
        return {provider: handles for provider, handles in pools.items() if handles}


@dataclass
class ImportResult:
    """Outcome of one legacy importer run.

    Attributes:
        name: Importer name
        imported: Number of credentials added to the pool
        skipped: Number of values already present
        completed: Whether the legacy source was fully absorbed and removed
        error: Error that stopped the importer, if any
    """

    name: str
    imported: int = 0
    skipped: int = 0
    completed: bool = False
    error: Exception | None = None


@dataclass
class MigrationReport:
    """Outcome of a full migration run."""

    results: list[ImportResult] = field(default_factory=list)

    @property
    def imported(self) -> int:
        """Total credentials imported across all importers."""
        return sum(result.imported for result in self.results)

    @property
    def failed(self) -> list[ImportResult]:
        """Importers that left their source in place because of an error."""
        return [result for result in self.results if result.error is not None]


class EntryStatus(BaseModel):
    """Non-secret view of one pool member."""

    position: int
    handle: str
    masked_value: str
    quarantined: bool = False
    quarantine_remaining_seconds: float = 0.0


class PoolStatus(BaseModel):
    """Non-secret snapshot of a provider's pool, for dashboards and health checks."""

    provider: str
    count: int
    quarantined_count: int = 0
    cursor: int | None = None
    entries: list[EntryStatus] = Field(default_factory=list)

    @property
    def available_count(self) -> int:
        """Number of credentials currently in rotation."""
        return self.count - self.quarantined_count

"""Credential pool service and process-wide instance management.

CredentialPool combines the registry, health tracker, rotator, and
migration importers behind the narrow interface that API clients use:

    credential = await pool.get_next_credential("gemini")
    ...perform the call...
    await pool.report_failure(credential, "gemini")  # on HTTP 429

Every read-modify-write sequence for a provider runs under that
provider's lock, so selection and failure reporting are atomic with
respect to each other while other providers proceed independently.
"""

import asyncio
from collections.abc import Sequence
from pathlib import Path

from keypool.config.settings import SecretBackend, Settings, get_settings
from keypool.core.logging import get_logger
from keypool.pool.health import Clock, HealthTracker
from keypool.pool.keyring_store import KeyringSecretStore
from keypool.pool.memory import MemorySecretStore
from keypool.pool.migration import LegacyImporter, default_importers, run_migrations
from keypool.pool.protocol import (
    CredentialPersistenceError,
    NoCredentialAvailableError,
    SecretStore,
)
from keypool.pool.registry import PoolRegistry
from keypool.pool.rotator import Rotator
from keypool.pool.types import (
    EntryStatus,
    MigrationReport,
    PoolStatus,
    mask_credential,
    normalize_provider,
)
from keypool.utils.exceptions import ConfigurationError

logger = get_logger(__name__)


class CredentialPool:
    """Rotating pool of equivalent API credentials per provider.

    Features:
    - Round-robin selection across a provider's credentials
    - Time-boxed quarantine of rate-limited credentials
    - Durable membership (handles on disk, values in the secret store)
    - One-time import of legacy storage formats on first use

    Example:
        pool = CredentialPool(MemorySecretStore(), Path("pools.json"))
        await pool.initialize()

        await pool.add_credential("key-1", "gemini")
        await pool.add_credential("key-2", "gemini")
        await pool.get_next_credential("gemini")  # "key-1"
        await pool.get_next_credential("gemini")  # "key-2"
    """

    def __init__(
        self,
        store: SecretStore,
        metadata_path: Path,
        *,
        cooldown_seconds: float = 60.0,
        importers: Sequence[LegacyImporter] = (),
        clock: Clock | None = None,
    ):
        """Initialize the pool.

        Args:
            store: Secret store holding credential values
            metadata_path: Path of the pool metadata file
            cooldown_seconds: Quarantine window after a reported failure
            importers: Legacy importers run once by initialize()
            clock: Source of the current time (injectable for tests)
        """
        self.store = store
        self.registry = PoolRegistry(store, metadata_path)
        self.health = HealthTracker(cooldown_seconds, clock=clock)
        self.rotator = Rotator(self.health)
        self.importers = list(importers)

        self._cursors: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._init_lock = asyncio.Lock()
        self._initialized = False
        self._migration_report: MigrationReport | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: SecretStore | None = None,
        clock: Clock | None = None,
    ) -> "CredentialPool":
        """Create a pool configured from application settings.

        Args:
            settings: Application settings
            store: Secret store override (default chosen by settings)
            clock: Source of the current time

        Returns:
            An uninitialized CredentialPool
        """
        return cls(
            store or create_secret_store(settings),
            settings.metadata_path,
            cooldown_seconds=settings.cooldown_seconds,
            importers=default_importers(settings),
            clock=clock,
        )

    # ----------------------------------------------------------------
    # Lifecycle
    # ----------------------------------------------------------------

    @property
    def initialized(self) -> bool:
        """Whether metadata has been loaded and migration has run."""
        return self._initialized

    @property
    def migration_report(self) -> MigrationReport | None:
        """Report of the migration run performed by initialize()."""
        return self._migration_report

    async def initialize(self) -> MigrationReport:
        """Load pool metadata and absorb legacy credentials.

        Safe to call more than once; only the first call does any work.
        Migration failures are logged and leave the legacy source in place
        for the next start.

        Returns:
            MigrationReport of the (first) migration run
        """
        async with self._init_lock:
            if self._initialized and self._migration_report is not None:
                return self._migration_report

            self.registry.load()
            self._migration_report = await run_migrations(self.registry, self.importers)
            self._initialized = True

            if self._migration_report.failed:
                logger.warning(
                    "credential_migration_incomplete",
                    failed=[result.name for result in self._migration_report.failed],
                )
            logger.info(
                "credential_pool_initialized",
                providers=len(self.registry.providers()),
                imported=self._migration_report.imported,
            )
            return self._migration_report

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    def _lock(self, provider: str) -> asyncio.Lock:
        return self._locks.setdefault(provider, asyncio.Lock())

    def _invalidate(self, provider: str) -> None:
        """Drop cursor and quarantine state after a membership change."""
        self._cursors.pop(provider, None)
        self.health.reset(provider)

    # ----------------------------------------------------------------
    # Caller contract
    # ----------------------------------------------------------------

    async def get_next_credential(self, provider: str) -> str | None:
        """Get the credential to use for the next call to a provider.

        This is the method API clients call before every request.

        Args:
            provider: Provider name (case-insensitive)

        Returns:
            A credential value, or None if none is configured
        """
        await self._ensure_initialized()
        key = normalize_provider(provider)

        async with self._lock(key):
            entries = await self.registry.entries(key)
            selection = self.rotator.select(key, entries, self._cursors.get(key))

            if selection is None:
                logger.warning("no_credentials_available", provider=key)
                return None

            if selection.rotated:
                self._cursors[key] = selection.position
            return selection.entry.value

    async def require_credential(self, provider: str) -> str:
        """Get the next credential, raising if none is configured.

        Raises:
            NoCredentialAvailableError: If the provider's pool is empty
        """
        credential = await self.get_next_credential(provider)
        if credential is None:
            raise NoCredentialAvailableError(normalize_provider(provider))
        return credential

    async def report_failure(self, credential: str, provider: str) -> bool:
        """Quarantine a credential after a rate-limit style failure.

        Args:
            credential: The value returned by get_next_credential
            provider: Provider the credential belongs to

        Returns:
            True if marked, False if the value is not in the provider's pool
        """
        await self._ensure_initialized()
        key = normalize_provider(provider)

        async with self._lock(key):
            for entry in await self.registry.entries(key):
                if entry.value == credential:
                    self.health.mark_failed(key, entry.handle)
                    return True
            return False

    async def credential_count(self, provider: str) -> int:
        """Number of usable credentials for a provider."""
        await self._ensure_initialized()
        return await self.registry.count(provider)

    # ----------------------------------------------------------------
    # Pool administration
    # ----------------------------------------------------------------

    async def add_credential(self, credential: str, provider: str) -> str | None:
        """Add a credential to a provider's pool.

        Returns:
            The new handle, or None if the value was empty or already pooled

        Raises:
            CredentialPersistenceError: If the credential could not be stored
        """
        await self._ensure_initialized()
        key = normalize_provider(provider)

        async with self._lock(key):
            handle = await self.registry.add_credential(credential, key)
            if handle is not None:
                self._cursors.pop(key, None)
            return handle

    async def remove_credential(self, position: int, provider: str) -> bool:
        """Remove the credential at a position reported by list_credentials.

        Resets the provider's rotation cursor and quarantine state.

        Returns:
            True if removed, False if the position is out of bounds

        Raises:
            CredentialPersistenceError: If the metadata could not be written
        """
        await self._ensure_initialized()
        key = normalize_provider(provider)

        async with self._lock(key):
            try:
                removed = await self.registry.remove_credential(position, key)
            except CredentialPersistenceError:
                self._invalidate(key)
                raise
            if removed:
                self._invalidate(key)
            return removed

    async def remove_all_credentials(self, provider: str) -> int:
        """Remove every credential for a provider.

        Returns:
            Number of credentials removed
        """
        await self._ensure_initialized()
        key = normalize_provider(provider)

        async with self._lock(key):
            try:
                return await self.registry.remove_all_credentials(key)
            finally:
                self._invalidate(key)

    async def list_credentials(self, provider: str) -> list[str]:
        """Credential values for a provider in rotation order."""
        await self._ensure_initialized()
        return await self.registry.list_credentials(provider)

    async def has_any_credential(self, provider: str) -> bool:
        """Whether the provider has at least one credential configured."""
        await self._ensure_initialized()
        return await self.registry.has_any(provider)

    async def has_multiple_credentials(self, provider: str) -> bool:
        """Whether the provider has more than one credential to rotate."""
        await self._ensure_initialized()
        return await self.registry.has_multiple(provider)

    async def providers(self) -> list[str]:
        """Providers with at least one stored handle."""
        await self._ensure_initialized()
        return self.registry.providers()

    async def status(self, provider: str) -> PoolStatus:
        """Non-secret snapshot of a provider's pool.

        Values are masked; quarantine is reported with remaining time.
        """
        await self._ensure_initialized()
        key = normalize_provider(provider)

        async with self._lock(key):
            entries = await self.registry.entries(key)

            statuses = [
                EntryStatus(
                    position=position,
                    handle=entry.handle,
                    masked_value=mask_credential(entry.value),
                    quarantined=self.health.is_quarantined(key, entry.handle),
                    quarantine_remaining_seconds=self.health.remaining(key, entry.handle),
                )
                for position, entry in enumerate(entries)
            ]
            return PoolStatus(
                provider=key,
                count=len(entries),
                quarantined_count=sum(1 for status in statuses if status.quarantined),
                cursor=self._cursors.get(key),
                entries=statuses,
            )


def create_secret_store(settings: Settings) -> SecretStore:
    """Create the secret store selected by settings.

    Raises:
        ConfigurationError: If the backend is not supported
    """
    if settings.secret_backend == SecretBackend.MEMORY:
        return MemorySecretStore()
    if settings.secret_backend == SecretBackend.KEYRING:
        return KeyringSecretStore(service=settings.keyring_service)
    raise ConfigurationError(f"Unsupported secret backend: {settings.secret_backend}")


# Global credential pool instance
_credential_pool: CredentialPool | None = None
_init_lock = asyncio.Lock()


async def initialize_credential_pool(
    settings: Settings | None = None,
    store: SecretStore | None = None,
) -> CredentialPool:
    """Initialize the global credential pool.

    This function should be called once during application startup. It
    loads pool metadata and runs legacy migration.

    Args:
        settings: Optional explicit settings (default: get_settings())
        store: Optional secret store override

    Returns:
        Initialized CredentialPool instance
    """
    global _credential_pool

    async with _init_lock:
        if _credential_pool is not None and _credential_pool.initialized:
            logger.debug("credential_pool_already_initialized")
            return _credential_pool

        settings = settings or get_settings()
        logger.info("initializing_credential_pool", backend=settings.secret_backend.value)

        pool = CredentialPool.from_settings(settings, store=store)
        await pool.initialize()
        _credential_pool = pool
        return pool


def get_credential_pool() -> CredentialPool:
    """Get the global credential pool instance.

    Raises:
        RuntimeError: If the pool has not been initialized
    """
    if _credential_pool is None:
        raise RuntimeError(
            "Credential pool not initialized. Call initialize_credential_pool() first."
        )
    return _credential_pool


async def shutdown_credential_pool() -> None:
    """Forget the global credential pool.

    All state is persisted as it changes, so there is nothing to flush.
    """
    global _credential_pool

    async with _init_lock:
        if _credential_pool is not None:
            logger.info("credential_pool_shut_down")
        _credential_pool = None

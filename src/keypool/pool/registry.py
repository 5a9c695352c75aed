"""Pool registry: provider to ordered credential handles.

The registry owns pool membership. Handles are persisted to a small
versioned JSON file; secret values live only in the secret store.
A handle whose value is missing from the store is treated as absent,
which tolerates a crash between the two writes.
"""

from pathlib import Path

from pydantic import ValidationError

from keypool.core.logging import get_logger
from keypool.pool.protocol import (
    CredentialPersistenceError,
    SecretStore,
    SecretStoreError,
)
from keypool.pool.types import PoolEntry, PoolMetadata, new_handle, normalize_provider

logger = get_logger(__name__)


def atomic_write_text(path: Path, content: str, encoding: str = "utf-8") -> None:
    """Write a file atomically using the temp-file + replace pattern.

    The target is either fully written or left untouched.

    Raises:
        OSError: If the temp file cannot be written or moved into place
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")

    try:
        tmp_path.write_text(content, encoding=encoding)
        tmp_path.replace(path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


class PoolRegistry:
    """Ordered credential handles per provider, persisted as metadata.

    Positions exposed by this class always refer to the resolved pool,
    i.e. the handles whose values could be read, with repeated values
    collapsed to their first occurrence.

    Example:
        registry = PoolRegistry(store, settings.metadata_path)
        registry.load()

        handle = await registry.add_credential("AIza...", "Gemini")
        values = await registry.list_credentials("gemini")
    """

    def __init__(self, store: SecretStore, metadata_path: Path):
        """Initialize the registry.

        Args:
            store: Secret store holding credential values
            metadata_path: Path of the pool metadata file
        """
        self.store = store
        self.metadata_path = metadata_path
        self._pools: dict[str, list[str]] = {}

    # ----------------------------------------------------------------
    # Metadata persistence
    # ----------------------------------------------------------------

    def load(self) -> None:
        """Load pool metadata from disk.

        A missing file is an empty registry. A corrupt file is logged and
        treated as empty; the next successful write replaces it.
        """
        if not self.metadata_path.exists():
            self._pools = {}
            return

        try:
            raw = self.metadata_path.read_text(encoding="utf-8")
            metadata = PoolMetadata.model_validate_json(raw)
        except (OSError, ValidationError) as e:
            logger.error(
                "pool_metadata_load_failed",
                path=str(self.metadata_path),
                error=str(e),
            )
            self._pools = {}
            return

        self._pools = {provider: list(handles) for provider, handles in metadata.pools.items()}
        logger.info("pool_metadata_loaded", providers=len(self._pools))

    def _persist(self) -> None:
        """Write current membership atomically.

        Raises:
            CredentialPersistenceError: If the file cannot be written
        """
        metadata = PoolMetadata(pools=self._pools)
        try:
            atomic_write_text(self.metadata_path, metadata.model_dump_json(indent=2))
        except OSError as e:
            logger.error(
                "pool_metadata_save_failed",
                path=str(self.metadata_path),
                error=str(e),
            )
            raise CredentialPersistenceError(
                f"Failed to write pool metadata: {self.metadata_path}", e
            ) from e

    def snapshot(self) -> dict[str, list[str]]:
        """Copy of the current provider to handles mapping."""
        return {provider: list(handles) for provider, handles in self._pools.items()}

    # ----------------------------------------------------------------
    # Resolution
    # ----------------------------------------------------------------

    def handles(self, provider: str) -> list[str]:
        """Handles for a provider in ring order, unresolved."""
        return list(self._pools.get(normalize_provider(provider), []))

    def providers(self) -> list[str]:
        """Providers with at least one handle."""
        return sorted(self._pools)

    async def entries(self, provider: str) -> list[PoolEntry]:
        """Resolve a provider's handles to values.

        Handles without a stored value are skipped, and repeated values
        keep only their first occurrence.
        """
        resolved: list[PoolEntry] = []
        seen: set[str] = set()

        for handle in self.handles(provider):
            try:
                value = await self.store.read(handle)
            except SecretStoreError as e:
                logger.warning("credential_read_failed", handle=handle, error=str(e))
                continue

            if not value:
                logger.debug("credential_value_missing", handle=handle)
                continue
            if value in seen:
                continue

            seen.add(value)
            resolved.append(PoolEntry(handle=handle, value=value))

        return resolved

    async def list_credentials(self, provider: str) -> list[str]:
        """Secret values for a provider in ring order."""
        return [entry.value for entry in await self.entries(provider)]

    async def count(self, provider: str) -> int:
        """Number of usable credentials for a provider."""
        return len(await self.entries(provider))

    async def has_any(self, provider: str) -> bool:
        """Whether at least one credential is configured."""
        return await self.count(provider) > 0

    async def has_multiple(self, provider: str) -> bool:
        """Whether rotation is possible for this provider."""
        return await self.count(provider) > 1

    # ----------------------------------------------------------------
    # Mutation
    # ----------------------------------------------------------------

    async def add_credential(self, value: str, provider: str) -> str | None:
        """Add a credential to a provider's pool.

        Args:
            value: Secret value to add
            provider: Provider name (case-insensitive)

        Returns:
            The new handle, or None if the value is empty or already present

        Raises:
            CredentialPersistenceError: If existing values could not be read for
                the duplicate check, or the secret or metadata write failed;
                the pool is left unchanged
        """
        key = normalize_provider(provider)
        if not value:
            return None

        if value in await self._stored_values(key):
            logger.info("credential_duplicate_rejected", provider=key)
            return None

        handle = new_handle(key)
        if not await self.store.save(handle, value):
            raise CredentialPersistenceError(f"Failed to store credential for provider: {key}")

        self._pools.setdefault(key, []).append(handle)
        try:
            self._persist()
        except CredentialPersistenceError:
            self._drop_handle(key, handle)
            await self.store.delete(handle)
            raise

        logger.info(
            "credential_added",
            provider=key,
            handle=handle,
            total=len(self._pools[key]),
        )
        return handle

    async def remove_credential(self, position: int, provider: str) -> bool:
        """Remove the credential at a position of the resolved pool.

        Args:
            position: 0-based position as reported by list_credentials
            provider: Provider name (case-insensitive)

        Returns:
            True if removed, False if the position is out of bounds

        Raises:
            CredentialPersistenceError: If the metadata write failed. The
                secret is already gone, so the stale handle resolves as absent.
        """
        key = normalize_provider(provider)
        entries = await self.entries(key)
        if position < 0 or position >= len(entries):
            return False

        target = entries[position]
        # Shadow handles carry the same value but were collapsed on resolve
        doomed = [target.handle]
        for handle in self.handles(key):
            if handle != target.handle and await self._read_quietly(handle) == target.value:
                doomed.append(handle)

        for handle in doomed:
            await self.store.delete(handle)
            self._drop_handle(key, handle)

        self._persist()
        logger.info("credential_removed", provider=key, position=position, handle=target.handle)
        return True

    async def remove_all_credentials(self, provider: str) -> int:
        """Remove every credential for a provider.

        Returns:
            Number of handles removed
        """
        key = normalize_provider(provider)
        handles = self._pools.pop(key, [])
        for handle in handles:
            await self.store.delete(handle)

        if handles:
            self._persist()
            logger.info("credentials_cleared", provider=key, removed=len(handles))
        return len(handles)

    def _drop_handle(self, provider: str, handle: str) -> None:
        handles = self._pools.get(provider)
        if handles is None:
            return
        if handle in handles:
            handles.remove(handle)
        if not handles:
            del self._pools[provider]

    async def _stored_values(self, provider: str) -> set[str]:
        """Every stored value of a provider, failing on an unreadable handle."""
        values: set[str] = set()
        for handle in self.handles(provider):
            try:
                value = await self.store.read(handle)
            except SecretStoreError as e:
                raise CredentialPersistenceError(
                    f"Cannot check for duplicates, secret store unreadable: {handle}", e
                ) from e
            if value:
                values.add(value)
        return values

    async def _read_quietly(self, handle: str) -> str | None:
        try:
            return await self.store.read(handle)
        except SecretStoreError:
            return None


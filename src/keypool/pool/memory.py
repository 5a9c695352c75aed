"""In-memory secret store for development and testing.

Secrets live only for the lifetime of the process, which makes this
store suitable for tests and for running without an OS keyring.
"""

from keypool.core.logging import get_logger

logger = get_logger(__name__)


class MemorySecretStore:
    """Secret store backed by a dictionary.

    Example:
        store = MemorySecretStore({"gemini_api_key": "AIza..."})
        value = await store.read("gemini_api_key")
    """

    def __init__(self, initial: dict[str, str] | None = None):
        """Initialize the store.

        Args:
            initial: Optional secrets to preload
        """
        self._secrets: dict[str, str] = dict(initial or {})

    async def save(self, key: str, value: str) -> bool:
        """Store a secret value."""
        self._secrets[key] = value
        logger.debug("secret_saved", key=key, backend="memory")
        return True

    async def read(self, key: str) -> str | None:
        """Read a secret value, or None if absent."""
        return self._secrets.get(key)

    async def delete(self, key: str) -> bool:
        """Delete a secret."""
        if key in self._secrets:
            del self._secrets[key]
            logger.debug("secret_deleted", key=key, backend="memory")
            return True
        return False

    def keys(self) -> list[str]:
        """List stored keys."""
        return list(self._secrets)

    def __len__(self) -> int:
        return len(self._secrets)

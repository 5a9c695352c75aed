"""OS keyring secret store.

Stores credentials in the platform keyring (macOS Keychain, Windows
Credential Locker, Secret Service on Linux) through the keyring library.
"""

import asyncio
from functools import cached_property
from typing import Any

from keypool.core.logging import get_logger
from keypool.pool.protocol import SecretStoreError

logger = get_logger(__name__)

__all__ = ["KeyringSecretStore"]


class KeyringSecretStore:
    """Secret store using the operating system keyring.

    keyring calls are blocking, so each one runs in the default executor
    to keep the event loop free for selections on other providers.

    Example:
        store = KeyringSecretStore(service="keypool")
        await store.save("kp_gemini_...", "AIza...")
    """

    def __init__(self, service: str = "keypool"):
        """Initialize the keyring store.

        Args:
            service: Keyring service name that namespaces every entry
        """
        self.service = service

    @cached_property
    def _keyring(self) -> Any:
        """Lazy import of keyring module."""
        try:
            import keyring

            return keyring
        except ImportError as e:
            raise ImportError(
                "keyring package is required for the OS keyring backend. "
                "Install it with: pip install keyring"
            ) from e

    async def _run(self, func: Any, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def save(self, key: str, value: str) -> bool:
        """Store a secret in the keyring.

        Returns:
            True if written, False if the keyring rejected the write
        """
        try:
            await self._run(self._keyring.set_password, self.service, key, value)
        except self._keyring.errors.KeyringError as e:
            logger.error("keyring_save_failed", key=key, error=str(e))
            return False
        logger.debug("secret_saved", key=key, backend="keyring")
        return True

    async def read(self, key: str) -> str | None:
        """Read a secret from the keyring.

        Raises:
            SecretStoreError: If the keyring backend is unavailable
        """
        try:
            value: str | None = await self._run(self._keyring.get_password, self.service, key)
        except self._keyring.errors.KeyringError as e:
            raise SecretStoreError("keyring", e) from e
        return value

    async def delete(self, key: str) -> bool:
        """Delete a secret from the keyring.

        Returns:
            True if deleted, False if not found
        """
        try:
            await self._run(self._keyring.delete_password, self.service, key)
        except self._keyring.errors.PasswordDeleteError:
            return False
        except self._keyring.errors.KeyringError as e:
            raise SecretStoreError("keyring", e) from e
        logger.debug("secret_deleted", key=key, backend="keyring")
        return True

"""Secret store protocol and credential pool exceptions.

This module defines the narrow capability the credential pool needs from
a secret store, and the errors raised by the pool package.
"""

from typing import Protocol, runtime_checkable

from keypool.utils.exceptions import KeypoolError


@runtime_checkable
class SecretStore(Protocol):
    """Protocol for durable, access-controlled secret storage.

    Secrets are addressed by an opaque key. The key carries no secret
    material and is meaningless without access to the store.
    """

    async def save(self, key: str, value: str) -> bool:
        """Store a secret value under a key, replacing any previous value.

        Args:
            key: Opaque identifier for the secret
            value: Secret value to store

        Returns:
            True if the value was durably written, False otherwise
        """
        ...

    async def read(self, key: str) -> str | None:
        """Read a secret value.

        Args:
            key: Opaque identifier for the secret

        Returns:
            The stored value, or None if absent

        Raises:
            SecretStoreError: If the backend cannot be reached
        """
        ...

    async def delete(self, key: str) -> bool:
        """Delete a secret.

        Args:
            key: Opaque identifier for the secret

        Returns:
            True if deleted, False if not found
        """
        ...


class CredentialPoolError(KeypoolError):
    """Base exception for credential pool errors."""

    pass


class NoCredentialAvailableError(CredentialPoolError):
    """Raised when a provider has no credentials configured."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"No credentials configured for provider: {provider}")


class CredentialsExhaustedError(CredentialPoolError):
    """Raised when every retry attempt for a provider was rate limited."""

    def __init__(self, provider: str, attempts: int):
        self.provider = provider
        self.attempts = attempts
        super().__init__(
            f"All credentials for provider {provider} exhausted after {attempts} attempts"
        )


class CredentialPersistenceError(CredentialPoolError):
    """Raised when a secret or the pool metadata could not be written."""

    def __init__(self, message: str, cause: Exception | None = None):
        self.cause = cause
        super().__init__(message)


class SecretStoreError(CredentialPoolError):
    """Raised when the secret store backend fails."""

    def __init__(self, backend: str, cause: Exception | None = None):
        self.backend = backend
        self.cause = cause
        super().__init__(f"Secret store backend failed: {backend}")


class MigrationError(CredentialPoolError):
    """Raised by a legacy importer that could not finish absorbing its source."""

    def __init__(self, importer: str, message: str, cause: Exception | None = None):
        self.importer = importer
        self.cause = cause
        super().__init__(f"{importer}: {message}")

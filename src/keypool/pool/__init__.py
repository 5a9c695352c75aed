"""Credential pool: rotation and failover across equivalent API keys.

This module provides:
- SecretStore protocol with in-memory and OS keyring implementations
- PoolRegistry for durable, ordered pool membership per provider
- HealthTracker for time-boxed quarantine of rate-limited keys
- Rotator for round-robin selection that skips quarantined keys
- Legacy importers that absorb earlier storage formats once
- CredentialPool service tying these together
- call_with_rotation retry helper for API clients

Example:
    from keypool.pool import initialize_credential_pool

    pool = await initialize_credential_pool()

    api_key = await pool.get_next_credential("gemini")
    response = await client.post(url, headers={"x-goog-api-key": api_key})
    if response.status_code == 429:
        await pool.report_failure(api_key, "gemini")
"""

from keypool.pool.health import HealthTracker
from keypool.pool.keyring_store import KeyringSecretStore
from keypool.pool.manager import (
    CredentialPool,
    create_secret_store,
    get_credential_pool,
    initialize_credential_pool,
    shutdown_credential_pool,
)
from keypool.pool.memory import MemorySecretStore
from keypool.pool.migration import (
    LegacyImporter,
    LegacyPlaintextImporter,
    LegacyPrimaryImporter,
    LegacyTieredImporter,
    default_importers,
    run_migrations,
)
from keypool.pool.protocol import (
    CredentialPersistenceError,
    CredentialPoolError,
    CredentialsExhaustedError,
    MigrationError,
    NoCredentialAvailableError,
    SecretStore,
    SecretStoreError,
)
from keypool.pool.registry import PoolRegistry
from keypool.pool.retry import call_with_rotation
from keypool.pool.rotator import Rotator
from keypool.pool.types import (
    EntryStatus,
    HealthRecord,
    ImportResult,
    MigrationReport,
    PoolEntry,
    PoolMetadata,
    PoolStatus,
    Selection,
    mask_credential,
    normalize_provider,
)

__all__ = [
    # Protocol
    "SecretStore",
    # Stores
    "MemorySecretStore",
    "KeyringSecretStore",
    "create_secret_store",
    # Types
    "PoolEntry",
    "HealthRecord",
    "Selection",
    "PoolMetadata",
    "ImportResult",
    "MigrationReport",
    "EntryStatus",
    "PoolStatus",
    "mask_credential",
    "normalize_provider",
    # Components
    "PoolRegistry",
    "HealthTracker",
    "Rotator",
    # Migration
    "LegacyImporter",
    "LegacyPrimaryImporter",
    "LegacyTieredImporter",
    "LegacyPlaintextImporter",
    "default_importers",
    "run_migrations",
    # Service
    "CredentialPool",
    "initialize_credential_pool",
    "get_credential_pool",
    "shutdown_credential_pool",
    "call_with_rotation",
    # Exceptions
    "CredentialPoolError",
    "NoCredentialAvailableError",
    "CredentialsExhaustedError",
    "CredentialPersistenceError",
    "SecretStoreError",
    "MigrationError",
]

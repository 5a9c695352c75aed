"""One-time absorption of credentials from legacy storage formats.

Three earlier storage generations exist in the field:

1. A single primary credential per provider, kept in the secret store
   under ``<provider>_api_key``.
2. ``multi_keys_metadata.json``: an index splitting each provider's keys
   into a primary and additional tier, whose values live in the secret
   store.
3. ``multi_keys.json``: plaintext keys on disk.

Each importer is idempotent (values already pooled are skipped) and
removes its legacy source only after every value was durably written,
so an interrupted migration resumes on the next start.
"""

import json
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any, Protocol

from keypool.config.settings import Settings
from keypool.core.logging import LogContext, get_logger, log_exception
from keypool.pool.protocol import CredentialPoolError, MigrationError
from keypool.pool.registry import PoolRegistry
from keypool.pool.types import ImportResult, MigrationReport, normalize_provider
from keypool.utils.exceptions import ConfigurationError

logger = get_logger(__name__)

PRIMARY_KEY_TEMPLATE = "{provider}_api_key"


class LegacyImporter(Protocol):
    """A strategy that absorbs one legacy storage generation."""

    name: str

    async def run(self, registry: PoolRegistry) -> ImportResult:
        """Import the legacy source into the registry.

        Must not raise for source or persistence problems; those are
        reported through ``ImportResult.error``.
        """
        ...


async def _absorb(
    registry: PoolRegistry,
    provider: str,
    values: Iterable[str],
    result: ImportResult,
) -> None:
    """Add values to a provider's pool, counting imports and skips."""
    for value in values:
        if not value:
            continue
        if await registry.add_credential(value, provider) is None:
            result.skipped += 1
        else:
            result.imported += 1


def _load_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


class LegacyPrimaryImporter:
    """Imports the single legacy primary credential of each known provider."""

    name = "legacy_primary"

    def __init__(self, providers: Sequence[str], key_template: str = PRIMARY_KEY_TEMPLATE):
        """Initialize the importer.

        Args:
            providers: Providers to probe for a primary credential
            key_template: Secret store key format for the primary credential

        Raises:
            ConfigurationError: If the template has no provider placeholder
        """
        if "{provider}" not in key_template:
            raise ConfigurationError("key_template must contain a {provider} placeholder")

        self.providers = [normalize_provider(p) for p in providers]
        self.key_template = key_template

    async def run(self, registry: PoolRegistry) -> ImportResult:
        result = ImportResult(name=self.name)

        for provider in self.providers:
            legacy_key = self.key_template.format(provider=provider)
            try:
                value = await registry.store.read(legacy_key)
                if not value:
                    continue
                await _absorb(registry, provider, [value], result)
                await registry.store.delete(legacy_key)
            except CredentialPoolError as e:
                # Keep going: each provider's primary is an independent source
                result.error = MigrationError(self.name, f"provider {provider}", e)
                log_exception(logger, e, "legacy_primary_failed", provider=provider)

        result.completed = result.error is None
        return result


class LegacyTieredImporter:
    """Imports the primary/additional key index of the previous release.

    File format::

        {"gemini": {"primary": "<store key>", "additional": ["<store key>", ...]}}

    A bare list per provider is read as additional keys only. The tier
    distinction is discarded: every key becomes an equal pool member.
    """

    name = "legacy_tiered"

    def __init__(self, path: Path):
        """Initialize the importer.

        Args:
            path: Location of the legacy index file
        """
        self.path = path

    def _store_keys(self, entry: Any) -> list[str]:
        if isinstance(entry, list):
            return [key for key in entry if isinstance(key, str) and key]
        if isinstance(entry, dict):
            keys: list[str] = []
            primary = entry.get("primary")
            if isinstance(primary, str) and primary:
                keys.append(primary)
            keys.extend(
                key for key in entry.get("additional") or [] if isinstance(key, str) and key
            )
            return keys
        return []

    async def run(self, registry: PoolRegistry) -> ImportResult:
        result = ImportResult(name=self.name)
        if not self.path.exists():
            result.completed = True
            return result

        try:
            data = _load_json(self.path)
            if not isinstance(data, dict):
                raise ValueError("expected an object mapping providers to keys")

            consumed: list[str] = []
            for provider, entry in data.items():
                store_keys = self._store_keys(entry)
                values = []
                for store_key in store_keys:
                    value = await registry.store.read(store_key)
                    if value:
                        values.append(value)
                await _absorb(registry, provider, values, result)
                consumed.extend(store_keys)

            for store_key in consumed:
                await registry.store.delete(store_key)
            self.path.unlink()
        except (OSError, ValueError, CredentialPoolError) as e:
            result.error = MigrationError(self.name, str(self.path), e)
            log_exception(logger, e, "legacy_tiered_failed", path=str(self.path))
            return result

        result.completed = True
        return result


class LegacyPlaintextImporter:
    """Moves plaintext keys from disk into the secret store.

    File format::

        {"gemini": ["AIza...", "AIza..."]}

    The plaintext file is deleted once every key has been stored, so it
    never outlives a successful import.
    """

    name = "legacy_plaintext"

    def __init__(self, path: Path):
        """Initialize the importer.

        Args:
            path: Location of the plaintext key file
        """
        self.path = path

    async def run(self, registry: PoolRegistry) -> ImportResult:
        result = ImportResult(name=self.name)
        if not self.path.exists():
            result.completed = True
            return result

        try:
            data = _load_json(self.path)
            if not isinstance(data, dict):
                raise ValueError("expected an object mapping providers to key lists")

            for provider, values in data.items():
                if not isinstance(values, list):
                    continue
                await _absorb(
                    registry,
                    provider,
                    [value for value in values if isinstance(value, str)],
                    result,
                )

            self.path.unlink()
        except (OSError, ValueError, CredentialPoolError) as e:
            result.error = MigrationError(self.name, str(self.path), e)
            log_exception(logger, e, "legacy_plaintext_failed", path=str(self.path))
            return result

        logger.info("legacy_plaintext_removed", path=str(self.path))
        result.completed = True
        return result


def default_importers(settings: Settings) -> list[LegacyImporter]:
    """Importers for every known legacy generation, oldest layout last."""
    return [
        LegacyPrimaryImporter(settings.known_providers),
        LegacyTieredImporter(settings.legacy_tiered_path),
        LegacyPlaintextImporter(settings.legacy_plaintext_path),
    ]


async def run_migrations(
    registry: PoolRegistry,
    importers: Sequence[LegacyImporter],
) -> MigrationReport:
    """Run importers in order.

    Failures are recorded in the report and never stop later importers.

    Args:
        registry: Registry receiving the credentials
        importers: Importers to run

    Returns:
        MigrationReport with one result per importer
    """
    report = MigrationReport()

    for importer in importers:
        with LogContext(importer=importer.name):
            result = await importer.run(registry)
        report.results.append(result)

        if result.imported or result.error is not None:
            logger.info(
                "legacy_import_finished",
                importer=result.name,
                imported=result.imported,
                skipped=result.skipped,
                completed=result.completed,
            )

    return report

"""Tests for the pool registry."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from keypool.pool.memory import MemorySecretStore
from keypool.pool.protocol import CredentialPersistenceError, SecretStoreError
from keypool.pool.registry import PoolRegistry, atomic_write_text


class TestAtomicWrite:
    """Tests for atomic_write_text."""

    def test_writes_and_creates_parents(self, tmp_path: Path) -> None:
        target = tmp_path / "nested" / "pools.json"
        atomic_write_text(target, "{}")

        assert target.read_text() == "{}"
        assert not target.with_suffix(".json.tmp").exists()

    def test_failure_leaves_target_untouched(self, tmp_path: Path) -> None:
        target = tmp_path / "pools.json"
        target.write_text("original")

        with (
            patch.object(Path, "replace", side_effect=OSError("disk full")),
            pytest.raises(OSError),
        ):
            atomic_write_text(target, "new")

        assert target.read_text() == "original"
        assert not target.with_suffix(".json.tmp").exists()


class TestRegistryLoad:
    """Tests for loading metadata."""

    def test_missing_file_is_empty(self, store: MemorySecretStore, metadata_path: Path) -> None:
        registry = PoolRegistry(store, metadata_path)
        registry.load()
        assert registry.providers() == []

    def test_corrupt_file_is_empty(self, store: MemorySecretStore, metadata_path: Path) -> None:
        metadata_path.write_text("{not json")
        registry = PoolRegistry(store, metadata_path)
        registry.load()
        assert registry.providers() == []

    def test_loads_handles(self, store: MemorySecretStore, metadata_path: Path) -> None:
        metadata_path.write_text(
            json.dumps({"version": 2, "pools": {"Gemini": ["h1", "h2"]}})
        )
        registry = PoolRegistry(store, metadata_path)
        registry.load()

        assert registry.providers() == ["gemini"]
        assert registry.handles("GEMINI") == ["h1", "h2"]


class TestAddCredential:
    """Tests for adding credentials."""

    @pytest.mark.asyncio
    async def test_add_returns_handle_and_persists(
        self, registry: PoolRegistry, store: MemorySecretStore, metadata_path: Path
    ) -> None:
        handle = await registry.add_credential("key-1", "Gemini")

        assert handle is not None
        assert await store.read(handle) == "key-1"

        on_disk = json.loads(metadata_path.read_text())
        assert on_disk["version"] == 2
        assert on_disk["pools"] == {"gemini": [handle]}
        assert "key-1" not in metadata_path.read_text()

    @pytest.mark.asyncio
    async def test_duplicate_rejected(self, registry: PoolRegistry) -> None:
        await registry.add_credential("key-1", "gemini")

        assert await registry.add_credential("key-1", "GEMINI") is None
        assert await registry.count("gemini") == 1

    @pytest.mark.asyncio
    async def test_duplicate_check_is_case_sensitive(self, registry: PoolRegistry) -> None:
        await registry.add_credential("key-a", "gemini")
        assert await registry.add_credential("KEY-A", "gemini") is not None
        assert await registry.count("gemini") == 2

    @pytest.mark.asyncio
    async def test_same_value_allowed_for_other_provider(self, registry: PoolRegistry) -> None:
        await registry.add_credential("shared", "gemini")
        assert await registry.add_credential("shared", "groq") is not None

    @pytest.mark.asyncio
    async def test_empty_value_rejected(self, registry: PoolRegistry) -> None:
        assert await registry.add_credential("", "gemini") is None
        assert registry.providers() == []

    @pytest.mark.asyncio
    async def test_store_failure_raises_and_leaves_pool(
        self, registry: PoolRegistry, store: MemorySecretStore
    ) -> None:
        with (
            patch.object(store, "save", return_value=False),
            pytest.raises(CredentialPersistenceError),
        ):
            await registry.add_credential("key-1", "gemini")

        assert registry.handles("gemini") == []

    @pytest.mark.asyncio
    async def test_metadata_failure_rolls_back(
        self, registry: PoolRegistry, store: MemorySecretStore
    ) -> None:
        await registry.add_credential("key-1", "gemini")

        with (
            patch("keypool.pool.registry.atomic_write_text", side_effect=OSError("read-only")),
            pytest.raises(CredentialPersistenceError),
        ):
            await registry.add_credential("key-2", "gemini")

        assert await registry.list_credentials("gemini") == ["key-1"]
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_unreadable_store_blocks_add(
        self, registry: PoolRegistry, store: MemorySecretStore
    ) -> None:
        await registry.add_credential("key-1", "gemini")

        with (
            patch.object(store, "read", side_effect=SecretStoreError("keyring")),
            pytest.raises(CredentialPersistenceError, match="duplicates"),
        ):
            await registry.add_credential("key-1", "gemini")

        assert len(registry.handles("gemini")) == 1
        assert await registry.list_credentials("gemini") == ["key-1"]
        assert len(store) == 1


class TestListCredentials:
    """Tests for resolving handles to values."""

    @pytest.mark.asyncio
    async def test_insertion_order(self, registry: PoolRegistry) -> None:
        for value in ("k1", "k2", "k3"):
            await registry.add_credential(value, "gemini")

        assert await registry.list_credentials("gemini") == ["k1", "k2", "k3"]

    @pytest.mark.asyncio
    async def test_missing_values_skipped(
        self, registry: PoolRegistry, store: MemorySecretStore
    ) -> None:
        await registry.add_credential("k1", "gemini")
        h2 = await registry.add_credential("k2", "gemini")
        await registry.add_credential("k3", "gemini")
        await store.delete(h2)

        assert await registry.list_credentials("gemini") == ["k1", "k3"]
        assert await registry.count("gemini") == 2

    @pytest.mark.asyncio
    async def test_repeated_values_collapsed(
        self, registry: PoolRegistry, store: MemorySecretStore
    ) -> None:
        h1 = await registry.add_credential("k1", "gemini")
        h2 = await registry.add_credential("k2", "gemini")
        await store.save(h2, "k1")

        entries = await registry.entries("gemini")
        assert [entry.handle for entry in entries] == [h1]

    @pytest.mark.asyncio
    async def test_derived_queries(self, registry: PoolRegistry) -> None:
        assert await registry.has_any("gemini") is False
        await registry.add_credential("k1", "gemini")
        assert await registry.has_any("gemini") is True
        assert await registry.has_multiple("gemini") is False
        await registry.add_credential("k2", "gemini")
        assert await registry.has_multiple("gemini") is True


class TestRemoveCredential:
    """Tests for removing credentials."""

    @pytest.mark.asyncio
    async def test_remove_by_listed_position(
        self, registry: PoolRegistry, store: MemorySecretStore
    ) -> None:
        for value in ("k1", "k2", "k3"):
            await registry.add_credential(value, "gemini")

        position = (await registry.list_credentials("gemini")).index("k2")
        assert await registry.remove_credential(position, "gemini") is True

        assert await registry.list_credentials("gemini") == ["k1", "k3"]
        assert len(store) == 2

    @pytest.mark.asyncio
    async def test_position_counts_resolved_entries(
        self, registry: PoolRegistry, store: MemorySecretStore
    ) -> None:
        await registry.add_credential("k1", "gemini")
        h2 = await registry.add_credential("k2", "gemini")
        await registry.add_credential("k3", "gemini")
        await store.delete(h2)

        # "k3" is listed at position 1 once k2's value is gone
        assert await registry.remove_credential(1, "gemini") is True
        assert await registry.list_credentials("gemini") == ["k1"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("position", [-1, 2, 10])
    async def test_out_of_bounds(self, registry: PoolRegistry, position: int) -> None:
        await registry.add_credential("k1", "gemini")
        await registry.add_credential("k2", "gemini")

        assert await registry.remove_credential(position, "gemini") is False
        assert await registry.count("gemini") == 2

    @pytest.mark.asyncio
    async def test_last_removal_drops_provider(
        self, registry: PoolRegistry, metadata_path: Path
    ) -> None:
        await registry.add_credential("k1", "gemini")
        await registry.remove_credential(0, "gemini")

        assert registry.providers() == []
        assert json.loads(metadata_path.read_text())["pools"] == {}

    @pytest.mark.asyncio
    async def test_remove_all(self, registry: PoolRegistry, store: MemorySecretStore) -> None:
        await registry.add_credential("k1", "gemini")
        await registry.add_credential("k2", "gemini")
        await registry.add_credential("g1", "groq")

        assert await registry.remove_all_credentials("Gemini") == 2
        assert await registry.list_credentials("gemini") == []
        assert await registry.list_credentials("groq") == ["g1"]
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_remove_all_empty(self, registry: PoolRegistry) -> None:
        assert await registry.remove_all_credentials("gemini") == 0


class TestPersistenceAcrossRestart:
    """Tests that membership survives a reload."""

    @pytest.mark.asyncio
    async def test_reload(self, store: MemorySecretStore, metadata_path: Path) -> None:
        first = PoolRegistry(store, metadata_path)
        first.load()
        await first.add_credential("k1", "gemini")
        await first.add_credential("k2", "gemini")

        second = PoolRegistry(store, metadata_path)
        second.load()

        assert await second.list_credentials("gemini") == ["k1", "k2"]

"""Pytest fixtures for keypool tests."""

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest
import structlog

from keypool.config.settings import SecretBackend, Settings
from keypool.pool.health import HealthTracker
from keypool.pool.manager import CredentialPool
from keypool.pool.memory import MemorySecretStore
from keypool.pool.registry import PoolRegistry


# =============================================================================
# Structlog Configuration Fixture
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_structlog_after_test():
    """Reset structlog configuration after each test.

    This ensures tests that modify structlog global state
    don't affect other tests.
    """
    yield
    structlog.reset_defaults()
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


# =============================================================================
# Time
# =============================================================================


class FakeClock:
    """Manually advanced clock for quarantine tests."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    """A clock frozen at a fixed instant until advanced."""
    return FakeClock()


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings pointing every file into a temporary directory."""
    return Settings(
        environment="test",
        log_level="DEBUG",
        data_dir=tmp_path,
        secret_backend=SecretBackend.MEMORY,
        known_providers=["gemini", "groq"],
    )


@pytest.fixture
def patch_settings(test_settings: Settings) -> Generator[Settings, None, None]:
    """Patch get_settings to return test settings."""
    with (
        patch("keypool.config.settings.get_settings", return_value=test_settings),
        patch("keypool.core.logging.get_settings", return_value=test_settings),
        patch("keypool.pool.manager.get_settings", return_value=test_settings),
        patch("keypool.pool.retry.get_settings", return_value=test_settings),
    ):
        yield test_settings


# =============================================================================
# Pool components
# =============================================================================


@pytest.fixture
def store() -> MemorySecretStore:
    """An empty in-memory secret store."""
    return MemorySecretStore()


@pytest.fixture
def metadata_path(tmp_path: Path) -> Path:
    """Location of the pool metadata file."""
    return tmp_path / "pools.json"


@pytest.fixture
def registry(store: MemorySecretStore, metadata_path: Path) -> PoolRegistry:
    """A loaded, empty registry."""
    registry = PoolRegistry(store, metadata_path)
    registry.load()
    return registry


@pytest.fixture
def health(clock: FakeClock) -> HealthTracker:
    """Health tracker with the default 60 second cooldown."""
    return HealthTracker(cooldown_seconds=60, clock=clock)


@pytest.fixture
def pool(store: MemorySecretStore, metadata_path: Path, clock: FakeClock) -> CredentialPool:
    """A credential pool without legacy importers."""
    return CredentialPool(store, metadata_path, cooldown_seconds=60, clock=clock)

"""Application settings loaded from environment variables."""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Literal

from platformdirs import user_data_dir
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_NAME = "keypool"


class SecretBackend(str, Enum):
    """Supported secret store backends."""

    KEYRING = "keyring"
    MEMORY = "memory"


def _default_data_dir() -> Path:
    return Path(user_data_dir(APP_NAME, appauthor=False))


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="KEYPOOL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Configuration
    environment: Literal["development", "test", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Storage
    data_dir: Path = Field(default_factory=_default_data_dir)
    metadata_filename: str = "pools.json"
    legacy_tiered_filename: str = "multi_keys_metadata.json"
    legacy_plaintext_filename: str = "multi_keys.json"

    # Secret store
    secret_backend: SecretBackend = SecretBackend.KEYRING
    keyring_service: str = APP_NAME

    # Rotation
    cooldown_seconds: float = Field(default=60.0, gt=0)
    """How long a rate-limited credential stays out of rotation."""

    known_providers: list[str] = Field(
        default_factory=lambda: [
            "gemini",
            "groq",
            "openai",
            "anthropic",
            "elevenlabs",
            "deepgram",
            "mistral",
            "soniox",
        ]
    )
    """Providers probed for a legacy primary credential during migration."""

    # Caller retry helper
    retry_rounds: int = Field(default=3, ge=1)
    retry_initial_delay: float = Field(default=1.0, ge=0)

    @field_validator("known_providers")
    @classmethod
    def normalize_providers(cls, value: list[str]) -> list[str]:
        """Lowercase provider names and drop blanks and repeats."""
        seen: list[str] = []
        for name in value:
            key = name.strip().lower()
            if key and key not in seen:
                seen.append(key)
        return seen

    @property
    def metadata_path(self) -> Path:
        """Path of the pool metadata file."""
        return self.data_dir / self.metadata_filename

    @property
    def legacy_tiered_path(self) -> Path:
        """Path of the previous generation's key index."""
        return self.data_dir / self.legacy_tiered_filename

    @property
    def legacy_plaintext_path(self) -> Path:
        """Path of the oldest plaintext key file."""
        return self.data_dir / self.legacy_plaintext_filename


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

"""Configuration module for keypool."""

from keypool.config.settings import SecretBackend, Settings, get_settings

__all__ = ["Settings", "get_settings", "SecretBackend"]

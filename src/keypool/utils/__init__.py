"""Utility modules for keypool."""

from keypool.utils.exceptions import ConfigurationError, KeypoolError

__all__ = [
    "KeypoolError",
    "ConfigurationError",
]

"""Custom exceptions for keypool."""


class KeypoolError(Exception):
    """Base exception for all keypool errors."""

    pass


class ConfigurationError(KeypoolError):
    """Error in configuration or settings."""

    pass

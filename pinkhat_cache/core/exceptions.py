"""
Custom exception classes for the application.
Provides structured error handling across all modules.
"""

from typing import Any, Optional, Dict


class PinkhatCacheException(Exception):
    """Base exception class for the game cache."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(PinkhatCacheException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class StorageFaultError(PinkhatCacheException):
    """Raised when a durable write or read against the cache store fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "STORAGE_FAULT", details)


class SourceUnavailableError(PinkhatCacheException):
    """Raised when the chain node cannot be reached or answers with an error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SOURCE_UNAVAILABLE", details)


class IndexerError(PinkhatCacheException):
    """Raised when the synchronizer cannot make progress."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "INDEXER_ERROR", details)


class ValidationError(PinkhatCacheException):
    """Raised when data validation fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class MetadataResolutionError(PinkhatCacheException):
    """Raised when hat metadata cannot be fetched. Never leaves the resolver."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "METADATA_RESOLUTION_ERROR", details)


class NotFoundError(PinkhatCacheException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", details)


class GameNotFoundError(NotFoundError):
    """Raised when a game exists neither in the cache nor on chain."""

    def __init__(self, game_id: int):
        super().__init__(
            f"Game not found: {game_id}",
            {"game_id": game_id}
        )


class PlayerNotFoundError(NotFoundError):
    """Raised when a player has never taken part in a game."""

    def __init__(self, address: str):
        super().__init__(
            f"Player not found: {address}",
            {"address": address}
        )


class InvalidAddressError(ValidationError):
    """Raised when a value is not a valid account address."""

    def __init__(self, address: Any):
        super().__init__(
            f"Invalid address: {address}",
            {"address": str(address)}
        )

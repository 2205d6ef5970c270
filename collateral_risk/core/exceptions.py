"""
Risk scoring exceptions.

Configuration errors are fatal and never retried. Data-unavailability errors
are caught at the per-asset boundary and degrade that asset to unscored.
Provider throttling is not an exception: see dispatcher.RetryAfter.
"""

from typing import Any, Dict, Optional


class RiskScoringError(Exception):
    """Base exception for collateral risk scoring."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }


class ConfigurationError(RiskScoringError):
    """Unknown service name, malformed override entry or invalid rule."""


class DataUnavailableError(RiskScoringError):
    """A provider could not supply a metric required to score an asset."""

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        address: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, context)
        self.service = service
        self.address = address
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "service": self.service,
            "address": self.address,
            "original_error": str(self.original_error) if self.original_error else None,
        })
        return data

    def __str__(self) -> str:
        parts = [self.message]
        if self.service:
            parts.append(f"[service={self.service}]")
        if self.address:
            parts.append(f"[address={self.address}]")
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)

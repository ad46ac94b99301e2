#!/usr/bin/env python3
"""
Error taxonomy for the idle workload scaler.

Only ConfigurationError and ClusterUnavailableError are allowed to abort a
run. Provider failures are downgraded to inconclusive signals at component
boundaries, and actuation failures are reported per workload.
"""

from typing import Any, Dict, Optional


class IdleScalerError(Exception):
    """Base class for all idle scaler errors."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            result += f" (context: {context_str})"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(IdleScalerError):
    """Invalid or unreadable configuration. Fatal before any scaling."""

    pass


class ClusterUnavailableError(IdleScalerError):
    """The cluster API could not be initialised or listed. Fatal."""

    pass


class ProviderQueryError(IdleScalerError):
    """A single external query failed (metrics, record store or pod listing)."""

    pass


class ActuationError(IdleScalerError):
    """Updating a workload's replica count failed."""

    pass


class ConsistencyError(IdleScalerError):
    """The update was accepted but the observed replica count is not zero."""

    pass

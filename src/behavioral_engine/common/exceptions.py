"""Custom exceptions for the behavioral engine.

Provides a hierarchy of exceptions for the pipeline's error taxonomy.
All engine exceptions inherit from BehavioralEngineError.
"""

from typing import Any, Dict, Optional


class BehavioralEngineError(Exception):
    """Base exception for all behavioral engine errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        code: str = "ENGINE_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(BehavioralEngineError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONFIG_ERROR", details=details)


class AuthenticationError(BehavioralEngineError):
    """Raised when a credential is missing or invalid.

    Surfaced to the caller before any mutation happens.
    """

    status_code = 401

    def __init__(self, message: str = "Invalid or missing credentials", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="AUTHENTICATION_ERROR", details=details)


class ValidationError(BehavioralEngineError):
    """Raised when a payload is malformed. No partial write happens."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class InvalidTransitionError(ValidationError):
    """Raised when an intervention status change would move backwards."""

    status_code = 409

    def __init__(
        self,
        current_status: str,
        requested_status: str,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["current_status"] = current_status
        details["requested_status"] = requested_status
        super().__init__(
            f"Cannot move intervention from '{current_status}' to '{requested_status}'",
            details=details,
        )
        self.code = "INVALID_TRANSITION"


class NotFoundError(BehavioralEngineError):
    """Raised when a referenced record does not exist or is not the caller's.

    The message never says which of the two it was.
    """

    status_code = 404

    def __init__(self, resource: str, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["resource"] = resource
        super().__init__(
            f"{resource} not found or access denied",
            code="NOT_FOUND",
            details=details,
        )


class DependencyFailure(BehavioralEngineError):
    """Raised when a downstream pipeline stage fails.

    Logged with full context. Never rolls back upstream writes and never
    surfaces from the ingestion gateway.
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        stage: str,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["stage"] = stage
        super().__init__(message, code="DEPENDENCY_FAILURE", details=details)
        self.stage = stage


class TemplateConfigurationError(DependencyFailure):
    """Raised when an eligible intervention type has no active template."""

    def __init__(self, intervention_types: list, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["intervention_types"] = list(intervention_types)
        super().__init__(
            "No intervention templates configured",
            stage="intervention_agent",
            details=details,
        )

"""Custom exception classes for the audit trigger engine."""

from typing import Optional, Dict, Any


class AuditTriggerError(Exception):
    """Base exception for audit trigger errors."""

    ERROR_CODE = "AUDIT_001"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """Initialize exception with message, code, and optional details.

        Args:
            message: Error message
            error_code: Optional error code override
            details: Optional dictionary with additional error details
        """
        super().__init__(message)
        self.error_code = error_code or self.ERROR_CODE
        self.details = details or {}


class ConfigurationError(AuditTriggerError):
    """Raised when configuration is invalid or the backend is unsupported."""

    ERROR_CODE = "CONFIG_001"


class IntrospectionUnavailable(AuditTriggerError):
    """Raised when table metadata cannot be retrieved by any strategy."""

    ERROR_CODE = "CATALOG_001"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        table_name: Optional[str] = None,
        attempts: Optional[Dict[str, str]] = None
    ):
        """Initialize with the table and the per-strategy failure messages."""
        super().__init__(message, error_code)
        self.table_name = table_name
        self.attempts = attempts or {}
        self.details["table_name"] = table_name
        self.details["attempts"] = self.attempts


class TriggerGenerationError(AuditTriggerError):
    """Raised when trigger code cannot be generated for a table."""

    ERROR_CODE = "TRIGGER_GEN_001"


class DdlExecutionFailed(AuditTriggerError):
    """Raised when the backend rejects a trigger create/drop statement."""

    ERROR_CODE = "DDL_EXEC_001"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        statement: Optional[str] = None
    ):
        """Initialize with the rejected statement."""
        super().__init__(message, error_code)
        self.statement = statement
        self.details["statement"] = statement


class ContextPropagationFailed(AuditTriggerError):
    """Raised when the audit session variables cannot be set."""

    ERROR_CODE = "CONTEXT_001"

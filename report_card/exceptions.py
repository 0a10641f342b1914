"""
Custom exceptions for the report card calculator.
"""

from typing import Optional, Any, Dict


class ReportCardException(Exception):
    """Base exception for all report-card errors."""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class ValidationError(ReportCardException):
    """Raised when user-supplied data fails validation."""
    pass


class ConfigurationError(ReportCardException):
    """Raised when subject or grading configuration is invalid."""
    pass

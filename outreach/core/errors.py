# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Custom exceptions for the outreach engine services.

All service-level exceptions inherit from OutreachError for consistent
error handling. Workflow-level errors live in outreach.workflow.exceptions.
"""

from typing import Optional


class OutreachError(Exception):
    """Base exception for all outreach service errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        """
        Initialize outreach error.

        Args:
            message: Human-readable error message
            details: Additional error details
        """
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert error to dictionary for API response."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class NotFoundError(OutreachError):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str, details: Optional[dict] = None):
        """
        Initialize not found error.

        Args:
            resource: Type of resource (e.g., "Workflow", "Execution")
            identifier: Resource identifier
            details: Additional error details
        """
        message = f"{resource} not found: {identifier}"
        super().__init__(message, details=details)
        self.resource = resource
        self.identifier = identifier


class ConfigurationError(OutreachError):
    """Configuration error."""

    def __init__(self, message: str, config_file: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, details=details)
        self.config_file = config_file


class ExecutionLogClosedError(OutreachError):
    """Execution log is finalized and can no longer be modified."""

    def __init__(self, execution_id: str):
        super().__init__(f"Execution log is already finalized: {execution_id}")
        self.execution_id = execution_id

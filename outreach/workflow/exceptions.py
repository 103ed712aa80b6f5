# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Exceptions

Error taxonomy for the workflow execution engine.
"""

from typing import Optional


QUOTA_EXCEEDED_MESSAGE = "Daily email limit reached"


class WorkflowError(Exception):
    """Base exception for the workflow engine"""
    pass


class WorkflowValidationError(WorkflowError):
    """Workflow graph is malformed; rejected before a run starts"""
    def __init__(self, message: str, field: str = None):
        self.message = message
        self.field = field
        super().__init__(message)


class WorkflowExecutionError(WorkflowError):
    """Workflow execution failed"""
    pass


class ContextTypeError(WorkflowExecutionError):
    """Write to the execution context violates the declared variable schema"""
    def __init__(self, key: str, expected: str, actual: str):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(f"Context variable '{key}' must be {expected}, got {actual}")


class NodeExecutionError(WorkflowExecutionError):
    """Node execution failed"""
    def __init__(self, node_id: str, node_type: str, message: str):
        self.node_id = node_id
        self.node_type = node_type
        self.reason = message
        super().__init__(f"Node '{node_id}' ({node_type}) failed: {message}")


class QuotaExceededError(NodeExecutionError):
    """Per-user daily send quota is exhausted"""
    def __init__(self, node_id: str, node_type: str = "email"):
        super().__init__(node_id, node_type, QUOTA_EXCEEDED_MESSAGE)


class NodeTimeoutError(NodeExecutionError):
    """External collaborator call exceeded its timeout"""
    def __init__(self, node_id: str, node_type: str, operation: str, timeout: float):
        super().__init__(node_id, node_type, f"{operation} timed out after {timeout:g}s")
        self.timeout = timeout


class ProviderError(Exception):
    """Error raised by an external provider (AI, HTTP, social)"""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class TransientProviderError(ProviderError):
    """Provider failure worth retrying (429, 5xx, connection reset)"""
    pass


class RateLimitError(TransientProviderError):
    """Provider quota or rate limit hit"""
    def __init__(self, message: str = "Rate limit exceeded", status_code: Optional[int] = 429):
        super().__init__(message, status_code)


class PermanentProviderError(ProviderError):
    """Provider failure that must not be retried (403, 404, bad request)"""
    pass

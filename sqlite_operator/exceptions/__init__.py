"""
Custom exceptions for the SQLite operator.

This module defines all custom exceptions raised by the cluster store,
the desired-state builders and the reconciler.
"""
from typing import Optional, Dict, Any
from fastapi import status


class OperatorException(Exception):
    """
    Base exception for all operator errors.

    All custom exceptions should inherit from this base class.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(OperatorException):
    """
    Raised when an instance spec value cannot be used.

    Used for unsafe database names, unparsable quantities, etc.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class NotFoundError(OperatorException):
    """
    Raised when a cluster object does not exist.
    """

    def __init__(self, kind: str, namespace: str, name: str, details: Optional[Dict[str, Any]] = None):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        message = f"{kind} '{namespace}/{name}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details=details or {"kind": kind, "namespace": namespace, "name": name},
        )


class ConflictError(OperatorException):
    """
    Raised when a write loses an optimistic-concurrency race.

    The object changed between read and write; the pass must be retried.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class AlreadyOwnedError(OperatorException):
    """
    Raised when a dependent is already controlled by a different owner.
    """

    def __init__(self, kind: str, name: str, owner: str, details: Optional[Dict[str, Any]] = None):
        message = f"{kind} '{name}' is already controlled by '{owner}'"
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details or {"kind": kind, "name": name, "owner": owner},
        )


class KubernetesError(OperatorException):
    """
    Raised when Kubernetes API operations fail.

    Used for K8s API errors, connection issues, etc. ``status_code`` carries
    the API status, or 503 when the server could not be reached.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=f"Kubernetes error: {message}",
            status_code=status_code,
            details=details,
        )


# Export all exceptions
__all__ = [
    "OperatorException",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "AlreadyOwnedError",
    "KubernetesError",
]

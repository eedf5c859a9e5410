"""
Custom exceptions for the PostgreSQL cluster operator.

This module defines all custom exceptions raised by the lifecycle core so that
the reconciliation worker can tell retryable conditions from real failures.
None of them is retried internally: the next reconciliation cycle is the retry.
"""
from typing import Optional, Dict, Any


class PgClusterException(Exception):
    """
    Base exception for all operator errors.

    All custom exceptions should inherit from this base class.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(PgClusterException):
    """Raised when the operator cannot build a Kubernetes or database configuration."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=f"Configuration error: {message}", details=details)


class KubernetesError(PgClusterException):
    """
    Raised when Kubernetes API operations fail.

    Used for list/read/update failures that are not deletes.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=f"Kubernetes error: {message}", details=details)


class ProbeError(PgClusterException):
    """
    Raised when a member cannot be probed.

    Covers refused connections, timeouts, failed queries and unusable results.
    The member's status is unknown until the next cycle.
    """

    def __init__(self, member: str, reason: str, details: Optional[Dict[str, Any]] = None):
        self.member = member
        self.reason = reason
        super().__init__(
            message=f"Probe of member '{member}' failed: {reason}",
            details=details or {"member": member, "reason": reason},
        )


class DeleteError(PgClusterException):
    """
    Raised when the control API refuses a delete.

    No local state is advanced; the delete is attempted again next cycle.
    """

    def __init__(self, kind: str, name: str, reason: str, details: Optional[Dict[str, Any]] = None):
        self.kind = kind
        self.name = name
        self.reason = reason
        super().__init__(
            message=f"Cannot delete {kind} '{name}': {reason}",
            details=details or {"kind": kind, "name": name, "reason": reason},
        )


class StorageCleanupError(PgClusterException):
    """
    Raised when a member was deleted but its storage claim was not.

    The member is gone; the claim may now be orphaned until a later cycle
    or an operator removes it.
    """

    def __init__(self, name: str, reason: str, details: Optional[Dict[str, Any]] = None):
        self.name = name
        self.reason = reason
        super().__init__(
            message=f"Member '{name}' deleted but its storage claim was not: {reason}",
            details=details or {"name": name, "reason": reason},
        )


class InconsistentClusterStatusError(PgClusterException):
    """
    Raised when the status snapshot cannot back a switchover decision.

    Either fewer than two members answered, or the best promotion candidate
    claims to be a primary itself.
    """

    def __init__(self, message: str = "inconsistent cluster status", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, details=details)


class ClusterStatusConflictError(PgClusterException):
    """
    Raised when a cluster status update loses an optimistic-concurrency race.

    The cycle must be aborted and restarted from a fresh read.
    """

    def __init__(self, cluster: str, namespace: str, details: Optional[Dict[str, Any]] = None):
        self.cluster = cluster
        self.namespace = namespace
        super().__init__(
            message=f"Cluster '{namespace}/{cluster}' was modified concurrently",
            details=details or {"cluster": cluster, "namespace": namespace},
        )


# Export all exceptions
__all__ = [
    "PgClusterException",
    "ConfigurationError",
    "KubernetesError",
    "ProbeError",
    "DeleteError",
    "StorageCleanupError",
    "InconsistentClusterStatusError",
    "ClusterStatusConflictError",
]

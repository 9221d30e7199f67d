"""Error taxonomy for the reconcile pipeline.

Every error carries ``retryable`` so the scheduler can decide between
backoff-retry and dropping the key. Nothing in this package retries.
"""

from __future__ import annotations


class ReconcileError(Exception):
    """Base class for reconcile failures."""

    retryable = False


class NotFoundError(ReconcileError):
    """The requested object does not exist in the store."""

    def __init__(self, kind: str, name: str, namespace: str = "") -> None:
        where = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} '{where}' not found")
        self.kind = kind
        self.name = name
        self.namespace = namespace


class StoreUnavailableError(ReconcileError):
    """Transport or backend failure talking to a store."""

    retryable = True


class ConflictError(ReconcileError):
    """An optimistic-concurrency write was rejected (stale resourceVersion or already exists)."""

    retryable = True


class OwnershipError(ReconcileError):
    """A singly-owned object is already controlled by a different owner."""


class ReconcileStageError(ReconcileError):
    """Raised by the reconciler when a planning stage fails.

    Wraps the underlying store error so the caller knows which stage aborted
    the reconcile and whether a retry can help.
    """

    def __init__(self, stage: str, cause: Exception) -> None:
        super().__init__(f"Stage '{stage}' failed: {cause}")
        self.stage = stage
        self.cause = cause
        self.retryable = bool(getattr(cause, "retryable", False))

# src/taski_sync/core/errors.py

"""
Error taxonomy.

- StoreError: a remote store operation failed (human-readable cause in str()).
- SubscriptionError: the live query failed; terminal for that subscription.
- WriteError: a controller mutation failed; recorded as last_error, never raised.
- TaskValidationError: caller input rejected before anything is written.

"Not found locally" is not an exception: update/toggle of an id missing
from the cache is a silent no-op.
"""

from __future__ import annotations


class TaskSyncError(Exception):
    """Base class for all taski_sync errors."""


class StoreError(TaskSyncError):
    pass


class SubscriptionError(StoreError):
    pass


class WriteError(TaskSyncError):
    def __init__(self, operation: str, task_id: str | None, cause: BaseException | str) -> None:
        self.operation = operation
        self.task_id = task_id
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")


class TaskValidationError(TaskSyncError, ValueError):
    pass

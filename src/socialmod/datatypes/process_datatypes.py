"""
Execution context threaded through every manager call.

The process type tells a manager whether it runs on the interactive request
path, on the first background attempt, or on a retried background attempt.
It never changes the observable result of an operation, only the read
consistency used and how loudly retries are logged.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ProcessType(Enum):
    """Where a call originates."""

    FRONTEND = "frontend"
    BACKEND = "backend"
    BACKEND_RETRY = "backend_retry"

    def __str__(self) -> str:
        return self.value


class StorageConsistencyMode(Enum):
    """Read consistency requested from the store.

    ``DEFAULT`` reads may be served from the in-process query cache;
    ``STRONG`` reads always go to the database and refresh the cache.
    """

    DEFAULT = "default"
    STRONG = "strong"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    """Process type plus the attempt number of the current call.

    Attributes:
        process_type: Origin of the call.
        attempt: 1 for interactive calls and first background attempts,
            otherwise the queue's dequeue count.
    """

    process_type: ProcessType
    attempt: int = 1

    @classmethod
    def frontend(cls) -> "ExecutionContext":
        return cls(ProcessType.FRONTEND)

    @classmethod
    def backend(cls, dequeue_count: int = 1) -> "ExecutionContext":
        """Context for a background attempt; any dequeue after the first is a retry."""
        if dequeue_count <= 1:
            return cls(ProcessType.BACKEND, 1)
        return cls(ProcessType.BACKEND_RETRY, dequeue_count)

    @property
    def is_frontend(self) -> bool:
        return self.process_type is ProcessType.FRONTEND

    @property
    def is_retry(self) -> bool:
        return self.process_type is ProcessType.BACKEND_RETRY

    @property
    def consistency(self) -> StorageConsistencyMode:
        if self.process_type is ProcessType.FRONTEND:
            return StorageConsistencyMode.DEFAULT
        return StorageConsistencyMode.STRONG

    def __str__(self) -> str:
        return f"{self.process_type}#{self.attempt}"

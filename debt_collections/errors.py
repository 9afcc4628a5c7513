"""
Error Taxonomy Module

Typed errors raised by the collections core. Callers branch on the class,
never on the message text.
"""

from typing import Any, Dict, List, Optional


class CollectionsError(Exception):
    """Base class for every error raised by the collections core"""


class ValidationError(CollectionsError, ValueError):
    """Malformed or missing input. Caller's fault, never retried automatically."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class TaskNotFoundError(CollectionsError, LookupError):
    """No task exists with the requested id"""

    def __init__(self, task_id: str):
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class InvalidStateTransitionError(CollectionsError):
    """Attempted status change that the transition table does not allow"""

    def __init__(self, from_status: Any, to_status: Any, message: Optional[str] = None):
        from_value = getattr(from_status, "value", from_status)
        to_value = getattr(to_status, "value", to_status)
        super().__init__(message or f"Cannot transition task from '{from_value}' to '{to_value}'")
        self.from_status = from_status
        self.to_status = to_status


class NoPaymentPlanError(CollectionsError):
    """Payment recorded against a task that has no payment plan"""

    def __init__(self, task_id: str):
        super().__init__(f"Task {task_id} has no payment plan")
        self.task_id = task_id


class NegativeBalanceError(CollectionsError):
    """A subtraction would drive a tracked balance below zero"""


class PaymentExceedsBalanceError(NegativeBalanceError):
    """Payment larger than the remaining plan balance"""

    def __init__(self, requested: Any, remaining: Any):
        requested_text = requested.to_string() if hasattr(requested, "to_string") else str(requested)
        remaining_text = remaining.to_string() if hasattr(remaining, "to_string") else str(remaining)
        super().__init__(
            f"Payment of {requested_text} exceeds remaining balance of {remaining_text}"
        )
        self.requested = requested
        self.remaining = remaining


class ConcurrentModificationError(CollectionsError):
    """The task changed since it was read. Re-read and retry."""

    def __init__(self, task_id: str, expected_version: Optional[int], actual_version: Optional[int] = None):
        super().__init__(
            f"Task {task_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.task_id = task_id
        self.expected_version = expected_version
        self.actual_version = actual_version

"""
Collections Task Module

The CollectionsTask aggregate, its enums, and the status transition table.
"""

from datetime import date, datetime, timezone
from dataclasses import dataclass, field
from typing import Optional, Tuple
from enum import Enum

from .currency import Money
from .storage import StorageRecord
from .references import Reference
from .payment_plans import PaymentPlan, PaymentPlanEngine
from .communications import CommunicationRecord
from .documents import LegalDocument
from .audit import AuditEntry
from .risk import RiskLevel, EscalationRule
from .reminders import ScheduledReminder


class TaskStatus(Enum):
    """Task lifecycle status"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.CANCELLED)


class TaskPriority(Enum):
    """Task priority"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        """Sort key, higher is more urgent"""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.LOW: 0,
    TaskPriority.MEDIUM: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.URGENT: 3,
}


class CollectionsType(Enum):
    """Kind of collections work"""
    PAYMENT_REMINDER = "payment_reminder"
    OVERDUE_NOTICE = "overdue_notice"
    PAYMENT_PLAN = "payment_plan"
    NEGOTIATION = "negotiation"
    LEGAL_ACTION = "legal_action"
    OTHER = "other"


# Allowed status changes; terminal statuses have no way out
TRANSITIONS = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

MIN_ESCALATION_LEVEL = 1
MAX_ESCALATION_LEVEL = 5
MAX_PAYMENT_TERMS_LENGTH = 200


def can_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """Check the transition table"""
    return to_status in TRANSITIONS[from_status]


@dataclass
class CollectionsTask(StorageRecord):
    """
    Aggregate root for one piece of collections work.

    Callers receive snapshots; mutations go through TaskLifecycleManager,
    which works on a copy and commits it with a version check.
    """
    title: str
    description: str
    collections_type: CollectionsType
    amount: Money
    due_date: date
    assigned_to: Reference
    assigned_by: Reference
    customer: Reference
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    risk_level: RiskLevel = RiskLevel.MEDIUM
    escalation_level: int = MIN_ESCALATION_LEVEL
    payment_terms: Optional[str] = None
    payment_plan: Optional[PaymentPlan] = None
    communication_history: Tuple[CommunicationRecord, ...] = field(default_factory=tuple)
    legal_documents: Tuple[LegalDocument, ...] = field(default_factory=tuple)
    audit_trail: Tuple[AuditEntry, ...] = field(default_factory=tuple)
    escalation_rules: Tuple[EscalationRule, ...] = field(default_factory=tuple)
    last_contact_date: Optional[datetime] = None
    next_contact_date: Optional[date] = None
    auto_escalate: bool = True
    reminder_count: int = 0
    max_reminders: int = 5
    last_reminder_date: Optional[datetime] = None
    next_reminder_date: Optional[datetime] = None
    reminders: Tuple[ScheduledReminder, ...] = field(default_factory=tuple)
    completed_at: Optional[datetime] = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def balance_remaining(self) -> Money:
        """Remaining plan balance, or the full amount when there is no plan"""
        if self.payment_plan is None:
            return self.amount
        return PaymentPlanEngine().remaining_balance(self.payment_plan)

    def is_overdue(self, as_of: Optional[date] = None) -> bool:
        """Past due and still open"""
        as_of = as_of or datetime.now(timezone.utc).date()
        return not self.is_terminal and self.due_date < as_of

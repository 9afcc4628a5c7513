"""
Communication Log Module

Append-only record of contact attempts made on a collections task.
There is deliberately no update or delete: a wrong entry is corrected by
appending a new one, so the trail stays legally defensible.
"""

from datetime import date, datetime, timezone
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence
from enum import Enum
import logging
import uuid

from .audit import AuditAction, AuditTrailRecorder
from .errors import ValidationError

logger = logging.getLogger("debt_collections.communications")


class CommunicationMethod(Enum):
    """Channel used for the contact attempt"""
    PHONE = "phone"
    EMAIL = "email"
    SMS = "sms"
    IN_PERSON = "in_person"
    LETTER = "letter"


class CommunicationDirection(Enum):
    """Who initiated the contact"""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class CommunicationOutcome(Enum):
    """Result of the contact attempt"""
    NO_ANSWER = "no_answer"
    LEFT_MESSAGE = "left_message"
    SPOKE_TO_CUSTOMER = "spoke_to_customer"
    PAYMENT_PROMISED = "payment_promised"
    PAYMENT_MADE = "payment_made"
    REFUSED = "refused"
    OTHER = "other"


# Outcomes that count as failing to reach or persuade the customer
UNREACHABLE_OUTCOMES = frozenset({CommunicationOutcome.NO_ANSWER, CommunicationOutcome.REFUSED})


@dataclass(frozen=True)
class CommunicationRecord:
    """A single contact attempt. Immutable once appended."""
    method: CommunicationMethod
    direction: CommunicationDirection
    date: datetime
    summary: str
    outcome: CommunicationOutcome
    next_action: Optional[str] = None
    next_action_date: Optional[date] = None
    performed_by: Optional[str] = None
    id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'method': self.method.value,
            'direction': self.direction.value,
            'date': self.date.isoformat(),
            'summary': self.summary,
            'outcome': self.outcome.value,
            'next_action': self.next_action,
            'next_action_date': self.next_action_date.isoformat() if self.next_action_date else None,
            'performed_by': self.performed_by
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CommunicationRecord':
        next_action_date = None
        if data.get('next_action_date'):
            next_action_date = date.fromisoformat(data['next_action_date'])

        return cls(
            id=data.get('id', ''),
            method=CommunicationMethod(data['method']),
            direction=CommunicationDirection(data['direction']),
            date=datetime.fromisoformat(data['date']),
            summary=data['summary'],
            outcome=CommunicationOutcome(data['outcome']),
            next_action=data.get('next_action'),
            next_action_date=next_action_date,
            performed_by=data.get('performed_by')
        )

    def to_snapshot(self) -> Dict[str, Any]:
        return self.to_dict()


def _coerce_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(
            f"Invalid {field_name} '{value}'; expected one of: {allowed}",
            errors=[{'field': field_name, 'value': value}]
        )


def build_record(
    method,
    direction,
    summary: str,
    outcome,
    date: Optional[datetime] = None,
    next_action: Optional[str] = None,
    next_action_date: Optional[date] = None,
    performed_by: Optional[str] = None
) -> CommunicationRecord:
    """
    Validate raw communication input and build a CommunicationRecord

    Raises:
        ValidationError: If summary is blank or an enum value is unknown
    """
    if summary is None or not str(summary).strip():
        raise ValidationError("Communication summary is required",
                              errors=[{'field': 'summary'}])

    contact_date = date or datetime.now(timezone.utc)
    if not isinstance(contact_date, datetime):
        contact_date = datetime(contact_date.year, contact_date.month, contact_date.day)
    if contact_date.tzinfo is None:
        contact_date = contact_date.replace(tzinfo=timezone.utc)
    if isinstance(next_action_date, datetime):
        next_action_date = next_action_date.date()

    return CommunicationRecord(
        id=str(uuid.uuid4()),
        method=_coerce_enum(CommunicationMethod, method, 'method'),
        direction=_coerce_enum(CommunicationDirection, direction, 'direction'),
        date=contact_date,
        summary=str(summary).strip(),
        outcome=_coerce_enum(CommunicationOutcome, outcome, 'outcome'),
        next_action=next_action,
        next_action_date=next_action_date,
        performed_by=performed_by
    )


def recent_outcomes(history: Sequence[CommunicationRecord], count: int) -> List[CommunicationOutcome]:
    """Outcomes of the ``count`` most recent records, newest first"""
    # sorted() is stable, so records sharing a timestamp keep append order
    ordered = sorted(enumerate(history), key=lambda item: (item[1].date, item[0]), reverse=True)
    return [record.outcome for _, record in ordered[:count]]


class CommunicationLog:
    """Appends communication records to a task's history"""

    def __init__(self, audit_recorder: AuditTrailRecorder):
        self.audit_recorder = audit_recorder

    def append_communication(self, task, record: CommunicationRecord, performed_by: str) -> CommunicationRecord:
        """
        Append a communication record to the task (a working copy)

        Updates last_contact_date and, when the record carries a follow-up
        hint, pulls next_contact_date forward to the earliest known hint.

        Raises:
            ValidationError: If the record fails validation
        """
        # Records built elsewhere still go through validation
        validated = build_record(
            method=record.method,
            direction=record.direction,
            summary=record.summary,
            outcome=record.outcome,
            date=record.date,
            next_action=record.next_action,
            next_action_date=record.next_action_date,
            performed_by=record.performed_by or performed_by
        )
        if record.id:
            validated = replace(validated, id=record.id)
        record = validated

        previous_last_contact = task.last_contact_date
        task.communication_history = tuple(task.communication_history) + (record,)
        task.last_contact_date = record.date

        if record.next_action_date:
            if task.next_contact_date is None or record.next_action_date < task.next_contact_date:
                task.next_contact_date = record.next_action_date

        self.audit_recorder.record(
            task,
            AuditAction.COMMUNICATION_ADDED,
            f"{record.direction.value.capitalize()} {record.method.value} contact: {record.outcome.value}",
            performed_by,
            previous_value=previous_last_contact,
            new_value=record,
            field='communication_history'
        )

        logger.debug("Communication %s appended to task %s", record.id, task.id)
        return record

"""
Audit Trail Module

Hash-chained, append-only audit log kept on each collections task.
Every mutation of a task passes through AuditTrailRecorder.record, which
appends an AuditEntry whose SHA-256 hash covers the previous entry's hash,
so any edit or removal of a past entry is detectable.
"""

import hashlib
import json
from datetime import datetime, date, timezone
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Optional
from enum import Enum
from decimal import Decimal
import uuid


class AuditAction(Enum):
    """Machine-readable audit actions"""
    # Task events
    TASK_CREATED = "task_created"
    FIELD_UPDATED = "field_updated"
    STATUS_CHANGED = "status_changed"

    # Communication events
    COMMUNICATION_ADDED = "communication_added"

    # Payment plan events
    PAYMENT_RECORDED = "payment_recorded"
    PLAN_COMPLETED = "plan_completed"

    # Risk and escalation events
    RISK_RECLASSIFIED = "risk_reclassified"
    ESCALATED = "escalated"
    DEESCALATED = "deescalated"
    ESCALATION_RULE_ADDED = "escalation_rule_added"
    ESCALATION_RULE_EXECUTED = "escalation_rule_executed"

    # Reminder events
    REMINDER_SCHEDULED = "reminder_scheduled"
    REMINDER_SENT = "reminder_sent"
    REMINDER_FAILED = "reminder_failed"
    REMINDER_CANCELLED = "reminder_cancelled"

    # Legal document events
    DOCUMENT_UPLOADED = "document_uploaded"
    DOCUMENT_ARCHIVED = "document_archived"


def to_snapshot(value: Any) -> Any:
    """Convert a field value to a JSON-serializable snapshot"""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, 'to_snapshot'):
        return value.to_snapshot()
    if isinstance(value, dict):
        return {str(k): to_snapshot(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_snapshot(v) for v in value]
    return str(value)


@dataclass(frozen=True)
class AuditEntry:
    """
    Immutable audit entry with hash chaining for tamper detection
    """
    id: str
    action: str
    description: str
    performed_by: str
    performed_at: datetime
    previous_value: Any = None
    new_value: Any = None
    field: Optional[str] = None  # Name of the mutated field, when there is one
    previous_hash: str = ""
    entry_hash: str = ""

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this entry.
        Hash includes all fields except entry_hash.
        """
        hash_data = {
            'id': self.id,
            'action': self.action,
            'description': self.description,
            'performed_by': self.performed_by,
            'performed_at': self.performed_at.isoformat(),
            'previous_value': self.previous_value,
            'new_value': self.new_value,
            'field': self.field,
            'previous_hash': self.previous_hash
        }

        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the stored hash is correct"""
        return self.entry_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'action': self.action,
            'description': self.description,
            'performed_by': self.performed_by,
            'performed_at': self.performed_at.isoformat(),
            'previous_value': self.previous_value,
            'new_value': self.new_value,
            'field': self.field,
            'previous_hash': self.previous_hash,
            'entry_hash': self.entry_hash
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEntry':
        return cls(
            id=data['id'],
            action=data['action'],
            description=data.get('description', ''),
            performed_by=data['performed_by'],
            performed_at=datetime.fromisoformat(data['performed_at']),
            previous_value=data.get('previous_value'),
            new_value=data.get('new_value'),
            field=data.get('field'),
            previous_hash=data.get('previous_hash', ''),
            entry_hash=data.get('entry_hash', '')
        )


class AuditTrailRecorder:
    """
    Single choke point for appending audit entries to a task.

    The recorder never touches storage; entries become durable when the
    owning task commits.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        """Server-assigned timestamp"""
        return self._clock()

    def record(
        self,
        task,
        action: AuditAction,
        description: str,
        performed_by: str,
        previous_value: Any = None,
        new_value: Any = None,
        field: Optional[str] = None
    ) -> AuditEntry:
        """
        Append an audit entry to ``task.audit_trail``

        Args:
            task: CollectionsTask being mutated (a working copy)
            action: Audit action tag
            description: Human-readable description
            performed_by: Staff reference id of the actor
            previous_value: Snapshot of the value before the change
            new_value: Snapshot of the value after the change
            field: Name of the changed field

        Returns:
            The appended AuditEntry
        """
        trail = task.audit_trail
        previous_hash = trail[-1].entry_hash if trail else ""

        entry = AuditEntry(
            id=str(uuid.uuid4()),
            action=action.value if isinstance(action, AuditAction) else str(action),
            description=description,
            performed_by=performed_by,
            performed_at=self.now(),
            previous_value=to_snapshot(previous_value),
            new_value=to_snapshot(new_value),
            field=field,
            previous_hash=previous_hash
        )
        entry = _with_hash(entry)

        task.audit_trail = tuple(trail) + (entry,)
        return entry

    @staticmethod
    def verify_integrity(task) -> Dict[str, Any]:
        """
        Verify the integrity of a task's audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_entries': len(task.audit_trail),
            'hash_errors': [],
            'chain_breaks': []
        }

        previous_hash = ""
        for position, entry in enumerate(task.audit_trail):
            if not entry.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'entry_id': entry.id,
                    'position': position,
                    'expected_hash': entry.calculate_hash(),
                    'actual_hash': entry.entry_hash
                })
            if entry.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'entry_id': entry.id,
                    'position': position,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': entry.previous_hash
                })
            previous_hash = entry.entry_hash

        return result


def _with_hash(entry: AuditEntry) -> AuditEntry:
    return replace(entry, entry_hash=entry.calculate_hash())

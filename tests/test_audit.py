"""
Test suite for audit module

Tests hash-chained audit entries, value snapshots, tamper detection
and integrity verification on a task's trail.
"""

import pytest
from dataclasses import replace
from datetime import datetime, timezone, date, timedelta
from decimal import Decimal
from types import SimpleNamespace

from debt_collections.audit import (
    AuditAction, AuditEntry, AuditTrailRecorder, to_snapshot
)
from debt_collections.references import Reference
from debt_collections.risk import RiskLevel


FIXED_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_task():
    return SimpleNamespace(id="task-1", audit_trail=())


class TestSnapshots:
    """Test conversion of values to JSON-safe snapshots"""

    def test_scalar_snapshots(self):
        assert to_snapshot(Decimal('10.50')) == '10.50'
        assert to_snapshot(date(2024, 1, 31)) == '2024-01-31'
        assert to_snapshot(RiskLevel.HIGH) == 'high'
        assert to_snapshot(Reference("cust-1")) == 'cust-1'
        assert to_snapshot(None) is None
        assert to_snapshot(3) == 3

    def test_nested_snapshots(self):
        snapshot = to_snapshot({'amount': Decimal('1.00'), 'levels': (RiskLevel.LOW, RiskLevel.CRITICAL)})
        assert snapshot == {'amount': '1.00', 'levels': ['low', 'critical']}

    def test_unknown_objects_fall_back_to_str(self):
        class Opaque:
            def __str__(self):
                return "opaque"

        assert to_snapshot(Opaque()) == "opaque"


class TestAuditTrailRecorder:
    """Test appending entries to a task's trail"""

    def setup_method(self):
        """Set up test fixtures"""
        self.recorder = AuditTrailRecorder(clock=lambda: FIXED_NOW)

    def test_record_appends_entry(self):
        """Entries are appended with server timestamps and hashes"""
        task = make_task()
        entry = self.recorder.record(
            task, AuditAction.FIELD_UPDATED, "Updated priority", "staff-1",
            previous_value="low", new_value="high", field="priority"
        )

        assert task.audit_trail == (entry,)
        assert entry.action == "field_updated"
        assert entry.performed_at == FIXED_NOW
        assert entry.performed_by == "staff-1"
        assert entry.field == "priority"
        assert entry.previous_hash == ""
        assert entry.verify_hash()

    def test_entries_chain(self):
        """Each entry hashes over the previous entry's hash"""
        task = make_task()
        first = self.recorder.record(task, AuditAction.TASK_CREATED, "Created", "staff-1")
        second = self.recorder.record(task, AuditAction.ESCALATED, "Escalated", "staff-1",
                                      previous_value=1, new_value=2)

        assert second.previous_hash == first.entry_hash
        assert len(task.audit_trail) == 2
        assert self.recorder.verify_integrity(task)['valid'] is True

    def test_prior_entries_are_not_mutated(self):
        task = make_task()
        first = self.recorder.record(task, AuditAction.TASK_CREATED, "Created", "staff-1")
        self.recorder.record(task, AuditAction.ESCALATED, "Escalated", "staff-1")

        assert task.audit_trail[0] is first
        with pytest.raises(AttributeError):
            first.description = "changed"

    def test_tampering_is_detected(self):
        """Editing or removing an entry breaks verification"""
        task = make_task()
        self.recorder.record(task, AuditAction.TASK_CREATED, "Created", "staff-1")
        self.recorder.record(task, AuditAction.ESCALATED, "Escalated", "staff-1", new_value=2)
        self.recorder.record(task, AuditAction.ESCALATED, "Escalated", "staff-1", new_value=3)

        edited = replace(task.audit_trail[1], new_value=5)
        task.audit_trail = (task.audit_trail[0], edited, task.audit_trail[2])
        result = self.recorder.verify_integrity(task)
        assert result['valid'] is False
        assert result['hash_errors'][0]['position'] == 1

        original = make_task()
        self.recorder.record(original, AuditAction.TASK_CREATED, "Created", "staff-1")
        self.recorder.record(original, AuditAction.ESCALATED, "Escalated", "staff-1")
        original.audit_trail = original.audit_trail[1:]
        result = self.recorder.verify_integrity(original)
        assert result['valid'] is False
        assert len(result['chain_breaks']) == 1

    def test_round_trip_keeps_hash_valid(self):
        task = make_task()
        entry = self.recorder.record(
            task, AuditAction.PAYMENT_RECORDED, "Payment", "staff-1",
            new_value={'total_paid': Decimal('100.00'), 'next_payment_date': date(2024, 2, 1)}
        )

        restored = AuditEntry.from_dict(entry.to_dict())
        assert restored == entry
        assert restored.verify_hash()

    def test_default_clock_is_utc(self):
        recorder = AuditTrailRecorder()
        now = recorder.now()
        assert now.tzinfo is not None
        assert abs(datetime.now(timezone.utc) - now) < timedelta(seconds=5)

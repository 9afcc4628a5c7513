"""
Risk & Escalation Module

Recommends a risk level from how overdue a task is and how its recent
contact attempts went, and models the time-triggered escalation rules that
can be attached to a task.
"""

from datetime import date, datetime
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence
from enum import Enum

from .communications import CommunicationRecord, UNREACHABLE_OUTCOMES, recent_outcomes


class RiskLevel(Enum):
    """Risk classification, ordered from least to most severe"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    def upgraded(self) -> 'RiskLevel':
        """One level up, capped at CRITICAL"""
        return _RISK_ORDER[min(self.rank + 1, len(_RISK_ORDER) - 1)]


_RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


def days_overdue(due_date: date, today: date) -> int:
    """Whole days past the due date, never negative"""
    return max(0, (today - due_date).days)


class RiskClassifier:
    """
    Advisory risk classifier.

    Only recommends a level; applying it is an explicit, audited action on
    the lifecycle manager. Never touches escalation_level.
    """

    def __init__(
        self,
        medium_days: int = 1,
        high_days: int = 15,
        critical_days: int = 46,
        upgrade_window: int = 3
    ):
        if not (0 < medium_days <= high_days <= critical_days):
            raise ValueError("Risk thresholds must satisfy 0 < medium <= high <= critical")
        self.medium_days = medium_days
        self.high_days = high_days
        self.critical_days = critical_days
        self.upgrade_window = upgrade_window

    @classmethod
    def from_config(cls, config) -> 'RiskClassifier':
        return cls(
            medium_days=config.risk_medium_days,
            high_days=config.risk_high_days,
            critical_days=config.risk_critical_days,
            upgrade_window=config.risk_upgrade_window
        )

    def level_for_days(self, overdue_days: int) -> RiskLevel:
        if overdue_days >= self.critical_days:
            return RiskLevel.CRITICAL
        elif overdue_days >= self.high_days:
            return RiskLevel.HIGH
        elif overdue_days >= self.medium_days:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def is_unreachable(self, communication_history: Sequence[CommunicationRecord]) -> bool:
        """True when the most recent attempts all failed to get through"""
        if self.upgrade_window < 1:
            return False
        outcomes = recent_outcomes(communication_history, self.upgrade_window)
        return (
            len(outcomes) == self.upgrade_window
            and all(outcome in UNREACHABLE_OUTCOMES for outcome in outcomes)
        )

    def recommend(
        self,
        due_date: date,
        communication_history: Sequence[CommunicationRecord],
        today: date
    ) -> RiskLevel:
        """
        Recommend a risk level

        Args:
            due_date: Task due date
            communication_history: Task communication records
            today: Evaluation date

        Returns:
            Recommended RiskLevel
        """
        level = self.level_for_days(days_overdue(due_date, today))
        if self.is_unreachable(communication_history):
            level = level.upgraded()
        return level


class EscalationAction(Enum):
    """Action taken when an escalation rule fires"""
    NOTIFY_MANAGER = "notify_manager"
    CHANGE_PRIORITY = "change_priority"
    ASSIGN_TO_SPECIALIST = "assign_to_specialist"
    LEGAL_REVIEW = "legal_review"


@dataclass(frozen=True)
class EscalationRule:
    """Rule that fires once a task is trigger_days overdue"""
    trigger_days: int
    action: EscalationAction
    executed: bool = False
    executed_at: Optional[datetime] = None
    executed_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trigger_days': self.trigger_days,
            'action': self.action.value,
            'executed': self.executed,
            'executed_at': self.executed_at.isoformat() if self.executed_at else None,
            'executed_by': self.executed_by
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EscalationRule':
        executed_at = None
        if data.get('executed_at'):
            executed_at = datetime.fromisoformat(data['executed_at'])
        return cls(
            trigger_days=data['trigger_days'],
            action=EscalationAction(data['action']),
            executed=data.get('executed', False),
            executed_at=executed_at,
            executed_by=data.get('executed_by')
        )

    def to_snapshot(self) -> Dict[str, Any]:
        return self.to_dict()


def due_escalation_rule(task, today: date) -> Optional[int]:
    """
    Index of the first unexecuted rule that should fire today, or None

    Rules never fire on terminal tasks or when auto_escalate is off.
    """
    if not task.auto_escalate or task.is_terminal:
        return None

    overdue = days_overdue(task.due_date, today)
    for index, rule in enumerate(task.escalation_rules):
        if not rule.executed and overdue >= rule.trigger_days:
            return index
    return None

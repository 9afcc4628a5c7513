"""
Reminder Scheduler Module

Outbound boundary for reminder delivery. The collections core only asks for
a reminder to be scheduled; transport (email, SMS, phone dialer) belongs to
whatever sits behind the scheduler.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
from enum import Enum
import logging
import uuid

import httpx

logger = logging.getLogger("debt_collections.reminders")


class ReminderChannel(Enum):
    """Channels a reminder can be delivered over"""
    EMAIL = "email"
    SMS = "sms"
    PHONE = "phone"
    LETTER = "letter"
    IN_APP = "in_app"


class ReminderStatus(Enum):
    """Delivery state of a scheduled reminder"""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ScheduledReminder:
    """A reminder the task asked for. Replaced, never edited, as it moves on."""
    id: str
    channel: ReminderChannel
    scheduled_for: datetime
    template_ref: str
    recipient: str
    status: ReminderStatus = ReminderStatus.PENDING
    sent_at: Optional[datetime] = None
    message: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == ReminderStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'channel': self.channel.value,
            'scheduled_for': self.scheduled_for.isoformat(),
            'template_ref': self.template_ref,
            'recipient': self.recipient,
            'status': self.status.value,
            'sent_at': self.sent_at.isoformat() if self.sent_at else None,
            'message': self.message,
            'error_message': self.error_message
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScheduledReminder':
        return cls(
            id=data['id'],
            channel=ReminderChannel(data['channel']),
            scheduled_for=datetime.fromisoformat(data['scheduled_for']),
            template_ref=data['template_ref'],
            recipient=data['recipient'],
            status=ReminderStatus(data.get('status', ReminderStatus.PENDING.value)),
            sent_at=datetime.fromisoformat(data['sent_at']) if data.get('sent_at') else None,
            message=data.get('message'),
            error_message=data.get('error_message')
        )

    def to_snapshot(self) -> Dict[str, Any]:
        return self.to_dict()


class ReminderScheduler(ABC):
    """Abstract reminder scheduler"""

    @abstractmethod
    def schedule_reminder(
        self,
        task_id: str,
        channel: ReminderChannel,
        when_utc: datetime,
        template_ref: str,
        recipient: Optional[str] = None
    ) -> str:
        """
        Schedule a reminder for delivery

        Returns:
            Scheduler-assigned reminder id
        """
        pass


class LogReminderScheduler(ReminderScheduler):
    """Scheduler that only logs reminders (default, and for testing)"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("debt_collections.reminders.log")
        self.scheduled: List[dict] = []

    def schedule_reminder(self, task_id, channel, when_utc, template_ref, recipient=None) -> str:
        reminder_id = str(uuid.uuid4())
        self.scheduled.append({
            'id': reminder_id,
            'task_id': task_id,
            'channel': channel.value,
            'when_utc': when_utc.isoformat(),
            'template_ref': template_ref,
            'recipient': recipient
        })
        self.logger.info(
            f"REMINDER [{channel.value}] task={task_id} at={when_utc.isoformat()} "
            f"template={template_ref} recipient={recipient}"
        )
        return reminder_id


class WebhookReminderScheduler(ReminderScheduler):
    """Posts reminder requests to an external scheduling service"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 2.0,  # keep short, reminders are fire-and-forget
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self._client = client or httpx.Client(timeout=timeout)

    def schedule_reminder(self, task_id, channel, when_utc, template_ref, recipient=None) -> str:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        response = self._client.post(
            f"{self.base_url}/reminders",
            json={
                "task_id": task_id,
                "channel": channel.value,
                "when_utc": when_utc.isoformat(),
                "template_ref": template_ref,
                "recipient": recipient
            },
            headers=headers
        )
        response.raise_for_status()

        data = response.json() if response.content else {}
        return data.get("id", "")

    def close(self):
        """Close the HTTP client"""
        self._client.close()


def build_scheduler(config) -> ReminderScheduler:
    """Webhook scheduler when a URL is configured, log scheduler otherwise"""
    if config.reminder_webhook_url:
        return WebhookReminderScheduler(
            base_url=config.reminder_webhook_url,
            timeout=config.reminder_timeout,
            api_key=config.reminder_api_key or None
        )
    return LogReminderScheduler()


def dispatch_reminder(
    scheduler: ReminderScheduler,
    task_id: str,
    channel: ReminderChannel,
    when_utc: datetime,
    template_ref: str,
    recipient: Optional[str] = None
) -> Optional[str]:
    """
    Call the scheduler without letting its failures reach the caller

    Returns:
        Reminder id, or None if the scheduler failed
    """
    try:
        return scheduler.schedule_reminder(task_id, channel, when_utc, template_ref, recipient)
    except Exception as e:
        logger.error(f"Reminder scheduling failed for task {task_id} ({template_ref}): {e}")
        return None

"""
Tests for reminder schedulers
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import Mock, patch
import httpx

from debt_collections.config import CollectionsConfig
from debt_collections.reminders import (
    LogReminderScheduler, ReminderChannel, ReminderStatus, ScheduledReminder, WebhookReminderScheduler,
    build_scheduler, dispatch_reminder
)


WHEN = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


class TestLogReminderScheduler:
    """Test the logging scheduler"""

    def test_schedule_is_recorded(self):
        scheduler = LogReminderScheduler()
        reminder_id = scheduler.schedule_reminder("task-1", ReminderChannel.SMS, WHEN, "payment_reminder", "cust-1")

        assert reminder_id
        assert scheduler.scheduled == [{
            'id': reminder_id,
            'task_id': "task-1",
            'channel': "sms",
            'when_utc': WHEN.isoformat(),
            'template_ref': "payment_reminder",
            'recipient': "cust-1"
        }]


class TestWebhookReminderScheduler:
    """Test the HTTP scheduler"""

    def setup_method(self):
        """Set up test fixtures"""
        self.scheduler = WebhookReminderScheduler("http://reminders.local/", timeout=1.0, api_key="secret")

    def teardown_method(self):
        self.scheduler.close()

    @patch('httpx.Client.post')
    def test_successful_schedule(self, mock_post):
        mock_response = Mock()
        mock_response.content = b'{"id": "rem-1"}'
        mock_response.json.return_value = {"id": "rem-1"}
        mock_response.raise_for_status.return_value = None
        mock_post.return_value = mock_response

        reminder_id = self.scheduler.schedule_reminder(
            "task-1", ReminderChannel.EMAIL, WHEN, "installment_due", "cust-1"
        )

        assert reminder_id == "rem-1"
        args, kwargs = mock_post.call_args
        assert args[0] == "http://reminders.local/reminders"
        assert kwargs["json"] == {
            "task_id": "task-1",
            "channel": "email",
            "when_utc": WHEN.isoformat(),
            "template_ref": "installment_due",
            "recipient": "cust-1"
        }
        assert kwargs["headers"] == {"Authorization": "Bearer secret"}

    @patch('httpx.Client.post')
    def test_http_error_raises(self, mock_post):
        mock_post.side_effect = httpx.ConnectError("Connection failed")

        with pytest.raises(httpx.ConnectError):
            self.scheduler.schedule_reminder("task-1", ReminderChannel.EMAIL, WHEN, "installment_due")


class TestDispatchReminder:
    """Failures never reach the caller"""

    def test_returns_id_on_success(self):
        scheduler = LogReminderScheduler()
        assert dispatch_reminder(scheduler, "task-1", ReminderChannel.PHONE, WHEN, "follow_up") is not None

    def test_failure_is_logged_not_raised(self, caplog):
        scheduler = Mock()
        scheduler.schedule_reminder.side_effect = httpx.ConnectError("Connection failed")

        with caplog.at_level("ERROR", logger="debt_collections.reminders"):
            result = dispatch_reminder(scheduler, "task-1", ReminderChannel.EMAIL, WHEN, "follow_up")

        assert result is None
        assert "Reminder scheduling failed for task task-1" in caplog.text


class TestBuildScheduler:
    """Scheduler selection from configuration"""

    def test_log_scheduler_by_default(self):
        assert isinstance(build_scheduler(CollectionsConfig(reminder_webhook_url="")), LogReminderScheduler)

    def test_webhook_scheduler_when_url_configured(self):
        scheduler = build_scheduler(CollectionsConfig(
            reminder_webhook_url="http://reminders.local", reminder_timeout=3.5, reminder_api_key=""
        ))

        assert isinstance(scheduler, WebhookReminderScheduler)
        assert scheduler.base_url == "http://reminders.local"
        assert scheduler.timeout == 3.5
        assert scheduler.api_key is None
        scheduler.close()


class TestScheduledReminder:
    """Test the reminder record kept on a task"""

    def test_defaults_to_pending(self):
        reminder = ScheduledReminder("r-1", ReminderChannel.EMAIL, WHEN, "payment_reminder", "cust-1")
        assert reminder.status == ReminderStatus.PENDING
        assert reminder.is_pending
        assert reminder.sent_at is None

    def test_failed_reminder_survives_storage(self):
        reminder = ScheduledReminder(
            "r-1", ReminderChannel.SMS, WHEN, "payment_reminder", "cust-1",
            status=ReminderStatus.FAILED, sent_at=WHEN, error_message="Unknown number"
        )
        data = reminder.to_dict()

        assert data['status'] == "failed"
        assert data['sent_at'] == WHEN.isoformat()
        assert ScheduledReminder.from_dict(data) == reminder
        assert not ScheduledReminder.from_dict(data).is_pending

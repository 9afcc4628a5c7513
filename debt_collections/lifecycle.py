"""
Task Lifecycle Module

TaskLifecycleManager is the single entry point callers use to create and
mutate collections tasks. Every mutating operation:

1. reads a fresh snapshot of the task from storage,
2. works on that private copy (the caller's object is never touched),
3. appends audit entries for whatever changed,
4. commits one record with a version check.

Reminder calls go out only after the commit and never fail the operation.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime, timezone, date, time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
import logging
import uuid

from .currency import Money, Currency
from .errors import (
    ValidationError, TaskNotFoundError, InvalidStateTransitionError,
    NoPaymentPlanError, ConcurrentModificationError
)
from .storage import StorageInterface
from .config import CollectionsConfig, get_config
from .logging_config import log_action
from .references import Reference, as_reference
from .audit import AuditAction, AuditEntry, AuditTrailRecorder
from .communications import (
    CommunicationLog, CommunicationMethod, CommunicationRecord
)
from .payment_plans import PaymentPlan, PaymentPlanEngine, ScheduledInstallment
from .risk import RiskLevel, RiskClassifier, EscalationAction, EscalationRule, due_escalation_rule
from .documents import (
    DocumentStore, DocumentStatus, DocumentType, InMemoryDocumentStore, LegalDocument
)
from .reminders import (
    ReminderChannel, ReminderScheduler, ReminderStatus, ScheduledReminder, build_scheduler, dispatch_reminder
)
from .schemas import (
    CreateTaskRequest, UpdateTaskRequest, CommunicationRequest, EscalationRuleRequest,
    MoneyModel, NULLABLE_UPDATE_FIELDS, parse_model
)
from .tasks import (
    CollectionsTask, CollectionsType, TaskPriority, TaskStatus,
    can_transition, MIN_ESCALATION_LEVEL, MAX_ESCALATION_LEVEL
)


TaskRef = Union[str, CollectionsTask]

# Order in which patched fields are applied (and audited)
UPDATABLE_FIELDS = (
    'title', 'description', 'collections_type', 'due_date', 'assigned_to',
    'priority', 'payment_terms', 'risk_level', 'escalation_level', 'auto_escalate'
)

# Reminder channel used for follow-ups on each contact method
FOLLOW_UP_CHANNELS = {
    CommunicationMethod.PHONE: ReminderChannel.PHONE,
    CommunicationMethod.EMAIL: ReminderChannel.EMAIL,
    CommunicationMethod.SMS: ReminderChannel.SMS,
    CommunicationMethod.LETTER: ReminderChannel.LETTER,
    CommunicationMethod.IN_PERSON: ReminderChannel.IN_APP,
}

# Aging buckets by days past due; the last one is open-ended
AGING_BUCKETS = (
    ('current', 0),
    ('1-30', 30),
    ('31-60', 60),
    ('61-90', 90),
    ('91-120', 120),
    ('over_120', None),
)

HIGH_RISK_LEVELS = (RiskLevel.HIGH, RiskLevel.CRITICAL)


@dataclass
class TaskQuery:
    """Explicit filter and pagination state for list_tasks"""
    assigned_to: Optional[str] = None
    customer: Optional[str] = None
    status: Optional[Union[str, TaskStatus]] = None
    risk_level: Optional[Union[str, RiskLevel]] = None
    collections_type: Optional[Union[str, CollectionsType]] = None
    overdue_only: bool = False
    as_of: Optional[date] = None
    page: int = 1
    page_size: int = 20


@dataclass
class TaskPage:
    """One page of list_tasks results"""
    items: List[CollectionsTask]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


class TaskLifecycleManager:
    """Manager for collections tasks"""

    def __init__(
        self,
        storage: StorageInterface,
        config: Optional[CollectionsConfig] = None,
        plan_engine: Optional[PaymentPlanEngine] = None,
        risk_classifier: Optional[RiskClassifier] = None,
        audit_recorder: Optional[AuditTrailRecorder] = None,
        reminder_scheduler: Optional[ReminderScheduler] = None,
        document_store: Optional[DocumentStore] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.config = config or get_config()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.plan_engine = plan_engine or PaymentPlanEngine(Decimal(self.config.payment_plan_tolerance))
        self.risk_classifier = risk_classifier or RiskClassifier.from_config(self.config)
        self.audit_recorder = audit_recorder or AuditTrailRecorder(clock=self._clock)
        self.communication_log = CommunicationLog(self.audit_recorder)
        self.reminder_scheduler = reminder_scheduler or build_scheduler(self.config)
        self.document_store = document_store or InMemoryDocumentStore()

        self.tasks_table = "collections_tasks"
        self.logger = logging.getLogger("debt_collections.lifecycle")

    # Task creation and updates

    def create_task(self, data: Union[Dict[str, Any], CreateTaskRequest], performed_by: str) -> CollectionsTask:
        """
        Create a new collections task

        Args:
            data: Task payload (dict with snake_case or camelCase keys, or a CreateTaskRequest)
            performed_by: Staff id of the creator

        Returns:
            The committed task

        Raises:
            ValidationError: Missing or invalid fields, amount <= 0, or an invalid payment plan
        """
        performed_by = self._actor(performed_by)
        request = parse_model(CreateTaskRequest, data)

        amount = request.amount.to_money(self.config.default_currency)
        if not amount.is_positive():
            raise ValidationError("Task amount must be positive",
                                  errors=[{'field': 'amount', 'value': str(amount.amount)}])

        payment_plan = None
        if request.payment_plan is not None:
            if request.collections_type != CollectionsType.PAYMENT_PLAN:
                raise ValidationError(
                    "A payment plan can only be attached to a payment_plan task",
                    errors=[{'field': 'payment_plan'}]
                )
            payment_plan = self._build_plan(request, amount)

        now = self._now()
        task = CollectionsTask(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            title=request.title,
            description=request.description or "",
            collections_type=request.collections_type,
            amount=amount,
            due_date=request.due_date,
            assigned_to=request.assigned_to,
            assigned_by=request.assigned_by or as_reference(performed_by, 'performed_by'),
            customer=request.customer,
            priority=request.priority,
            status=TaskStatus.PENDING,
            risk_level=request.risk_level,
            escalation_level=request.escalation_level,
            payment_terms=request.payment_terms,
            payment_plan=payment_plan,
            escalation_rules=tuple(rule.to_rule() for rule in request.escalation_rules),
            auto_escalate=request.auto_escalate,
            max_reminders=(
                request.max_reminders if request.max_reminders is not None else self.config.max_reminders
            ),
            version=0
        )

        self.audit_recorder.record(
            task,
            AuditAction.TASK_CREATED,
            f"Task created: {task.title}",
            performed_by,
            new_value={
                'title': task.title,
                'collections_type': task.collections_type,
                'amount': task.amount.amount,
                'currency': task.amount.currency.code,
                'due_date': task.due_date,
                'customer': task.customer,
                'assigned_to': task.assigned_to,
                'payment_plan': task.payment_plan
            }
        )

        self._commit(task, expected_version=None)
        self._log(task, "create_task", performed_by,
                  f"Created collections task {task.id} for {task.amount.to_string()}",
                  {'collections_type': task.collections_type.value, 'has_plan': payment_plan is not None})
        return task

    def update_task(
        self,
        task: TaskRef,
        patch: Union[Dict[str, Any], UpdateTaskRequest],
        performed_by: str
    ) -> CollectionsTask:
        """
        Apply a partial update to a task

        One audit entry is appended per field whose value actually changes.
        Status changes are checked against the transition table before
        anything else is applied.

        Raises:
            ValidationError: Unknown fields, invalid values, nulls for
                required fields, or an attempt to change the amount,
                or moving a task with a payment plan off payment_plan
            InvalidStateTransitionError: Status change not allowed
            TaskNotFoundError: No such task
            ConcurrentModificationError: Task changed since it was read
        """
        performed_by = self._actor(performed_by)
        request = parse_model(UpdateTaskRequest, patch)
        changes = request.changes()

        for name, value in changes.items():
            if value is None and name not in NULLABLE_UPDATE_FIELDS:
                raise ValidationError(f"{name} cannot be null", errors=[{'field': name}])

        current = self._checkout(task)
        expected_version = current.version

        if 'amount' in changes:
            requested_amount = changes.pop('amount').to_money(current.amount.currency)
            if requested_amount != current.amount:
                raise ValidationError("Task amount cannot be changed after creation",
                                      errors=[{'field': 'amount'}])

        new_type = changes.get('collections_type')
        if (new_type is not None and new_type != CollectionsType.PAYMENT_PLAN
                and current.payment_plan is not None):
            raise ValidationError("A task with a payment plan must stay a payment_plan task",
                                  errors=[{'field': 'collections_type', 'value': new_type.value}])

        new_status = changes.pop('status', None)
        if new_status is not None and new_status != current.status:
            if not can_transition(current.status, new_status):
                raise InvalidStateTransitionError(current.status, new_status)

        changed_fields = []
        for name in UPDATABLE_FIELDS:
            if name not in changes:
                continue
            new_value = changes[name]
            if name == 'title':
                new_value = new_value.strip()
                if not new_value:
                    raise ValidationError("title must not be blank", errors=[{'field': 'title'}])
            old_value = getattr(current, name)
            if new_value == old_value:
                continue

            setattr(current, name, new_value)
            changed_fields.append(name)
            self.audit_recorder.record(
                current,
                AuditAction.FIELD_UPDATED,
                f"Updated {name}",
                performed_by,
                previous_value=old_value,
                new_value=new_value,
                field=name
            )

        if new_status is not None and new_status != current.status:
            self._set_status(current, new_status, performed_by, f"Status changed to {new_status.value}")
            changed_fields.append('status')

        if not changed_fields:
            return current

        self._commit(current, expected_version)
        self._log(current, "update_task", performed_by,
                  f"Updated task {current.id}: {', '.join(changed_fields)}",
                  {'fields': changed_fields})
        return current

    # Communications

    def append_communication(
        self,
        task: TaskRef,
        communication: Union[Dict[str, Any], CommunicationRequest, CommunicationRecord],
        performed_by: str
    ) -> CollectionsTask:
        """
        Append a communication record to the task's history

        Allowed in any status. A record carrying next_action_date also asks
        the reminder scheduler for a follow-up to the assignee.
        """
        performed_by = self._actor(performed_by)
        if not isinstance(communication, CommunicationRecord):
            communication = parse_model(CommunicationRequest, communication).to_record(performed_by)

        current = self._checkout(task)
        expected_version = current.version

        record = self.communication_log.append_communication(current, communication, performed_by)

        self._commit(current, expected_version)
        self._log(current, "append_communication", performed_by,
                  f"Logged {record.method.value} contact on task {current.id}: {record.outcome.value}",
                  {'communication_id': record.id, 'outcome': record.outcome.value})

        if record.next_action_date:
            dispatch_reminder(
                self.reminder_scheduler,
                current.id,
                FOLLOW_UP_CHANNELS[record.method],
                _start_of_day(record.next_action_date),
                "follow_up",
                current.assigned_to.id
            )
        return current

    # Payments

    def record_payment(self, task: TaskRef, payment_amount: Any, performed_by: str) -> CollectionsTask:
        """
        Record a payment against the task's payment plan

        A payment that settles the plan forces the task to completed in the
        same commit.

        Raises:
            NoPaymentPlanError: Task has no payment plan
            InvalidStateTransitionError: Task is already completed or cancelled
            ValidationError: Amount <= 0, wrong currency, or a final
                installment that does not settle the balance
            PaymentExceedsBalanceError: Amount larger than the remaining balance
        """
        performed_by = self._actor(performed_by)
        current = self._checkout(task)
        expected_version = current.version

        if current.payment_plan is None:
            raise NoPaymentPlanError(current.id)
        if current.is_terminal:
            raise InvalidStateTransitionError(
                current.status, current.status,
                f"Cannot record a payment on a {current.status.value} task"
            )

        amount = self._to_money(payment_amount, current.payment_plan.currency, 'payment_amount')
        previous_plan = current.payment_plan
        new_plan = self.plan_engine.apply_payment(previous_plan, amount)
        current.payment_plan = new_plan

        self.audit_recorder.record(
            current,
            AuditAction.PAYMENT_RECORDED,
            f"Payment of {amount.to_string()} recorded "
            f"(installment {new_plan.payments_made} of {new_plan.number_of_installments})",
            performed_by,
            previous_value=_plan_progress(previous_plan),
            new_value=dict(_plan_progress(new_plan), payment_amount=amount.amount),
            field='payment_plan'
        )

        completed = self.plan_engine.is_complete(new_plan)
        if completed:
            self.audit_recorder.record(
                current,
                AuditAction.PLAN_COMPLETED,
                f"Payment plan completed: {new_plan.total_paid.to_string()} paid",
                performed_by,
                new_value=_plan_progress(new_plan),
                field='payment_plan'
            )
            if current.status != TaskStatus.COMPLETED:
                self._set_status(current, TaskStatus.COMPLETED, performed_by,
                                 "Status changed to completed: payment plan paid in full")

        self._commit(current, expected_version)
        self._log(current, "record_payment", performed_by,
                  f"Recorded payment of {amount.to_string()} on task {current.id}",
                  {'total_paid': str(new_plan.total_paid.amount), 'plan_completed': completed})

        if not completed and new_plan.next_payment_date:
            dispatch_reminder(
                self.reminder_scheduler,
                current.id,
                ReminderChannel.EMAIL,
                _start_of_day(new_plan.next_payment_date),
                "installment_due",
                current.customer.id
            )
        return current

    # Escalation and risk

    def escalate(self, task: TaskRef, performed_by: str) -> CollectionsTask:
        """Raise escalation_level by one, capped at 5"""
        return self._shift_escalation(task, performed_by, +1)

    def deescalate(self, task: TaskRef, performed_by: str) -> CollectionsTask:
        """Lower escalation_level by one, floored at 1"""
        return self._shift_escalation(task, performed_by, -1)

    def recommend_risk(self, task_id: str, today: Optional[date] = None) -> RiskLevel:
        """Risk level the classifier would assign today (read-only)"""
        task = self.get_task(task_id)
        return self.risk_classifier.recommend(
            task.due_date, task.communication_history, today or self._today()
        )

    def reclassify_risk(self, task: TaskRef, performed_by: str, today: Optional[date] = None) -> CollectionsTask:
        """
        Apply the classifier's recommendation to the task

        No-op when the recommendation matches the current level.

        Raises:
            InvalidStateTransitionError: Task is completed or cancelled
        """
        performed_by = self._actor(performed_by)
        current = self._checkout(task)
        expected_version = current.version
        self._require_open(current, "reclassify risk on")

        recommended = self.risk_classifier.recommend(
            current.due_date, current.communication_history, today or self._today()
        )
        if recommended == current.risk_level:
            return current

        previous = current.risk_level
        current.risk_level = recommended
        self.audit_recorder.record(
            current,
            AuditAction.RISK_RECLASSIFIED,
            f"Risk reclassified from {previous.value} to {recommended.value}",
            performed_by,
            previous_value=previous,
            new_value=recommended,
            field='risk_level'
        )

        self._commit(current, expected_version)
        self._log(current, "reclassify_risk", performed_by,
                  f"Risk on task {current.id} reclassified to {recommended.value}",
                  {'previous': previous.value, 'new': recommended.value})
        return current

    def add_escalation_rule(
        self,
        task: TaskRef,
        trigger_days: int,
        action: Union[str, EscalationAction],
        performed_by: str
    ) -> CollectionsTask:
        """Attach a time-triggered escalation rule to the task"""
        performed_by = self._actor(performed_by)
        rule = parse_model(EscalationRuleRequest, {'trigger_days': trigger_days, 'action': action}).to_rule()

        current = self._checkout(task)
        expected_version = current.version
        self._require_open(current, "add escalation rules to")

        current.escalation_rules = tuple(current.escalation_rules) + (rule,)
        self.audit_recorder.record(
            current,
            AuditAction.ESCALATION_RULE_ADDED,
            f"Escalation rule added: {rule.action.value} after {rule.trigger_days} days overdue",
            performed_by,
            new_value=rule,
            field='escalation_rules'
        )

        self._commit(current, expected_version)
        self._log(current, "add_escalation_rule", performed_by,
                  f"Added escalation rule to task {current.id}", rule.to_dict())
        return current

    def apply_escalation_rules(self, task: TaskRef, performed_by: str, today: Optional[date] = None) -> CollectionsTask:
        """
        Execute the first due escalation rule, if any

        At most one rule fires per call. Rules never fire on closed tasks or
        when auto_escalate is off.
        """
        performed_by = self._actor(performed_by)
        current = self._checkout(task)
        expected_version = current.version

        index = due_escalation_rule(current, today or self._today())
        if index is None:
            return current

        now = self._now()
        rule = current.escalation_rules[index]
        executed = replace(rule, executed=True, executed_at=now, executed_by=performed_by)
        rules = list(current.escalation_rules)
        rules[index] = executed
        current.escalation_rules = tuple(rules)

        if rule.action == EscalationAction.CHANGE_PRIORITY and current.priority != TaskPriority.URGENT:
            previous_priority = current.priority
            current.priority = TaskPriority.URGENT
            self.audit_recorder.record(
                current,
                AuditAction.FIELD_UPDATED,
                "Priority raised to urgent by escalation rule",
                performed_by,
                previous_value=previous_priority,
                new_value=TaskPriority.URGENT,
                field='priority'
            )
        elif rule.action == EscalationAction.LEGAL_REVIEW:
            self._bump_escalation(current, performed_by, +1)

        self.audit_recorder.record(
            current,
            AuditAction.ESCALATION_RULE_EXECUTED,
            f"Escalation rule executed: {rule.action.value} ({rule.trigger_days} days overdue)",
            performed_by,
            previous_value=rule,
            new_value=executed,
            field='escalation_rules'
        )

        self._commit(current, expected_version)
        self._log(current, "apply_escalation_rules", performed_by,
                  f"Executed escalation rule {rule.action.value} on task {current.id}",
                  {'trigger_days': rule.trigger_days})

        if rule.action == EscalationAction.NOTIFY_MANAGER:
            dispatch_reminder(
                self.reminder_scheduler,
                current.id,
                ReminderChannel.EMAIL,
                now,
                "escalation_notice",
                current.assigned_to.id
            )
        return current

    # Reminders

    def schedule_reminder(
        self,
        task: TaskRef,
        channel: Union[str, ReminderChannel],
        scheduled_for: datetime,
        performed_by: str,
        template_ref: str = "payment_reminder",
        recipient: Optional[str] = None
    ) -> CollectionsTask:
        """
        Schedule a reminder for the task's customer

        Raises:
            ValidationError: Bad channel or the task's reminder limit is reached
            InvalidStateTransitionError: Task is completed or cancelled
        """
        performed_by = self._actor(performed_by)
        channel = _coerce_channel(channel)
        if not isinstance(scheduled_for, datetime):
            raise ValidationError("scheduled_for must be a datetime", errors=[{'field': 'scheduled_for'}])
        scheduled_for = _as_utc(scheduled_for)

        current = self._checkout(task)
        expected_version = current.version
        self._require_open(current, "schedule reminders for")

        if current.reminder_count >= current.max_reminders:
            raise ValidationError(
                f"Task {current.id} already has {current.reminder_count} of "
                f"{current.max_reminders} reminders scheduled",
                errors=[{'field': 'reminder_count'}]
            )

        previous_count = current.reminder_count
        reminder = ScheduledReminder(
            id=str(uuid.uuid4()),
            channel=channel,
            scheduled_for=scheduled_for,
            template_ref=template_ref,
            recipient=recipient or current.customer.id
        )
        current.reminders = tuple(current.reminders) + (reminder,)
        current.reminder_count += 1
        current.next_reminder_date = _next_pending(current.reminders)
        self.audit_recorder.record(
            current,
            AuditAction.REMINDER_SCHEDULED,
            f"{channel.value} reminder scheduled for {scheduled_for.isoformat()}",
            performed_by,
            previous_value=previous_count,
            new_value={
                'reminder_count': current.reminder_count,
                'reminder': reminder
            },
            field='reminder_count'
        )

        self._commit(current, expected_version)
        delivery_id = dispatch_reminder(
            self.reminder_scheduler,
            current.id,
            channel,
            scheduled_for,
            template_ref,
            reminder.recipient
        )
        self._log(current, "schedule_reminder", performed_by,
                  f"Scheduled {channel.value} reminder for task {current.id}",
                  {'reminder_id': reminder.id, 'delivery_id': delivery_id,
                   'reminder_count': current.reminder_count})
        return current

    def mark_reminder_sent(
        self,
        task: TaskRef,
        reminder_id: str,
        performed_by: str,
        message: Optional[str] = None,
        error_message: Optional[str] = None,
        sent_at: Optional[datetime] = None
    ) -> CollectionsTask:
        """
        Record the delivery outcome of a pending reminder

        The reminder becomes ``failed`` when ``error_message`` is given and
        ``sent`` otherwise. Either way the attempt counts as the task's last
        reminder.

        Raises:
            ValidationError: Unknown reminder or one that is no longer pending
        """
        performed_by = self._actor(performed_by)
        sent_at = _as_utc(sent_at) if sent_at else self._now()

        current = self._checkout(task)
        expected_version = current.version

        index, reminder = _find_reminder(current, reminder_id)
        if not reminder.is_pending:
            raise ValidationError(
                f"Reminder {reminder_id} is already {reminder.status.value}",
                errors=[{'field': 'reminder_id'}]
            )

        failed = bool(error_message)
        updated = replace(
            reminder,
            status=ReminderStatus.FAILED if failed else ReminderStatus.SENT,
            sent_at=sent_at,
            message=message,
            error_message=error_message
        )
        current.reminders = _replace_at(current.reminders, index, updated)
        current.last_reminder_date = sent_at
        current.next_reminder_date = _next_pending(current.reminders)

        self.audit_recorder.record(
            current,
            AuditAction.REMINDER_FAILED if failed else AuditAction.REMINDER_SENT,
            f"Reminder {reminder.id} {updated.status.value} at {sent_at.isoformat()}",
            performed_by,
            previous_value=reminder,
            new_value=updated,
            field='reminders'
        )

        self._commit(current, expected_version)
        self._log(current, "mark_reminder_sent", performed_by,
                  f"Reminder {reminder.id} {updated.status.value} for task {current.id}",
                  {'reminder_id': reminder.id, 'status': updated.status.value},
                  level="warning" if failed else "info")
        return current

    def cancel_reminder(self, task: TaskRef, reminder_id: str, performed_by: str) -> CollectionsTask:
        """
        Cancel a pending reminder

        Cancelling an already cancelled reminder changes nothing. The task's
        reminder_count still includes cancelled reminders.

        Raises:
            ValidationError: Unknown reminder, or one already sent or failed
        """
        performed_by = self._actor(performed_by)
        current = self._checkout(task)
        expected_version = current.version

        index, reminder = _find_reminder(current, reminder_id)
        if reminder.status == ReminderStatus.CANCELLED:
            return current
        if not reminder.is_pending:
            raise ValidationError(
                f"Reminder {reminder_id} is already {reminder.status.value}",
                errors=[{'field': 'reminder_id'}]
            )

        updated = replace(reminder, status=ReminderStatus.CANCELLED)
        current.reminders = _replace_at(current.reminders, index, updated)
        current.next_reminder_date = _next_pending(current.reminders)
        self.audit_recorder.record(
            current,
            AuditAction.REMINDER_CANCELLED,
            f"Reminder {reminder.id} cancelled",
            performed_by,
            previous_value=reminder.status,
            new_value=updated.status,
            field='reminders'
        )

        self._commit(current, expected_version)
        self._log(current, "cancel_reminder", performed_by,
                  f"Cancelled reminder {reminder.id} for task {current.id}",
                  {'reminder_id': reminder.id})
        return current

    # Legal documents

    def attach_legal_document(
        self,
        task: TaskRef,
        document_type: Union[str, DocumentType],
        original_name: str,
        blob_handle: Any,
        uploaded_by: str,
        expires_at: Optional[datetime] = None,
        tags: Tuple[str, ...] = (),
        description: Optional[str] = None
    ) -> CollectionsTask:
        """
        Store a legal document and attach its metadata to the task

        The content goes to the document store first; if the metadata commit
        then loses a version race the stored blob is left unreferenced and
        the caller retries.
        """
        uploaded_by = self._actor(uploaded_by)
        try:
            document_type = DocumentType(document_type)
        except ValueError:
            raise ValidationError(f"Invalid document type '{document_type}'",
                                  errors=[{'field': 'document_type', 'value': document_type}])
        if not original_name or not original_name.strip():
            raise ValidationError("original_name is required", errors=[{'field': 'original_name'}])

        current = self._checkout(task)
        expected_version = current.version

        document_ref = self.document_store.store_document(
            current.id,
            {'document_type': document_type.value, 'original_name': original_name, 'uploaded_by': uploaded_by},
            blob_handle
        )

        document = LegalDocument(
            id=str(uuid.uuid4()),
            document_ref=document_ref,
            document_type=document_type,
            original_name=original_name.strip(),
            uploaded_by=uploaded_by,
            uploaded_at=self._now(),
            status=DocumentStatus.ACTIVE,
            expires_at=_as_utc(expires_at) if expires_at else None,
            description=description,
            tags=tuple(tags)
        )
        current.legal_documents = tuple(current.legal_documents) + (document,)
        self.audit_recorder.record(
            current,
            AuditAction.DOCUMENT_UPLOADED,
            f"Legal document uploaded: {document.original_name} ({document_type.value})",
            uploaded_by,
            new_value=document,
            field='legal_documents'
        )

        self._commit(current, expected_version)
        self._log(current, "attach_legal_document", uploaded_by,
                  f"Attached {document_type.value} to task {current.id}",
                  {'document_id': document.id, 'document_ref': document_ref})
        return current

    def archive_legal_document(self, task: TaskRef, document_id: str, performed_by: str) -> CollectionsTask:
        """Mark a legal document archived; archiving twice is a no-op"""
        performed_by = self._actor(performed_by)
        current = self._checkout(task)
        expected_version = current.version

        documents = list(current.legal_documents)
        for index, document in enumerate(documents):
            if document.id == document_id:
                break
        else:
            raise ValidationError(f"Document {document_id} is not attached to task {current.id}",
                                  errors=[{'field': 'document_id', 'value': document_id}])

        if document.status == DocumentStatus.ARCHIVED:
            return current

        documents[index] = replace(document, status=DocumentStatus.ARCHIVED)
        current.legal_documents = tuple(documents)
        self.audit_recorder.record(
            current,
            AuditAction.DOCUMENT_ARCHIVED,
            f"Legal document archived: {document.original_name}",
            performed_by,
            previous_value=document.status,
            new_value=DocumentStatus.ARCHIVED,
            field='legal_documents'
        )

        self._commit(current, expected_version)
        self._log(current, "archive_legal_document", performed_by,
                  f"Archived document {document_id} on task {current.id}")
        return current

    # Read accessors

    def get_task(self, task_id: str) -> CollectionsTask:
        """
        Get task by ID

        Raises:
            TaskNotFoundError: No such task
        """
        task_dict = self.storage.load(self.tasks_table, task_id)
        if not task_dict:
            raise TaskNotFoundError(task_id)
        return self._task_from_dict(task_dict)

    def get_communication_history(self, task_id: str) -> Tuple[CommunicationRecord, ...]:
        return self.get_task(task_id).communication_history

    def get_legal_documents(self, task_id: str) -> Tuple[LegalDocument, ...]:
        return self.get_task(task_id).legal_documents

    def get_audit_trail(self, task_id: str) -> Tuple[AuditEntry, ...]:
        return self.get_task(task_id).audit_trail

    def get_payment_plan(self, task_id: str) -> Optional[PaymentPlan]:
        return self.get_task(task_id).payment_plan

    def get_payment_schedule(self, task_id: str) -> List[ScheduledInstallment]:
        """Projected remaining installments for the task's plan"""
        task = self.get_task(task_id)
        if task.payment_plan is None:
            raise NoPaymentPlanError(task_id)
        return self.plan_engine.schedule(task.payment_plan)

    def verify_audit_trail(self, task_id: str) -> Dict[str, Any]:
        """Check the task's audit hash chain"""
        return self.audit_recorder.verify_integrity(self.get_task(task_id))

    def get_reminders(
        self,
        task_id: str,
        status: Optional[Union[str, ReminderStatus]] = None
    ) -> Tuple[ScheduledReminder, ...]:
        """Reminders on the task in scheduling order, optionally by status"""
        reminders = self.get_task(task_id).reminders
        if status is None:
            return reminders
        status = _coerce_enum(ReminderStatus, status, 'status')
        return tuple(reminder for reminder in reminders if reminder.status == status)

    # Queries

    def list_tasks(self, query: Optional[TaskQuery] = None) -> TaskPage:
        """
        List tasks matching the query, most urgent first

        Sorted by priority (urgent first), then due date, then creation time.
        """
        query = query or TaskQuery()
        if query.page < 1 or query.page_size < 1:
            raise ValidationError("page and page_size must be at least 1",
                                  errors=[{'field': 'page', 'value': query.page},
                                          {'field': 'page_size', 'value': query.page_size}])

        filters = {}
        if query.assigned_to:
            filters['assigned_to'] = as_reference(query.assigned_to, 'assigned_to').id
        if query.customer:
            filters['customer'] = as_reference(query.customer, 'customer').id
        if query.status:
            filters['status'] = _coerce_enum(TaskStatus, query.status, 'status').value
        if query.risk_level:
            filters['risk_level'] = _coerce_enum(RiskLevel, query.risk_level, 'risk_level').value
        if query.collections_type:
            filters['collections_type'] = _coerce_enum(
                CollectionsType, query.collections_type, 'collections_type'
            ).value

        tasks = [self._task_from_dict(data) for data in self.storage.find(self.tasks_table, filters)]

        if query.overdue_only:
            as_of = query.as_of or self._today()
            tasks = [task for task in tasks if task.is_overdue(as_of)]

        tasks.sort(key=lambda t: (-t.priority.rank, t.due_date, t.created_at))

        start = (query.page - 1) * query.page_size
        return TaskPage(
            items=tasks[start:start + query.page_size],
            total=len(tasks),
            page=query.page,
            page_size=query.page_size
        )

    def get_overdue_tasks(self, as_of: Optional[date] = None) -> List[CollectionsTask]:
        """Open tasks past their due date, oldest due date first"""
        as_of = as_of or self._today()
        tasks = [self._task_from_dict(data) for data in self.storage.load_all(self.tasks_table)]
        overdue = [task for task in tasks if task.is_overdue(as_of)]
        overdue.sort(key=lambda t: (t.due_date, t.created_at))
        return overdue

    def get_tasks_by_risk_level(self, risk_level: Union[str, RiskLevel]) -> List[CollectionsTask]:
        risk_level = _coerce_enum(RiskLevel, risk_level, 'risk_level')
        tasks_data = self.storage.find(self.tasks_table, {'risk_level': risk_level.value})
        tasks = [self._task_from_dict(data) for data in tasks_data]
        tasks.sort(key=lambda t: (-t.priority.rank, t.due_date))
        return tasks

    def get_collection_summary(self, as_of: Optional[date] = None) -> Dict[str, Any]:
        """Portfolio-level collections statistics"""
        as_of = as_of or self._today()
        summary = {
            "total_tasks": 0,
            "open_tasks": 0,
            "overdue_tasks": 0,
            "tasks_by_status": {status.value: 0 for status in TaskStatus},
            "tasks_by_risk_level": {level.value: 0 for level in RiskLevel},
            "tasks_by_priority": {priority.value: 0 for priority in TaskPriority},
            "total_outstanding": {},
            "total_collected": {}
        }

        outstanding: Dict[Currency, Money] = {}
        collected: Dict[Currency, Money] = {}

        for data in self.storage.load_all(self.tasks_table):
            task = self._task_from_dict(data)
            summary["total_tasks"] += 1
            summary["tasks_by_status"][task.status.value] += 1
            summary["tasks_by_risk_level"][task.risk_level.value] += 1
            summary["tasks_by_priority"][task.priority.value] += 1

            if task.payment_plan is not None:
                paid = task.payment_plan.total_paid
                collected[paid.currency] = collected.get(paid.currency, Money.zero(paid.currency)) + paid

            if task.is_terminal:
                continue

            summary["open_tasks"] += 1
            if task.is_overdue(as_of):
                summary["overdue_tasks"] += 1
            balance = task.balance_remaining
            outstanding[balance.currency] = outstanding.get(balance.currency, Money.zero(balance.currency)) + balance

        summary["total_outstanding"] = {c.code: str(m.amount) for c, m in outstanding.items()}
        summary["total_collected"] = {c.code: str(m.amount) for c, m in collected.items()}
        return summary

    def get_aging_report(
        self,
        as_of: Optional[date] = None,
        assigned_to: Optional[Any] = None,
        due_from: Optional[date] = None,
        due_to: Optional[date] = None
    ) -> Dict[str, Dict[str, Any]]:
        """
        Open tasks grouped by how many days past due they are

        Every bucket is present, in order, even when empty. Amounts are the
        remaining balance per currency code.

        Args:
            as_of: Reference day, today when omitted
            assigned_to: Only tasks assigned to this staff member
            due_from: Earliest due date to include
            due_to: Latest due date to include

        Returns:
            Bucket name to ``count``, ``total_amount`` and ``average_days``
        """
        as_of = as_of or self._today()
        _check_range(due_from, due_to, 'due_from', 'due_to')

        buckets = {name: {'count': 0, 'amounts': {}, 'days': 0} for name, _ in AGING_BUCKETS}
        for task in self._tasks_for(assigned_to):
            if task.is_terminal or not _in_range(task.due_date, due_from, due_to):
                continue
            days = (as_of - task.due_date).days
            bucket = buckets[_aging_bucket(days)]
            bucket['count'] += 1
            bucket['days'] += days
            _add_amount(bucket['amounts'], task.balance_remaining)

        report = {}
        for name, bucket in buckets.items():
            average = Decimal(bucket['days']) / bucket['count'] if bucket['count'] else Decimal(0)
            report[name] = {
                'count': bucket['count'],
                'total_amount': {c.code: str(m.amount) for c, m in bucket['amounts'].items()},
                'average_days': str(average.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))
            }
        return report

    def get_performance_metrics(
        self,
        as_of: Optional[date] = None,
        assigned_to: Optional[Any] = None,
        created_from: Optional[date] = None,
        created_to: Optional[date] = None
    ) -> Dict[str, Any]:
        """
        Recovery, overdue and high-risk figures across tasks

        Amounts and rates are per currency code. Rates are percentages of
        the total task amount, rounded to two places.
        """
        as_of = as_of or self._today()
        _check_range(created_from, created_to, 'created_from', 'created_to')

        counts = {'total_tasks': 0, 'completed_tasks': 0, 'overdue_tasks': 0, 'high_risk_tasks': 0}
        amounts: Dict[str, Dict[Currency, Money]] = {
            'total': {}, 'completed': {}, 'overdue': {}, 'high_risk': {}
        }
        for task in self._tasks_for(assigned_to):
            if not _in_range(task.created_at.date(), created_from, created_to):
                continue
            counts['total_tasks'] += 1
            _add_amount(amounts['total'], task.amount)
            if task.status == TaskStatus.COMPLETED:
                counts['completed_tasks'] += 1
                _add_amount(amounts['completed'], task.amount)
            if task.is_overdue(as_of):
                counts['overdue_tasks'] += 1
                _add_amount(amounts['overdue'], task.amount)
            if task.risk_level in HIGH_RISK_LEVELS:
                counts['high_risk_tasks'] += 1
                _add_amount(amounts['high_risk'], task.amount)

        metrics: Dict[str, Any] = dict(counts)
        for name, totals in amounts.items():
            metrics[f'{name}_amount'] = {c.code: str(m.amount) for c, m in totals.items()}
        for rate, part in (('recovery_rate', 'completed'), ('overdue_rate', 'overdue'),
                           ('high_risk_rate', 'high_risk')):
            metrics[rate] = {
                currency.code: _percentage(amounts[part].get(currency), total)
                for currency, total in amounts['total'].items()
            }
        return metrics

    # Internal helpers

    def _now(self) -> datetime:
        return self._clock()

    def _today(self) -> date:
        return self._clock().date()

    def _actor(self, performed_by: str) -> str:
        if isinstance(performed_by, Reference):
            performed_by = performed_by.id
        if not isinstance(performed_by, str) or not performed_by.strip():
            raise ValidationError("performed_by is required", errors=[{'field': 'performed_by'}])
        return performed_by.strip()

    def _tasks_for(self, assigned_to: Optional[Any]) -> List[CollectionsTask]:
        filters = {}
        if assigned_to:
            filters['assigned_to'] = as_reference(assigned_to, 'assigned_to').id
        return [self._task_from_dict(data) for data in self.storage.find(self.tasks_table, filters)]

    def _checkout(self, task: TaskRef) -> CollectionsTask:
        """Fresh private copy of the stored task, checking the caller's version"""
        task_id = task.id if isinstance(task, CollectionsTask) else task
        current = self.get_task(task_id)
        if isinstance(task, CollectionsTask) and task.version != current.version:
            raise ConcurrentModificationError(task_id, task.version, current.version)
        return current

    def _commit(self, task: CollectionsTask, expected_version: Optional[int]) -> None:
        """Write the task if nobody else wrote it since it was read"""
        task.version = (expected_version or 0) + 1
        task.updated_at = self._now()
        if not self.storage.save_if_version(self.tasks_table, task.id, self._task_to_dict(task), expected_version):
            stored = self.storage.load(self.tasks_table, task.id)
            raise ConcurrentModificationError(task.id, expected_version, stored.get('version') if stored else None)

    def _require_open(self, task: CollectionsTask, verb: str) -> None:
        if task.is_terminal:
            raise InvalidStateTransitionError(
                task.status, task.status, f"Cannot {verb} a {task.status.value} task"
            )

    def _set_status(self, task: CollectionsTask, new_status: TaskStatus, performed_by: str, description: str) -> None:
        previous = task.status
        task.status = new_status
        if new_status == TaskStatus.COMPLETED:
            task.completed_at = self._now()
        self.audit_recorder.record(
            task,
            AuditAction.STATUS_CHANGED,
            description,
            performed_by,
            previous_value=previous,
            new_value=new_status,
            field='status'
        )

    def _shift_escalation(self, task: TaskRef, performed_by: str, step: int) -> CollectionsTask:
        performed_by = self._actor(performed_by)
        current = self._checkout(task)
        expected_version = current.version
        self._require_open(current, "escalate" if step > 0 else "de-escalate")

        if not self._bump_escalation(current, performed_by, step):
            return current

        operation = "escalate" if step > 0 else "deescalate"
        self._commit(current, expected_version)
        self._log(current, operation, performed_by,
                  f"Task {current.id} escalation level now {current.escalation_level}",
                  {'escalation_level': current.escalation_level})
        return current

    def _bump_escalation(self, task: CollectionsTask, performed_by: str, step: int) -> bool:
        """Move escalation_level within bounds; False when already at the bound"""
        previous = task.escalation_level
        new_level = max(MIN_ESCALATION_LEVEL, min(MAX_ESCALATION_LEVEL, previous + step))
        if new_level == previous:
            return False

        task.escalation_level = new_level
        action = AuditAction.ESCALATED if step > 0 else AuditAction.DEESCALATED
        self.audit_recorder.record(
            task,
            action,
            f"Escalation level changed from {previous} to {new_level}",
            performed_by,
            previous_value=previous,
            new_value=new_level,
            field='escalation_level'
        )
        return True

    def _build_plan(self, request: CreateTaskRequest, amount: Money) -> PaymentPlan:
        plan_request = request.payment_plan
        currency = amount.currency
        total = plan_request.total_amount.to_money(currency) if plan_request.total_amount else amount
        installment = plan_request.installment_amount.to_money(currency)
        if total.currency != currency or installment.currency != currency:
            raise ValidationError("Payment plan currency must match the task amount",
                                  errors=[{'field': 'payment_plan'}])
        return self.plan_engine.create_plan(
            total,
            installment,
            plan_request.number_of_installments,
            plan_request.installment_frequency,
            plan_request.next_payment_date
        )

    def _to_money(self, value: Any, currency: Currency, field_name: str) -> Money:
        if isinstance(value, Money):
            return value
        try:
            return parse_model(MoneyModel, value).to_money(currency)
        except ValidationError as e:
            raise ValidationError(f"Invalid {field_name}: {e}", errors=[{'field': field_name}])

    def _log(self, task: CollectionsTask, action: str, performed_by: str, message: str,
             extra: Optional[Dict[str, Any]] = None, level: str = "info") -> None:
        if not self.config.enable_audit_logging:
            return
        details = {'version': task.version, 'status': task.status.value}
        if extra:
            details.update(extra)
        log_action(
            self.logger, level, message,
            user_id=performed_by,
            action=action,
            resource=f"task:{task.id}",
            extra=details
        )

    # Serialization methods

    def _task_to_dict(self, task: CollectionsTask) -> Dict[str, Any]:
        """Convert task to dictionary"""
        return {
            'id': task.id,
            'created_at': task.created_at.isoformat(),
            'updated_at': task.updated_at.isoformat(),
            'version': task.version,
            'title': task.title,
            'description': task.description,
            'collections_type': task.collections_type.value,
            'amount': str(task.amount.amount),
            'currency': task.amount.currency.code,
            'due_date': task.due_date.isoformat(),
            'assigned_to': task.assigned_to.id,
            'assigned_by': task.assigned_by.id,
            'customer': task.customer.id,
            'priority': task.priority.value,
            'status': task.status.value,
            'risk_level': task.risk_level.value,
            'escalation_level': task.escalation_level,
            'payment_terms': task.payment_terms,
            'payment_plan': task.payment_plan.to_dict() if task.payment_plan else None,
            'communication_history': [record.to_dict() for record in task.communication_history],
            'legal_documents': [document.to_dict() for document in task.legal_documents],
            'audit_trail': [entry.to_dict() for entry in task.audit_trail],
            'escalation_rules': [rule.to_dict() for rule in task.escalation_rules],
            'reminders': [reminder.to_dict() for reminder in task.reminders],
            'last_contact_date': task.last_contact_date.isoformat() if task.last_contact_date else None,
            'next_contact_date': task.next_contact_date.isoformat() if task.next_contact_date else None,
            'auto_escalate': task.auto_escalate,
            'reminder_count': task.reminder_count,
            'max_reminders': task.max_reminders,
            'last_reminder_date': task.last_reminder_date.isoformat() if task.last_reminder_date else None,
            'next_reminder_date': task.next_reminder_date.isoformat() if task.next_reminder_date else None,
            'completed_at': task.completed_at.isoformat() if task.completed_at else None
        }

    def _task_from_dict(self, data: Dict[str, Any]) -> CollectionsTask:
        """Convert dictionary to task"""
        currency = Currency[data['currency']]

        def parse_datetime(key: str) -> Optional[datetime]:
            return datetime.fromisoformat(data[key]) if data.get(key) else None

        next_contact_date = None
        if data.get('next_contact_date'):
            next_contact_date = date.fromisoformat(data['next_contact_date'])

        return CollectionsTask(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            version=data['version'],
            title=data['title'],
            description=data.get('description', ''),
            collections_type=CollectionsType(data['collections_type']),
            amount=Money(Decimal(data['amount']), currency),
            due_date=date.fromisoformat(data['due_date']),
            assigned_to=Reference(data['assigned_to']),
            assigned_by=Reference(data['assigned_by']),
            customer=Reference(data['customer']),
            priority=TaskPriority(data['priority']),
            status=TaskStatus(data['status']),
            risk_level=RiskLevel(data['risk_level']),
            escalation_level=data['escalation_level'],
            payment_terms=data.get('payment_terms'),
            payment_plan=PaymentPlan.from_dict(data['payment_plan']) if data.get('payment_plan') else None,
            communication_history=tuple(
                CommunicationRecord.from_dict(item) for item in data.get('communication_history', [])
            ),
            legal_documents=tuple(LegalDocument.from_dict(item) for item in data.get('legal_documents', [])),
            audit_trail=tuple(AuditEntry.from_dict(item) for item in data.get('audit_trail', [])),
            escalation_rules=tuple(EscalationRule.from_dict(item) for item in data.get('escalation_rules', [])),
            reminders=tuple(ScheduledReminder.from_dict(item) for item in data.get('reminders', [])),
            last_contact_date=parse_datetime('last_contact_date'),
            next_contact_date=next_contact_date,
            auto_escalate=data.get('auto_escalate', True),
            reminder_count=data.get('reminder_count', 0),
            max_reminders=data.get('max_reminders', self.config.max_reminders),
            last_reminder_date=parse_datetime('last_reminder_date'),
            next_reminder_date=parse_datetime('next_reminder_date'),
            completed_at=parse_datetime('completed_at')
        )


def _plan_progress(plan: PaymentPlan) -> Dict[str, Any]:
    return {
        'total_paid': plan.total_paid.amount,
        'payments_made': plan.payments_made,
        'next_payment_date': plan.next_payment_date
    }


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _coerce_channel(channel: Union[str, ReminderChannel]) -> ReminderChannel:
    return _coerce_enum(ReminderChannel, channel, 'channel')


def _coerce_enum(enum_type, value: Any, field_name: str):
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(f"Invalid {field_name} '{value}'; expected one of: {allowed}",
                              errors=[{'field': field_name, 'value': value}])


def _find_reminder(task: CollectionsTask, reminder_id: str) -> Tuple[int, ScheduledReminder]:
    for index, reminder in enumerate(task.reminders):
        if reminder.id == reminder_id:
            return index, reminder
    raise ValidationError(f"Reminder {reminder_id} not found on task {task.id}",
                          errors=[{'field': 'reminder_id', 'value': reminder_id}])


def _replace_at(items: Tuple[Any, ...], index: int, item: Any) -> Tuple[Any, ...]:
    return items[:index] + (item,) + items[index + 1:]


def _next_pending(reminders: Tuple[ScheduledReminder, ...]) -> Optional[datetime]:
    pending = [reminder.scheduled_for for reminder in reminders if reminder.is_pending]
    return min(pending) if pending else None


def _aging_bucket(days_past_due: int) -> str:
    for name, limit in AGING_BUCKETS:
        if limit is None or days_past_due <= limit:
            return name
    return AGING_BUCKETS[-1][0]


def _check_range(start: Optional[date], end: Optional[date], start_field: str, end_field: str) -> None:
    if start and end and start > end:
        raise ValidationError(f"{start_field} must not be after {end_field}",
                              errors=[{'field': start_field, 'value': start}])


def _in_range(day: date, start: Optional[date], end: Optional[date]) -> bool:
    return (start is None or day >= start) and (end is None or day <= end)


def _add_amount(totals: Dict[Currency, Money], amount: Money) -> None:
    totals[amount.currency] = totals.get(amount.currency, Money.zero(amount.currency)) + amount


def _percentage(part: Optional[Money], total: Money) -> str:
    if part is None or total.is_zero():
        return "0.00"
    rate = part.amount / total.amount * 100
    return str(rate.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))

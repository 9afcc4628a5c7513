"""
Payment Plan Module

Installment schedules for collections tasks: plan creation, balance tracking,
payment application and next-due-date arithmetic.
"""

from decimal import Decimal
from datetime import date, timedelta
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional
from enum import Enum
import calendar
import logging

from .currency import Money, Currency
from .errors import ValidationError, NegativeBalanceError, PaymentExceedsBalanceError

logger = logging.getLogger("debt_collections.payment_plans")


class InstallmentFrequency(Enum):
    """Installment frequency options"""
    WEEKLY = "weekly"
    BI_WEEKLY = "bi-weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


@dataclass(frozen=True)
class PaymentPlan:
    """Installment plan owned by a single collections task"""
    total_amount: Money
    installment_amount: Money
    number_of_installments: int
    installment_frequency: InstallmentFrequency
    next_payment_date: Optional[date]
    payments_made: int = 0
    total_paid: Money = None
    irregular_schedule: bool = False  # installments do not multiply out to the total

    def __post_init__(self):
        if self.total_paid is None:
            object.__setattr__(self, 'total_paid', Money.zero(self.total_amount.currency))

    @property
    def currency(self) -> Currency:
        return self.total_amount.currency

    @property
    def installments_remaining(self) -> int:
        return self.number_of_installments - self.payments_made

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_amount': str(self.total_amount.amount),
            'installment_amount': str(self.installment_amount.amount),
            'currency': self.currency.code,
            'number_of_installments': self.number_of_installments,
            'installment_frequency': self.installment_frequency.value,
            'next_payment_date': self.next_payment_date.isoformat() if self.next_payment_date else None,
            'payments_made': self.payments_made,
            'total_paid': str(self.total_paid.amount),
            'irregular_schedule': self.irregular_schedule
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaymentPlan':
        currency = Currency[data['currency']]
        next_payment_date = None
        if data.get('next_payment_date'):
            next_payment_date = date.fromisoformat(data['next_payment_date'])

        return cls(
            total_amount=Money(Decimal(data['total_amount']), currency),
            installment_amount=Money(Decimal(data['installment_amount']), currency),
            number_of_installments=data['number_of_installments'],
            installment_frequency=InstallmentFrequency(data['installment_frequency']),
            next_payment_date=next_payment_date,
            payments_made=data.get('payments_made', 0),
            total_paid=Money(Decimal(data.get('total_paid', '0')), currency),
            irregular_schedule=data.get('irregular_schedule', False)
        )

    def to_snapshot(self) -> Dict[str, Any]:
        return self.to_dict()


@dataclass(frozen=True)
class ScheduledInstallment:
    """Projected future installment"""
    installment_number: int
    due_date: Optional[date]
    amount: Money


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, handling month-end edge cases"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def next_payment_date(current_date: date, frequency: InstallmentFrequency) -> date:
    """Calculate next payment date based on frequency"""
    if frequency == InstallmentFrequency.WEEKLY:
        return current_date + timedelta(days=7)
    elif frequency == InstallmentFrequency.BI_WEEKLY:
        return current_date + timedelta(days=14)
    elif frequency == InstallmentFrequency.MONTHLY:
        return add_months(current_date, 1)
    elif frequency == InstallmentFrequency.QUARTERLY:
        return add_months(current_date, 3)
    else:
        raise ValueError(f"Unsupported installment frequency: {frequency}")


class PaymentPlanEngine:
    """
    Owns payment plan arithmetic.

    Plans are immutable; every operation that changes a plan returns a new one.
    """

    def __init__(self, tolerance: Decimal = Decimal('0.01')):
        if not isinstance(tolerance, Decimal):
            tolerance = Decimal(str(tolerance))
        self.tolerance = tolerance

    def create_plan(
        self,
        total_amount: Money,
        installment_amount: Money,
        number_of_installments: int,
        frequency: InstallmentFrequency,
        first_payment_date: date
    ) -> PaymentPlan:
        """
        Create a new payment plan

        Args:
            total_amount: Total to be repaid
            installment_amount: Amount per installment
            number_of_installments: Scheduled installment count
            frequency: Installment frequency
            first_payment_date: Due date of the first installment

        Returns:
            New PaymentPlan

        Raises:
            ValidationError: If the plan parameters are invalid or the
                installments fall short of the total by more than the tolerance
        """
        if not isinstance(frequency, InstallmentFrequency):
            try:
                frequency = InstallmentFrequency(frequency)
            except ValueError:
                raise ValidationError(f"Invalid installment frequency '{frequency}'",
                                      errors=[{'field': 'installment_frequency', 'value': frequency}])

        if isinstance(number_of_installments, bool) or not isinstance(number_of_installments, int) \
                or number_of_installments < 1:
            raise ValidationError("Number of installments must be at least 1",
                                  errors=[{'field': 'number_of_installments', 'value': number_of_installments}])

        if installment_amount.currency != total_amount.currency:
            raise ValidationError("Installment currency must match plan currency",
                                  errors=[{'field': 'installment_amount'}])

        if not installment_amount.is_positive():
            raise ValidationError("Installment amount must be positive",
                                  errors=[{'field': 'installment_amount', 'value': str(installment_amount.amount)}])

        if not total_amount.is_positive():
            raise ValidationError("Plan total amount must be positive",
                                  errors=[{'field': 'total_amount', 'value': str(total_amount.amount)}])

        if first_payment_date is None:
            raise ValidationError("First payment date is required",
                                  errors=[{'field': 'next_payment_date'}])

        scheduled_total = installment_amount * number_of_installments
        shortfall = total_amount - scheduled_total

        if shortfall.amount > self.tolerance:
            raise ValidationError(
                f"{number_of_installments} installments of {installment_amount.to_string()} "
                f"fall short of {total_amount.to_string()} by {shortfall.to_string()}",
                errors=[{'field': 'installment_amount', 'shortfall': str(shortfall.amount)}]
            )

        irregular = scheduled_total != total_amount
        if irregular:
            logger.warning(
                "Irregular payment plan: %d x %s scheduled against total %s",
                number_of_installments, installment_amount.to_string(), total_amount.to_string()
            )

        return PaymentPlan(
            total_amount=total_amount,
            installment_amount=installment_amount,
            number_of_installments=number_of_installments,
            installment_frequency=frequency,
            next_payment_date=first_payment_date,
            payments_made=0,
            total_paid=Money.zero(total_amount.currency),
            irregular_schedule=irregular
        )

    def remaining_balance(self, plan: PaymentPlan) -> Money:
        """Amount still owed on the plan"""
        return plan.total_amount.subtract_non_negative(plan.total_paid)

    def is_complete(self, plan: PaymentPlan) -> bool:
        """True once the plan is fully paid"""
        return plan.total_paid == plan.total_amount

    def apply_payment(self, plan: PaymentPlan, payment_amount: Money) -> PaymentPlan:
        """
        Apply a payment and return the updated plan

        Raises:
            ValidationError: Non-positive amount, wrong currency, or a final
                installment that does not settle the balance
            PaymentExceedsBalanceError: Payment larger than remaining balance
        """
        if payment_amount.currency != plan.currency:
            raise ValidationError(
                f"Payment currency {payment_amount.currency.code} does not match plan currency {plan.currency.code}",
                errors=[{'field': 'payment_amount'}]
            )

        if not payment_amount.is_positive():
            raise ValidationError("Payment amount must be positive",
                                  errors=[{'field': 'payment_amount', 'value': str(payment_amount.amount)}])

        remaining = self.remaining_balance(plan)
        try:
            new_remaining = remaining.subtract_non_negative(payment_amount)
        except NegativeBalanceError:
            raise PaymentExceedsBalanceError(payment_amount, remaining)

        is_final_installment = plan.payments_made + 1 >= plan.number_of_installments
        if is_final_installment and not new_remaining.is_zero():
            raise ValidationError(
                f"Final installment must settle the remaining balance of {remaining.to_string()}",
                errors=[{'field': 'payment_amount', 'remaining': str(remaining.amount)}]
            )

        completed = new_remaining.is_zero()
        if completed or plan.next_payment_date is None:
            new_next_date = None
        else:
            new_next_date = next_payment_date(plan.next_payment_date, plan.installment_frequency)

        return replace(
            plan,
            total_paid=plan.total_paid + payment_amount,
            payments_made=plan.payments_made + 1,
            next_payment_date=new_next_date
        )

    def schedule(self, plan: PaymentPlan) -> List[ScheduledInstallment]:
        """Project the remaining installments; the last one absorbs any remainder"""
        entries = []
        remaining = self.remaining_balance(plan)
        due = plan.next_payment_date
        installments_left = plan.installments_remaining

        for offset in range(installments_left):
            if remaining.is_zero():
                break
            if offset == installments_left - 1:
                amount = remaining
            else:
                amount = min(plan.installment_amount, remaining)
            entries.append(ScheduledInstallment(
                installment_number=plan.payments_made + offset + 1,
                due_date=due,
                amount=amount
            ))
            remaining = remaining - amount
            if due is not None:
                due = next_payment_date(due, plan.installment_frequency)

        return entries

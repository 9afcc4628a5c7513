"""
Test suite for payment plan module

Tests plan creation rules, payment application, balance invariants and
due date arithmetic.
"""

import pytest
from decimal import Decimal
from datetime import date

from debt_collections.currency import Money, Currency
from debt_collections.errors import ValidationError, NegativeBalanceError, PaymentExceedsBalanceError
from debt_collections.payment_plans import (
    PaymentPlan, PaymentPlanEngine, InstallmentFrequency, add_months, next_payment_date
)


def usd(amount: str) -> Money:
    return Money(Decimal(amount), Currency.USD)


class TestDateArithmetic:
    """Test next due date calculation"""

    def test_weekly_and_bi_weekly(self):
        assert next_payment_date(date(2024, 1, 1), InstallmentFrequency.WEEKLY) == date(2024, 1, 8)
        assert next_payment_date(date(2024, 1, 1), InstallmentFrequency.BI_WEEKLY) == date(2024, 1, 15)

    def test_monthly_clamps_to_month_end(self):
        assert next_payment_date(date(2024, 1, 15), InstallmentFrequency.MONTHLY) == date(2024, 2, 15)
        assert next_payment_date(date(2024, 1, 31), InstallmentFrequency.MONTHLY) == date(2024, 2, 29)
        assert next_payment_date(date(2023, 1, 31), InstallmentFrequency.MONTHLY) == date(2023, 2, 28)

    def test_quarterly(self):
        assert next_payment_date(date(2024, 11, 30), InstallmentFrequency.QUARTERLY) == date(2025, 2, 28)

    def test_add_months_crosses_years(self):
        assert add_months(date(2024, 12, 10), 1) == date(2025, 1, 10)
        assert add_months(date(2024, 3, 31), 13) == date(2025, 4, 30)

    def test_frequency_values(self):
        assert InstallmentFrequency("bi-weekly") == InstallmentFrequency.BI_WEEKLY


class TestCreatePlan:
    """Test plan creation rules"""

    def setup_method(self):
        """Set up test fixtures"""
        self.engine = PaymentPlanEngine(Decimal('0.01'))

    def test_valid_plan(self):
        plan = self.engine.create_plan(usd('1200'), usd('400'), 3, InstallmentFrequency.MONTHLY, date(2024, 1, 1))

        assert plan.total_paid == usd('0')
        assert plan.payments_made == 0
        assert plan.next_payment_date == date(2024, 1, 1)
        assert plan.irregular_schedule is False
        assert self.engine.remaining_balance(plan) == usd('1200')

    def test_string_frequency_is_accepted(self):
        plan = self.engine.create_plan(usd('100'), usd('50'), 2, "weekly", date(2024, 1, 1))
        assert plan.installment_frequency == InstallmentFrequency.WEEKLY

    @pytest.mark.parametrize("installment, count", [("0", 3), ("-10", 3), ("400", 0)])
    def test_invalid_parameters(self, installment, count):
        with pytest.raises(ValidationError):
            self.engine.create_plan(usd('1200'), usd(installment), count, InstallmentFrequency.MONTHLY, date(2024, 1, 1))

    def test_shortfall_beyond_tolerance_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            self.engine.create_plan(usd('1000'), usd('300'), 3, InstallmentFrequency.MONTHLY, date(2024, 1, 1))
        assert exc_info.value.errors[0]['shortfall'] == '100.00'

    def test_shortfall_within_tolerance_is_irregular(self):
        plan = self.engine.create_plan(usd('100.00'), usd('33.33'), 3, InstallmentFrequency.MONTHLY, date(2024, 1, 1))
        assert plan.irregular_schedule is True

    def test_overshoot_is_irregular_and_logged(self, caplog):
        with caplog.at_level("WARNING", logger="debt_collections.payment_plans"):
            plan = self.engine.create_plan(usd('1000'), usd('400'), 3, InstallmentFrequency.MONTHLY, date(2024, 1, 1))

        assert plan.irregular_schedule is True
        assert "Irregular payment plan" in caplog.text

    def test_plan_dict_round_trip(self):
        plan = self.engine.create_plan(usd('1000'), usd('400'), 3, InstallmentFrequency.QUARTERLY, date(2024, 1, 31))
        assert PaymentPlan.from_dict(plan.to_dict()) == plan


class TestApplyPayment:
    """Test payment application"""

    def setup_method(self):
        """Set up test fixtures"""
        self.engine = PaymentPlanEngine()
        self.plan = self.engine.create_plan(usd('1200'), usd('400'), 3, InstallmentFrequency.MONTHLY, date(2024, 1, 1))

    def test_payment_returns_new_plan(self):
        updated = self.engine.apply_payment(self.plan, usd('400'))

        assert updated.total_paid == usd('400')
        assert updated.payments_made == 1
        assert updated.next_payment_date == date(2024, 2, 1)
        assert self.engine.remaining_balance(updated) == usd('800')

        # Original untouched
        assert self.plan.total_paid == usd('0')
        assert self.plan.payments_made == 0

    def test_full_payment_completes_plan(self):
        plan = self.plan
        for _ in range(3):
            plan = self.engine.apply_payment(plan, usd('400'))

        assert self.engine.is_complete(plan)
        assert plan.next_payment_date is None
        assert self.engine.remaining_balance(plan).is_zero()

    def test_single_payment_of_everything(self):
        plan = self.engine.apply_payment(self.plan, usd('1200'))
        assert self.engine.is_complete(plan)
        assert plan.payments_made == 1

    def test_overpayment_rejected(self):
        with pytest.raises(PaymentExceedsBalanceError) as exc_info:
            self.engine.apply_payment(self.plan, usd('1200.01'))

        assert isinstance(exc_info.value, NegativeBalanceError)
        assert exc_info.value.remaining == usd('1200')

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_non_positive_rejected(self, amount):
        with pytest.raises(ValidationError):
            self.engine.apply_payment(self.plan, usd(amount))

    def test_currency_mismatch_rejected(self):
        with pytest.raises(ValidationError):
            self.engine.apply_payment(self.plan, Money(Decimal('400'), Currency.EUR))

    def test_final_installment_must_settle(self):
        plan = self.engine.apply_payment(self.plan, usd('400'))
        plan = self.engine.apply_payment(plan, usd('400'))

        with pytest.raises(ValidationError):
            self.engine.apply_payment(plan, usd('399.99'))

        settled = self.engine.apply_payment(plan, usd('400'))
        assert settled.payments_made == settled.number_of_installments

    def test_balance_invariant_holds(self):
        plan = self.plan
        for amount in ('100', '250.50', '849.50'):
            plan = self.engine.apply_payment(plan, usd(amount))
            assert usd('0') <= plan.total_paid <= plan.total_amount
            assert plan.payments_made <= plan.number_of_installments
        assert self.engine.is_complete(plan)


class TestSchedule:
    """Test projected installments"""

    def test_schedule_of_fresh_plan(self):
        engine = PaymentPlanEngine()
        plan = engine.create_plan(usd('1000'), usd('400'), 3, InstallmentFrequency.MONTHLY, date(2024, 1, 31))

        schedule = engine.schedule(plan)
        assert [item.due_date for item in schedule] == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 29)]
        assert [item.amount for item in schedule] == [usd('400'), usd('400'), usd('200')]
        assert [item.installment_number for item in schedule] == [1, 2, 3]

    def test_last_installment_absorbs_shortfall(self):
        engine = PaymentPlanEngine()
        plan = engine.create_plan(usd('100.00'), usd('33.33'), 3, InstallmentFrequency.WEEKLY, date(2024, 1, 1))

        schedule = engine.schedule(plan)
        assert schedule[-1].amount == usd('33.34')

    def test_schedule_after_payment(self):
        engine = PaymentPlanEngine()
        plan = engine.create_plan(usd('1200'), usd('400'), 3, InstallmentFrequency.MONTHLY, date(2024, 1, 1))
        plan = engine.apply_payment(plan, usd('400'))

        schedule = engine.schedule(plan)
        assert len(schedule) == 2
        assert schedule[0].installment_number == 2
        assert schedule[0].due_date == date(2024, 2, 1)

"""
Pydantic schemas for collections task input payloads

Field names are snake_case; camelCase aliases are accepted as well so API
layers can forward JSON bodies unchanged.
"""

import datetime as dt
from decimal import Decimal
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .currency import Money, Currency, currency_from_code, decimal_from_string
from .errors import ValidationError
from .references import Reference, as_reference
from .payment_plans import InstallmentFrequency
from .communications import (
    CommunicationMethod, CommunicationDirection, CommunicationOutcome,
    CommunicationRecord, build_record
)
from .risk import RiskLevel, EscalationAction, EscalationRule
from .tasks import TaskStatus, TaskPriority, CollectionsType, MAX_PAYMENT_TERMS_LENGTH

ModelT = TypeVar("ModelT", bound=BaseModel)

# Update fields that may be explicitly cleared with null
NULLABLE_UPDATE_FIELDS = frozenset({"description", "payment_terms"})


class CollectionsModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MoneyModel(CollectionsModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: Optional[str] = Field(None, description="Currency code; defaults to the configured currency")

    @model_validator(mode="before")
    @classmethod
    def _accept_scalars(cls, value: Any) -> Any:
        if isinstance(value, Money):
            return {"amount": str(value.amount), "currency": value.currency.code}
        if isinstance(value, float):
            raise ValueError("Money amounts must not be floats; send a decimal string")
        if isinstance(value, (Decimal, int, str)) and not isinstance(value, bool):
            return {"amount": str(value)}
        return value

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, value: Any) -> str:
        if isinstance(value, float):
            raise ValueError("Money amounts must not be floats; send a decimal string")
        if isinstance(value, (Decimal, int)) and not isinstance(value, bool):
            value = str(value)
        if not isinstance(value, str):
            raise ValueError("amount must be a decimal string")
        return str(decimal_from_string(value))

    @field_validator("currency")
    @classmethod
    def _known_currency(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return currency_from_code(value).code

    def to_money(self, default_currency: Union[str, Currency] = "USD") -> Money:
        if isinstance(default_currency, Currency):
            default_currency = default_currency.code
        return Money(Decimal(self.amount), currency_from_code(self.currency or default_currency))


def _reference(value: Any, info) -> Optional[Reference]:
    if value is None and info.field_name == "assigned_by":
        return None
    return as_reference(value, info.field_name)


class PaymentPlanRequest(CollectionsModel):
    total_amount: Optional[MoneyModel] = None  # defaults to the task amount
    installment_amount: MoneyModel
    number_of_installments: int
    installment_frequency: InstallmentFrequency = InstallmentFrequency.MONTHLY
    next_payment_date: dt.date


class EscalationRuleRequest(CollectionsModel):
    trigger_days: int = Field(..., ge=0)
    action: EscalationAction

    def to_rule(self) -> EscalationRule:
        return EscalationRule(trigger_days=self.trigger_days, action=self.action)


class CreateTaskRequest(CollectionsModel):
    customer: Any
    title: str
    description: str = ""
    collections_type: CollectionsType
    amount: MoneyModel
    due_date: dt.date
    assigned_to: Any
    assigned_by: Optional[Any] = None  # defaults to the creating user
    priority: TaskPriority = TaskPriority.MEDIUM
    risk_level: RiskLevel = RiskLevel.MEDIUM
    escalation_level: int = Field(1, ge=1, le=5)
    payment_terms: Optional[str] = Field(None, max_length=MAX_PAYMENT_TERMS_LENGTH)
    payment_plan: Optional[PaymentPlanRequest] = None
    auto_escalate: bool = True
    max_reminders: Optional[int] = Field(None, ge=0)
    escalation_rules: List[EscalationRuleRequest] = Field(default_factory=list)

    normalize_references = field_validator("customer", "assigned_to", "assigned_by")(_reference)

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("title must not be blank")
        return value.strip()


class UpdateTaskRequest(CollectionsModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    title: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[MoneyModel] = None
    due_date: Optional[dt.date] = None
    assigned_to: Optional[Any] = None
    priority: Optional[TaskPriority] = None
    payment_terms: Optional[str] = Field(None, max_length=MAX_PAYMENT_TERMS_LENGTH)
    risk_level: Optional[RiskLevel] = None
    escalation_level: Optional[int] = Field(None, ge=1, le=5)
    collections_type: Optional[CollectionsType] = None
    status: Optional[TaskStatus] = None
    auto_escalate: Optional[bool] = None

    normalize_references = field_validator("assigned_to")(_reference)

    def changes(self) -> Dict[str, Any]:
        """Only the fields the caller actually sent"""
        return {name: getattr(self, name) for name in self.model_fields_set}


class CommunicationRequest(CollectionsModel):
    method: CommunicationMethod
    direction: CommunicationDirection
    summary: str
    outcome: CommunicationOutcome
    date: Optional[dt.datetime] = None
    next_action: Optional[str] = None
    next_action_date: Optional[dt.date] = None

    def to_record(self, performed_by: Optional[str] = None) -> CommunicationRecord:
        return build_record(
            method=self.method,
            direction=self.direction,
            summary=self.summary,
            outcome=self.outcome,
            date=self.date,
            next_action=self.next_action,
            next_action_date=self.next_action_date,
            performed_by=performed_by
        )


def parse_model(model_cls: Type[ModelT], data: Any) -> ModelT:
    """
    Validate a payload against a schema

    Raises:
        ValidationError: With one entry per pydantic error
    """
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        errors = [
            {
                'field': ".".join(str(part) for part in error['loc']),
                'message': error['msg'],
                'type': error['type']
            }
            for error in e.errors()
        ]
        fields = ", ".join(error['field'] or '<root>' for error in errors)
        raise ValidationError(f"Invalid {model_cls.__name__}: {fields}", errors=errors)

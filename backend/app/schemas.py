from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from .constants import (
    PATTERN_ALIASES,
    WEEKDAYS,
    InvoiceStatus,
    OffsetUnit,
    PeriodStatus,
    PeriodType,
    RecurrencePattern,
    TaskStatus,
    WorkStatus,
)


class ApiModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


# === Catalog ================================================================

class CustomerCreate(ApiModel):
    name: str
    email: Optional[EmailStr] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be empty")
        return value


class Customer(ApiModel):
    id: str
    name: str
    email: str = ""
    createdAt: Optional[datetime] = Field(default=None, alias="createdAt")


class ServiceCreate(ApiModel):
    name: str
    description: Optional[str] = None
    defaultPrice: Optional[Decimal] = Field(default=None, alias="defaultPrice", ge=0)
    taxRate: Decimal = Field(default=Decimal("0"), alias="taxRate", ge=0, le=100)
    incomeAccount: Optional[str] = Field(default=None, alias="incomeAccount")

    @field_validator("incomeAccount", "description", mode="before")
    @classmethod
    def _normalize_optional(cls, value: Any) -> Any:
        return _blank_to_none(value)


class Service(ApiModel):
    id: str
    name: str
    description: Optional[str] = None
    defaultPrice: Optional[Decimal] = Field(default=None, alias="defaultPrice")
    taxRate: Decimal = Field(default=Decimal("0"), alias="taxRate")
    incomeAccount: Optional[str] = Field(default=None, alias="incomeAccount")


class DueRuleFields(ApiModel):
    """Due-date rule shared by service task templates and per-work overrides."""

    exactDueDate: Optional[date] = Field(default=None, alias="exactDueDate")
    dueMonth: Optional[int] = Field(default=None, alias="dueMonth", ge=1, le=12)
    dueDay: Optional[int] = Field(default=None, alias="dueDay", ge=1, le=31)
    dueWeekday: Optional[str] = Field(default=None, alias="dueWeekday")
    dueOffsetValue: Optional[int] = Field(default=None, alias="dueOffsetValue")
    dueOffsetUnit: Optional[OffsetUnit] = Field(default=None, alias="dueOffsetUnit")

    @field_validator("dueWeekday", mode="before")
    @classmethod
    def _normalize_weekday(cls, value: Any) -> Optional[str]:
        value = _blank_to_none(value)
        if value is None:
            return None
        normalized = str(value).lower()
        if normalized not in WEEKDAYS:
            raise ValueError(f"dueWeekday must be one of {', '.join(WEEKDAYS)}")
        return normalized

    @field_validator("dueOffsetUnit", mode="before")
    @classmethod
    def _normalize_unit(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        return value.lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _single_base_rule(self) -> "DueRuleFields":
        # dueDay pairs with dueMonth; alone it is a day-of-month rule.
        active = [
            name
            for name, present in (
                ("exactDueDate", self.exactDueDate is not None),
                ("dueMonth", self.dueMonth is not None),
                ("dueWeekday", self.dueWeekday is not None),
                ("dueDay", self.dueDay is not None and self.dueMonth is None),
            )
            if present
        ]
        if len(active) > 1:
            raise ValueError(f"Only one due-date rule may be set, got {', '.join(active)}")
        return self


class ServiceTaskCreate(DueRuleFields):
    title: str
    description: Optional[str] = None
    isActive: bool = Field(default=True, alias="isActive")
    sortOrder: int = Field(default=0, alias="sortOrder")
    startDate: Optional[date] = Field(default=None, alias="startDate")


class ServiceTask(ServiceTaskCreate):
    id: str
    serviceId: str = Field(alias="serviceId")


class WorkTaskConfigUpdate(DueRuleFields):
    pass


class WorkTaskConfig(DueRuleFields):
    id: str
    workId: str = Field(alias="workId")
    serviceTaskId: str = Field(alias="serviceTaskId")


class WorkTaskTemplateCreate(ApiModel):
    title: str
    description: Optional[str] = None
    isActive: bool = Field(default=True, alias="isActive")
    sortOrder: int = Field(default=0, alias="sortOrder")
    dueOffsetValue: Optional[int] = Field(default=None, alias="dueOffsetValue")
    dueOffsetUnit: Optional[OffsetUnit] = Field(default=None, alias="dueOffsetUnit")


class WorkTaskTemplate(WorkTaskTemplateCreate):
    id: str
    workId: str = Field(alias="workId")


# === Works and periods ======================================================

class WorkCreate(ApiModel):
    customerId: str = Field(alias="customerId")
    serviceId: Optional[str] = Field(default=None, alias="serviceId")
    title: str = ""
    isRecurring: bool = Field(default=False, alias="isRecurring")
    recurrencePattern: RecurrencePattern = Field(default=RecurrencePattern.NONE, alias="recurrencePattern")
    periodType: PeriodType = Field(default=PeriodType.CURRENT_PERIOD, alias="periodType")
    startDate: Optional[date] = Field(default=None, alias="startDate")
    endDate: Optional[date] = Field(default=None, alias="endDate")
    financialYearStartMonth: Optional[int] = Field(default=None, alias="financialYearStartMonth", ge=1, le=12)
    weeklyStartDay: str = Field(default="monday", alias="weeklyStartDay")
    billingAmount: Optional[Decimal] = Field(default=None, alias="billingAmount", ge=0)
    autoBill: bool = Field(default=True, alias="autoBill")

    @field_validator("recurrencePattern", mode="before")
    @classmethod
    def _normalize_pattern(cls, value: Any) -> Any:
        if value is None:
            return RecurrencePattern.NONE
        if isinstance(value, str):
            raw = value.strip().lower()
            return PATTERN_ALIASES.get(raw, raw)
        return value

    @field_validator("weeklyStartDay", mode="before")
    @classmethod
    def _normalize_week_start(cls, value: Any) -> str:
        normalized = (_blank_to_none(value) or "monday").lower()
        if normalized not in WEEKDAYS:
            raise ValueError(f"weeklyStartDay must be one of {', '.join(WEEKDAYS)}")
        return normalized

    @model_validator(mode="after")
    def _check_term(self) -> "WorkCreate":
        if self.startDate and self.endDate and self.endDate < self.startDate:
            raise ValueError("endDate must not be before startDate")
        return self


class Work(ApiModel):
    id: str
    customerId: str = Field(alias="customerId")
    serviceId: Optional[str] = Field(default=None, alias="serviceId")
    title: str = ""
    status: WorkStatus = WorkStatus.ACTIVE
    isRecurring: bool = Field(alias="isRecurring")
    recurrencePattern: str = Field(alias="recurrencePattern")
    periodType: str = Field(alias="periodType")
    startDate: Optional[date] = Field(default=None, alias="startDate")
    endDate: Optional[date] = Field(default=None, alias="endDate")
    financialYearStartMonth: Optional[int] = Field(default=None, alias="financialYearStartMonth")
    weeklyStartDay: str = Field(default="monday", alias="weeklyStartDay")
    billingAmount: Optional[Decimal] = Field(default=None, alias="billingAmount")
    autoBill: bool = Field(default=True, alias="autoBill")
    periodCount: int = Field(default=0, alias="periodCount")


class Period(ApiModel):
    id: str
    workId: str = Field(alias="workId")
    periodName: str = Field(alias="periodName")
    periodStartDate: date = Field(alias="periodStartDate")
    periodEndDate: date = Field(alias="periodEndDate")
    status: PeriodStatus
    totalTasks: int = Field(default=0, alias="totalTasks")
    completedTasks: int = Field(default=0, alias="completedTasks")
    allTasksCompleted: bool = Field(default=False, alias="allTasksCompleted")
    isOverdue: bool = Field(default=False, alias="isOverdue")
    billingAmount: Optional[Decimal] = Field(default=None, alias="billingAmount")
    isBilled: bool = Field(default=False, alias="isBilled")
    invoiceId: Optional[str] = Field(default=None, alias="invoiceId")
    completedAt: Optional[datetime] = Field(default=None, alias="completedAt")


class PeriodTaskCreate(ApiModel):
    title: str
    description: Optional[str] = None
    dueDate: Optional[date] = Field(default=None, alias="dueDate")
    sortOrder: int = Field(default=0, alias="sortOrder")

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be empty")
        return value


class PeriodTask(ApiModel):
    id: str
    periodId: str = Field(alias="periodId")
    serviceTaskId: Optional[str] = Field(default=None, alias="serviceTaskId")
    workTaskTemplateId: Optional[str] = Field(default=None, alias="workTaskTemplateId")
    title: str
    description: Optional[str] = None
    dueDate: Optional[date] = Field(default=None, alias="dueDate")
    status: TaskStatus
    sortOrder: int = Field(default=0, alias="sortOrder")
    isOverdue: bool = Field(default=False, alias="isOverdue")
    completedAt: Optional[datetime] = Field(default=None, alias="completedAt")


class TaskStatusUpdate(ApiModel):
    status: TaskStatus


class TaskStatusResult(ApiModel):
    task: PeriodTask
    period: Period
    invoiceId: Optional[str] = Field(default=None, alias="invoiceId")


# === Invoices ===============================================================

class InvoiceItem(ApiModel):
    id: str
    serviceId: Optional[str] = Field(default=None, alias="serviceId")
    description: str
    quantity: Decimal
    unitPrice: Decimal = Field(alias="unitPrice")
    amount: Decimal


class Invoice(ApiModel):
    id: str
    invoiceNumber: str = Field(alias="invoiceNumber")
    customerId: str = Field(alias="customerId")
    workId: Optional[str] = Field(default=None, alias="workId")
    periodId: Optional[str] = Field(default=None, alias="periodId")
    invoiceDate: date = Field(alias="invoiceDate")
    dueDate: date = Field(alias="dueDate")
    subtotal: Decimal
    taxRate: Decimal = Field(alias="taxRate")
    taxAmount: Decimal = Field(alias="taxAmount")
    totalAmount: Decimal = Field(alias="totalAmount")
    status: InvoiceStatus
    notes: Optional[str] = None
    incomeAccount: Optional[str] = Field(default=None, alias="incomeAccount")
    items: List[InvoiceItem] = Field(default_factory=list)


# === Jobs ===================================================================

class BackfillResult(ApiModel):
    created: int


class SchedulerRunResult(ApiModel):
    runDate: date = Field(alias="runDate")
    periodsCreated: Dict[str, int] = Field(default_factory=dict, alias="periodsCreated")
    totalCreated: int = Field(default=0, alias="totalCreated")
    overdueChanged: int = Field(default=0, alias="overdueChanged")
    failedWorks: List[str] = Field(default_factory=list, alias="failedWorks")

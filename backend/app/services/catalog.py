from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import orm_models
from ..schemas import (
    Customer,
    CustomerCreate,
    DueRuleFields,
    Invoice,
    InvoiceItem,
    Period,
    PeriodTask,
    Service,
    ServiceCreate,
    ServiceTask,
    ServiceTaskCreate,
    Work,
    WorkTaskConfig,
    WorkTaskConfigUpdate,
    WorkTaskTemplate,
    WorkTaskTemplateCreate,
)


@dataclass
class ServiceError(Exception):
    code: str
    message: str
    details: dict | None = None

    def to_dict(self) -> dict:
        payload = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


# === Mappers ================================================================

def _enum_value(value):
    return getattr(value, "value", value)


def customer_to_schema(model: orm_models.CustomerORM) -> Customer:
    return Customer(id=model.id, name=model.name, email=model.email or "", createdAt=model.created_at)


def service_to_schema(model: orm_models.ServiceORM) -> Service:
    return Service(
        id=model.id,
        name=model.name,
        description=model.description,
        defaultPrice=model.default_price,
        taxRate=model.tax_rate or 0,
        incomeAccount=model.income_account,
    )


def _rule_fields(model) -> dict:
    return {
        "exactDueDate": model.exact_due_date,
        "dueMonth": model.due_month,
        "dueDay": model.due_day,
        "dueWeekday": model.due_weekday,
        "dueOffsetValue": model.due_offset_value,
        "dueOffsetUnit": model.due_offset_unit,
    }


def service_task_to_schema(model: orm_models.ServiceTaskORM) -> ServiceTask:
    return ServiceTask(
        id=model.id,
        serviceId=model.service_id,
        title=model.title,
        description=model.description,
        isActive=model.is_active,
        sortOrder=model.sort_order or 0,
        startDate=model.start_date,
        **_rule_fields(model),
    )


def task_config_to_schema(model: orm_models.WorkTaskConfigORM) -> WorkTaskConfig:
    return WorkTaskConfig(
        id=model.id,
        workId=model.work_id,
        serviceTaskId=model.service_task_id,
        **_rule_fields(model),
    )


def work_template_to_schema(model: orm_models.WorkTaskTemplateORM) -> WorkTaskTemplate:
    return WorkTaskTemplate(
        id=model.id,
        workId=model.work_id,
        title=model.title,
        description=model.description,
        isActive=model.is_active,
        sortOrder=model.sort_order or 0,
        dueOffsetValue=model.due_offset_value,
        dueOffsetUnit=model.due_offset_unit,
    )


def work_to_schema(model: orm_models.WorkORM, *, period_count: int = 0) -> Work:
    return Work(
        id=model.id,
        customerId=model.customer_id,
        serviceId=model.service_id,
        title=model.title or "",
        status=model.status,
        isRecurring=model.is_recurring,
        recurrencePattern=model.recurrence_pattern,
        periodType=model.period_type,
        startDate=model.start_date,
        endDate=model.end_date,
        financialYearStartMonth=model.financial_year_start_month,
        weeklyStartDay=model.weekly_start_day or "monday",
        billingAmount=model.billing_amount,
        autoBill=model.auto_bill,
        periodCount=period_count,
    )


def period_to_schema(model: orm_models.PeriodORM) -> Period:
    return Period(
        id=model.id,
        workId=model.work_id,
        periodName=model.period_name,
        periodStartDate=model.period_start_date,
        periodEndDate=model.period_end_date,
        status=model.status,
        totalTasks=model.total_tasks or 0,
        completedTasks=model.completed_tasks or 0,
        allTasksCompleted=model.all_tasks_completed,
        isOverdue=model.is_overdue,
        billingAmount=model.billing_amount,
        isBilled=model.is_billed,
        invoiceId=model.invoice_id,
        completedAt=model.completed_at,
    )


def period_task_to_schema(model: orm_models.PeriodTaskORM) -> PeriodTask:
    return PeriodTask(
        id=model.id,
        periodId=model.period_id,
        serviceTaskId=model.service_task_id,
        workTaskTemplateId=model.work_task_template_id,
        title=model.title,
        description=model.description,
        dueDate=model.due_date,
        status=model.status,
        sortOrder=model.sort_order or 0,
        isOverdue=model.is_overdue,
        completedAt=model.completed_at,
    )


def invoice_to_schema(model: orm_models.InvoiceORM) -> Invoice:
    return Invoice(
        id=model.id,
        invoiceNumber=model.invoice_number,
        customerId=model.customer_id,
        workId=model.work_id,
        periodId=model.period_id,
        invoiceDate=model.invoice_date,
        dueDate=model.due_date,
        subtotal=model.subtotal,
        taxRate=model.tax_rate,
        taxAmount=model.tax_amount,
        totalAmount=model.total_amount,
        status=model.status,
        notes=model.notes,
        incomeAccount=model.income_account,
        items=[
            InvoiceItem(
                id=item.id,
                serviceId=item.service_id,
                description=item.description,
                quantity=item.quantity,
                unitPrice=item.unit_price,
                amount=item.amount,
            )
            for item in model.items
        ],
    )


# === Customers and services =================================================

def list_customers(session: Session) -> list[Customer]:
    records = session.execute(select(orm_models.CustomerORM).order_by(orm_models.CustomerORM.name)).scalars()
    return [customer_to_schema(record) for record in records]


def create_customer(session: Session, payload: CustomerCreate) -> Customer:
    model = orm_models.CustomerORM(name=payload.name, email=payload.email or "")
    session.add(model)
    session.flush()
    return customer_to_schema(model)


def get_customer_record(session: Session, customer_id: str) -> orm_models.CustomerORM:
    record = session.get(orm_models.CustomerORM, customer_id)
    if not record:
        raise ServiceError("not_found", "Customer not found", {"customerId": customer_id})
    return record


def list_services(session: Session) -> list[Service]:
    records = session.execute(select(orm_models.ServiceORM).order_by(orm_models.ServiceORM.name)).scalars()
    return [service_to_schema(record) for record in records]


def create_service(session: Session, payload: ServiceCreate) -> Service:
    name = payload.name.strip()
    if not name:
        raise ServiceError("validation_failed", "Service name is required", {"name": "required"})
    model = orm_models.ServiceORM(
        name=name,
        description=payload.description,
        default_price=payload.defaultPrice,
        tax_rate=payload.taxRate,
        income_account=payload.incomeAccount,
    )
    session.add(model)
    session.flush()
    return service_to_schema(model)


def get_service_record(session: Session, service_id: str) -> orm_models.ServiceORM:
    record = session.get(orm_models.ServiceORM, service_id)
    if not record:
        raise ServiceError("not_found", "Service not found", {"serviceId": service_id})
    return record


# === Task templates =========================================================

def _apply_rule(model, payload: DueRuleFields) -> None:
    model.exact_due_date = payload.exactDueDate
    model.due_month = payload.dueMonth
    model.due_day = payload.dueDay
    model.due_weekday = payload.dueWeekday
    model.due_offset_value = payload.dueOffsetValue
    model.due_offset_unit = _enum_value(payload.dueOffsetUnit)


def list_service_tasks(session: Session, service_id: str) -> list[ServiceTask]:
    service = get_service_record(session, service_id)
    return [service_task_to_schema(task) for task in service.tasks]


def create_service_task(session: Session, service_id: str, payload: ServiceTaskCreate) -> ServiceTask:
    get_service_record(session, service_id)
    title = payload.title.strip()
    if not title:
        raise ServiceError("validation_failed", "Task title is required", {"title": "required"})
    model = orm_models.ServiceTaskORM(
        service_id=service_id,
        title=title,
        description=payload.description,
        is_active=payload.isActive,
        sort_order=payload.sortOrder,
        start_date=payload.startDate,
    )
    _apply_rule(model, payload)
    session.add(model)
    session.flush()
    return service_task_to_schema(model)


def get_work_record(session: Session, work_id: str) -> orm_models.WorkORM:
    record = session.get(orm_models.WorkORM, work_id)
    if not record:
        raise ServiceError("not_found", "Work not found", {"workId": work_id})
    return record


def upsert_task_config(
    session: Session,
    work_id: str,
    service_task_id: str,
    payload: WorkTaskConfigUpdate,
) -> WorkTaskConfig:
    work = get_work_record(session, work_id)
    template = session.get(orm_models.ServiceTaskORM, service_task_id)
    if template is None or template.service_id != work.service_id:
        raise ServiceError(
            "not_found",
            "Service task not found for this work",
            {"serviceTaskId": service_task_id},
        )

    model = session.execute(
        select(orm_models.WorkTaskConfigORM)
        .where(orm_models.WorkTaskConfigORM.work_id == work_id)
        .where(orm_models.WorkTaskConfigORM.service_task_id == service_task_id)
    ).scalar_one_or_none()
    if model is None:
        model = orm_models.WorkTaskConfigORM(work_id=work_id, service_task_id=service_task_id)

    _apply_rule(model, payload)
    try:
        with session.begin_nested():
            session.add(model)
            session.flush()
    except IntegrityError as exc:
        raise ServiceError("unique_violation", "Task override already exists") from exc
    return task_config_to_schema(model)


def add_work_task_template(session: Session, work_id: str, payload: WorkTaskTemplateCreate) -> WorkTaskTemplate:
    get_work_record(session, work_id)
    title = payload.title.strip()
    if not title:
        raise ServiceError("validation_failed", "Task title is required", {"title": "required"})
    model = orm_models.WorkTaskTemplateORM(
        work_id=work_id,
        title=title,
        description=payload.description,
        is_active=payload.isActive,
        sort_order=payload.sortOrder,
        due_offset_value=payload.dueOffsetValue,
        due_offset_unit=_enum_value(payload.dueOffsetUnit),
    )
    session.add(model)
    session.flush()
    return work_template_to_schema(model)


# === Read helpers ===========================================================

def count_periods(session: Session, work_id: str) -> int:
    return int(
        session.execute(
            select(func.count(orm_models.PeriodORM.id)).where(orm_models.PeriodORM.work_id == work_id)
        ).scalar_one()
    )


def get_work(session: Session, work_id: str) -> Work:
    record = get_work_record(session, work_id)
    return work_to_schema(record, period_count=count_periods(session, work_id))


def list_periods(session: Session, work_id: str) -> list[Period]:
    get_work_record(session, work_id)
    records = session.execute(
        select(orm_models.PeriodORM)
        .where(orm_models.PeriodORM.work_id == work_id)
        .order_by(orm_models.PeriodORM.period_start_date)
    ).scalars()
    return [period_to_schema(record) for record in records]


def get_period_record(session: Session, period_id: str) -> orm_models.PeriodORM:
    record = session.get(orm_models.PeriodORM, period_id)
    if not record:
        raise ServiceError("not_found", "Period not found", {"periodId": period_id})
    return record


def list_period_tasks(session: Session, period_id: str) -> list[PeriodTask]:
    get_period_record(session, period_id)
    records = session.execute(
        select(orm_models.PeriodTaskORM)
        .where(orm_models.PeriodTaskORM.period_id == period_id)
        .order_by(orm_models.PeriodTaskORM.sort_order, orm_models.PeriodTaskORM.due_date, orm_models.PeriodTaskORM.id)
    ).scalars()
    return [period_task_to_schema(record) for record in records]


def get_task_record(session: Session, task_id: str) -> orm_models.PeriodTaskORM:
    record = session.get(orm_models.PeriodTaskORM, task_id)
    if not record:
        raise ServiceError("not_found", "Task not found", {"taskId": task_id})
    return record

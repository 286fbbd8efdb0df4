from __future__ import annotations

import os
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlalchemy.orm import Session

from .clock import Clock, system_clock
from .database import get_session, init_db
from .schemas import (
    BackfillResult,
    Customer,
    CustomerCreate,
    Invoice,
    Period,
    PeriodTask,
    PeriodTaskCreate,
    SchedulerRunResult,
    Service,
    ServiceCreate,
    ServiceTask,
    ServiceTaskCreate,
    TaskStatusResult,
    TaskStatusUpdate,
    Work,
    WorkCreate,
    WorkTaskConfig,
    WorkTaskConfigUpdate,
    WorkTaskTemplate,
    WorkTaskTemplateCreate,
)
from .services.backfill import backfill
from .services.catalog import (
    ServiceError,
    add_work_task_template,
    count_periods,
    create_customer,
    create_service,
    create_service_task,
    get_work,
    get_work_record,
    invoice_to_schema,
    list_customers,
    list_period_tasks,
    list_periods,
    list_service_tasks,
    list_services,
    period_task_to_schema,
    period_to_schema,
    upsert_task_config,
    work_to_schema,
)
from .services.invoices import list_invoices
from .services.lifecycle import (
    add_period_task,
    cancel_invoice,
    create_work,
    delete_invoice,
    delete_work,
    remove_period_task,
    run_scheduled_jobs,
    set_task_status,
)

app = FastAPI(title="Recurring Obligations Backend", version="0.1.0")


@app.on_event("startup")
def startup_event() -> None:  # pragma: no cover - side effect
    init_db()

cors_origins_env = os.getenv("BACKEND_CORS_ORIGINS")
if cors_origins_env:
    allow_origins = [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]
else:
    allow_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_clock() -> Clock:
    return system_clock


def _raise_service_error(error: ServiceError) -> None:
    status_map = {
        "validation_failed": status.HTTP_400_BAD_REQUEST,
        "unique_violation": status.HTTP_409_CONFLICT,
        "not_found": status.HTTP_404_NOT_FOUND,
    }
    http_status = status_map.get(error.code, status.HTTP_400_BAD_REQUEST)
    raise HTTPException(status_code=http_status, detail=error.to_dict())


@app.get("/health", tags=["system"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


# === Catalog ================================================================

@app.get("/customers", response_model=list[Customer], tags=["catalog"])
def api_list_customers(session: Session = Depends(get_session)) -> list[Customer]:
    return list_customers(session)


@app.post("/customers", response_model=Customer, status_code=201, tags=["catalog"])
def api_create_customer(payload: CustomerCreate, session: Session = Depends(get_session)) -> Customer:
    return create_customer(session, payload)


@app.get("/services", response_model=list[Service], tags=["catalog"])
def api_list_services(session: Session = Depends(get_session)) -> list[Service]:
    return list_services(session)


@app.post("/services", response_model=Service, status_code=201, tags=["catalog"])
def api_create_service(payload: ServiceCreate, session: Session = Depends(get_session)) -> Service:
    try:
        return create_service(session, payload)
    except ServiceError as error:
        _raise_service_error(error)


@app.get("/services/{service_id}/tasks", response_model=list[ServiceTask], tags=["catalog"])
def api_list_service_tasks(service_id: str, session: Session = Depends(get_session)) -> list[ServiceTask]:
    try:
        return list_service_tasks(session, service_id)
    except ServiceError as error:
        _raise_service_error(error)


@app.post(
    "/services/{service_id}/tasks",
    response_model=ServiceTask,
    status_code=201,
    tags=["catalog"],
)
def api_create_service_task(
    service_id: str,
    payload: ServiceTaskCreate,
    session: Session = Depends(get_session),
) -> ServiceTask:
    try:
        return create_service_task(session, service_id, payload)
    except ServiceError as error:
        _raise_service_error(error)


# === Works ==================================================================

@app.post("/works", response_model=Work, status_code=201, tags=["works"])
def api_create_work(
    payload: WorkCreate,
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> Work:
    try:
        work = create_work(session, payload, clock)
    except ServiceError as error:
        _raise_service_error(error)
    return work_to_schema(work, period_count=count_periods(session, work.id))


@app.get("/works/{work_id}", response_model=Work, tags=["works"])
def api_get_work(work_id: str, session: Session = Depends(get_session)) -> Work:
    try:
        return get_work(session, work_id)
    except ServiceError as error:
        _raise_service_error(error)


@app.delete("/works/{work_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["works"])
def api_delete_work(work_id: str, session: Session = Depends(get_session)) -> Response:
    try:
        delete_work(session, work_id)
    except ServiceError as error:
        _raise_service_error(error)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.put(
    "/works/{work_id}/task-configs/{service_task_id}",
    response_model=WorkTaskConfig,
    tags=["works"],
)
def api_upsert_task_config(
    work_id: str,
    service_task_id: str,
    payload: WorkTaskConfigUpdate,
    session: Session = Depends(get_session),
) -> WorkTaskConfig:
    try:
        return upsert_task_config(session, work_id, service_task_id, payload)
    except ServiceError as error:
        _raise_service_error(error)


@app.post(
    "/works/{work_id}/task-templates",
    response_model=WorkTaskTemplate,
    status_code=201,
    tags=["works"],
)
def api_add_work_task_template(
    work_id: str,
    payload: WorkTaskTemplateCreate,
    session: Session = Depends(get_session),
) -> WorkTaskTemplate:
    try:
        return add_work_task_template(session, work_id, payload)
    except ServiceError as error:
        _raise_service_error(error)


@app.post("/works/{work_id}/backfill", response_model=BackfillResult, tags=["works"])
def api_backfill_work(
    work_id: str,
    max_periods: Optional[int] = Query(default=None, alias="maxPeriods", ge=1),
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> BackfillResult:
    try:
        get_work_record(session, work_id)
    except ServiceError as error:
        _raise_service_error(error)
    created = backfill(session, work_id, clock, max_periods=max_periods)
    return BackfillResult(created=created)


@app.get("/works/{work_id}/periods", response_model=list[Period], tags=["periods"])
def api_list_periods(work_id: str, session: Session = Depends(get_session)) -> list[Period]:
    try:
        return list_periods(session, work_id)
    except ServiceError as error:
        _raise_service_error(error)


# === Periods and tasks ======================================================

@app.get("/periods/{period_id}/tasks", response_model=list[PeriodTask], tags=["periods"])
def api_list_period_tasks(period_id: str, session: Session = Depends(get_session)) -> list[PeriodTask]:
    try:
        return list_period_tasks(session, period_id)
    except ServiceError as error:
        _raise_service_error(error)


@app.post(
    "/periods/{period_id}/tasks",
    response_model=PeriodTask,
    status_code=201,
    tags=["periods"],
)
def api_add_period_task(
    period_id: str,
    payload: PeriodTaskCreate,
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> PeriodTask:
    try:
        task = add_period_task(session, period_id, payload, clock)
    except ServiceError as error:
        _raise_service_error(error)
    return period_task_to_schema(task)


@app.patch("/tasks/{task_id}/status", response_model=TaskStatusResult, tags=["periods"])
def api_set_task_status(
    task_id: str,
    payload: TaskStatusUpdate,
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> TaskStatusResult:
    try:
        outcome = set_task_status(session, task_id, payload.status, clock)
    except ServiceError as error:
        _raise_service_error(error)
    return TaskStatusResult(
        task=period_task_to_schema(outcome.task),
        period=period_to_schema(outcome.period),
        invoiceId=outcome.period.invoice_id,
    )


@app.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["periods"])
def api_remove_period_task(
    task_id: str,
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> Response:
    try:
        remove_period_task(session, task_id, clock)
    except ServiceError as error:
        _raise_service_error(error)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# === Invoices ===============================================================

@app.get("/invoices", response_model=list[Invoice], tags=["invoices"])
def api_list_invoices(
    work_id: Optional[str] = Query(default=None, alias="workId"),
    period_id: Optional[str] = Query(default=None, alias="periodId"),
    session: Session = Depends(get_session),
) -> list[Invoice]:
    return [invoice_to_schema(invoice) for invoice in list_invoices(session, work_id=work_id, period_id=period_id)]


@app.delete("/invoices/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["invoices"])
def api_delete_invoice(
    invoice_id: str,
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> Response:
    try:
        delete_invoice(session, invoice_id, clock)
    except ServiceError as error:
        _raise_service_error(error)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/invoices/{invoice_id}/cancel", response_model=Invoice, tags=["invoices"])
def api_cancel_invoice(
    invoice_id: str,
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> Invoice:
    try:
        invoice = cancel_invoice(session, invoice_id, clock)
    except ServiceError as error:
        _raise_service_error(error)
    return invoice_to_schema(invoice)


# === Scheduler ==============================================================

@app.post("/scheduler/run", response_model=SchedulerRunResult, tags=["scheduler"])
def api_run_scheduler(
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> SchedulerRunResult:
    report = run_scheduled_jobs(session, clock)
    return SchedulerRunResult(
        runDate=report.run_date,
        periodsCreated=report.periods_created,
        totalCreated=report.total_created,
        overdueChanged=report.overdue_changed,
        failedWorks=report.failed_works,
    )

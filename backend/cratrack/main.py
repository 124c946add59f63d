from __future__ import annotations

import datetime as dt
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import models
from .access import Principal, principal_for_user
from .config import settings
from .database import engine, get_db
from .middleware import RequestLoggingMiddleware
from .results import ErrorKind, Failure, Result
from .schemas import (
    EntryCreateRequest,
    EntryPageResponse,
    EntryResponse,
    EntryUpdateRequest,
    ErrorDetail,
    ErrorResponse,
    LedgerCommitResponse,
    ReportCreateRequest,
    ReportPageResponse,
    ReportResponse,
    ReportUpdateRequest,
)
from .services import (
    create_entry,
    create_report,
    delete_entry,
    delete_report,
    export_report,
    get_entry,
    get_report,
    list_entries,
    list_reports,
    lock_report,
    report_ledger,
    submit_report,
    update_entry,
    update_report,
)

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


configure_logging()
models.Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.app_name)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://127.0.0.1:5173", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_body(code: str, message: str, details: object = None) -> dict:
    return ErrorResponse(error=ErrorDetail(code=code, message=message, details=details)).model_dump(
        exclude_none=True
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict) and "code" in exc.detail:
        body = _error_body(exc.detail["code"], exc.detail.get("message", ""))
    else:
        body = _error_body(f"http_{exc.status_code}", str(exc.detail))
    return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.info("Request validation failed on %s: %s", request.url.path, errors)
    return JSONResponse(
        _error_body(ErrorKind.VALIDATION_FAILED.value, "Validation error", errors),
        status_code=422,
    )


def get_principal(
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None),
    x_company_ids: Optional[str] = Header(None),
) -> Principal:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    user_id = x_user_id.strip()
    if x_company_ids is None:
        return principal_for_user(db, user_id)
    return Principal.of(user_id, [value.strip() for value in x_company_ids.split(",") if value.strip()])


def _unwrap(result: Result):
    if isinstance(result, Failure):
        raise HTTPException(status_code=result.http_status, detail=result.to_dict())
    return result.value


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/reports", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
def create_report_endpoint(
    payload: ReportCreateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> ReportResponse:
    return _unwrap(
        create_report(db, principal, payload.month, payload.year, payload.currency, payload.description)
    )


@app.get("/reports", response_model=ReportPageResponse)
def list_reports_endpoint(
    year: Optional[int] = None,
    month: Optional[int] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = 1,
    per_page: int = 20,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> ReportPageResponse:
    result = _unwrap(list_reports(db, principal, year, month, status_filter, page, per_page))
    return ReportPageResponse(
        items=[ReportResponse.model_validate(item) for item in result.items],
        total=result.total,
        page=result.page,
        per_page=result.per_page,
        pages=result.pages,
    )


@app.get("/reports/{report_id}", response_model=ReportResponse)
def get_report_endpoint(
    report_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> ReportResponse:
    return _unwrap(get_report(db, report_id, principal))


@app.patch("/reports/{report_id}", response_model=ReportResponse)
def update_report_endpoint(
    report_id: str,
    payload: ReportUpdateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> ReportResponse:
    changes = payload.model_dump(exclude_unset=True)
    return _unwrap(update_report(db, report_id, changes, principal))


@app.delete("/reports/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_report_endpoint(
    report_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> Response:
    _unwrap(delete_report(db, report_id, principal))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/reports/{report_id}/submit", response_model=ReportResponse)
def submit_report_endpoint(
    report_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> ReportResponse:
    return _unwrap(submit_report(db, report_id, principal))


@app.post("/reports/{report_id}/lock", response_model=ReportResponse)
def lock_report_endpoint(
    report_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> ReportResponse:
    return _unwrap(lock_report(db, report_id, principal))


@app.get("/reports/{report_id}/export")
def export_report_endpoint(
    report_id: str,
    export_format: str = Query("csv", alias="format"),
    include_entries: bool = True,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> Response:
    export = _unwrap(export_report(db, report_id, principal, export_format, include_entries))
    return Response(
        content=export.content,
        media_type=export.content_type,
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )


@app.get("/reports/{report_id}/ledger", response_model=list[LedgerCommitResponse])
def report_ledger_endpoint(
    report_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> list[LedgerCommitResponse]:
    return _unwrap(report_ledger(db, report_id, principal))


@app.post("/reports/{report_id}/entries", response_model=EntryResponse, status_code=status.HTTP_201_CREATED)
def create_entry_endpoint(
    report_id: str,
    payload: EntryCreateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> EntryResponse:
    return _unwrap(
        create_entry(
            db,
            report_id,
            payload.mission_id,
            payload.date,
            payload.quantity,
            payload.unit_price,
            payload.description,
            principal,
        )
    )


@app.get("/reports/{report_id}/entries", response_model=EntryPageResponse)
def list_entries_endpoint(
    report_id: str,
    page: int = 1,
    per_page: int = 10,
    date_from: Optional[dt.date] = None,
    date_to: Optional[dt.date] = None,
    mission_id: Optional[str] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> EntryPageResponse:
    result = _unwrap(list_entries(db, report_id, principal, page, per_page, date_from, date_to, mission_id))
    return EntryPageResponse(
        items=[EntryResponse.model_validate(item) for item in result.items],
        total=result.total,
        page=result.page,
        per_page=result.per_page,
        pages=result.pages,
    )


@app.get("/entries/{entry_id}", response_model=EntryResponse)
def get_entry_endpoint(
    entry_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> EntryResponse:
    return _unwrap(get_entry(db, entry_id, principal))


@app.patch("/entries/{entry_id}", response_model=EntryResponse)
def update_entry_endpoint(
    entry_id: str,
    payload: EntryUpdateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> EntryResponse:
    changes = payload.model_dump(exclude_unset=True)
    return _unwrap(update_entry(db, entry_id, changes, principal))


@app.delete("/entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_entry_endpoint(
    entry_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> Response:
    _unwrap(delete_entry(db, entry_id, principal))
    return Response(status_code=status.HTTP_204_NO_CONTENT)

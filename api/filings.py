"""
api.filings
===========

HTTP routes over :class:`taxdesk.engine.FilingEngine`.

Route handlers only translate between HTTP and engine calls; every
business rule (status table, uniqueness, CA eligibility, draft‑only
deletion) lives in the engine.  Engine failures propagate as
:class:`taxdesk.errors.FilingError` and are turned into responses by the
exception handler registered in :pymod:`api.main`.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from taxdesk.engine import FilingEngine
from taxdesk.models import Filing, FilingFilters, FilingStats, FilingStatus, FilingType, Priority

from .deps import get_engine, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/filings", tags=["filings"])


# ---------- request bodies ----------
class FilingCreate(BaseModel):
    client_id: int = Field(..., gt=0)
    tax_year: str = Field(..., description="Fiscal year pair, e.g. 2023-2024")
    filing_type: FilingType
    priority: Optional[Priority] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None


class FilingUpdate(BaseModel):
    status: Optional[str] = None
    priority: Optional[Priority] = None
    income_sources: Optional[Dict[str, Any]] = None
    deductions: Optional[Dict[str, Any]] = None
    summary: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    due_date: Optional[date] = None


class StatusChange(BaseModel):
    status: str
    notes: Optional[str] = None


class AssignRequest(BaseModel):
    ca_id: int = Field(..., gt=0)


class NoteRequest(BaseModel):
    notes: Optional[str] = None


class RejectRequest(BaseModel):
    reason: str


# ---------- GET /filings ----------
@router.get("")
def list_filings(
    client_id: Optional[int] = Query(None, gt=0),
    ca_id: Optional[int] = Query(None, gt=0),
    status: Optional[FilingStatus] = None,
    filing_type: Optional[FilingType] = None,
    priority: Optional[Priority] = None,
    tax_year: Optional[str] = None,
    search: Optional[str] = Query(None, min_length=1),
    due_date_from: Optional[date] = None,
    due_date_to: Optional[date] = None,
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    engine: FilingEngine = Depends(get_engine),
    settings=Depends(get_settings),
):
    """Filtered, paginated filing listing (newest first by default)."""
    filters = FilingFilters(
        client_id=client_id,
        ca_id=ca_id,
        status=status,
        filing_type=filing_type,
        priority=priority,
        tax_year=tax_year,
        search=search,
        due_date_from=due_date_from,
        due_date_to=due_date_to,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit or settings.default_page_size,
    )
    result = engine.list_filings(filters)
    return {"data": result.items, "pagination": result.pagination()}


# ---------- GET /filings/stats ----------
@router.get("/stats", response_model=FilingStats)
def filing_stats(
    client_id: Optional[int] = Query(None, gt=0),
    ca_id: Optional[int] = Query(None, gt=0),
    tax_year: Optional[str] = None,
    engine: FilingEngine = Depends(get_engine),
):
    return engine.get_stats(client_id=client_id, ca_id=ca_id, tax_year=tax_year)


# ---------- GET /filings/deadlines ----------
@router.get("/deadlines", response_model=List[Filing])
def upcoming_deadlines(
    days: Optional[int] = Query(None, ge=0),
    ca_id: Optional[int] = Query(None, gt=0),
    client_id: Optional[int] = Query(None, gt=0),
    engine: FilingEngine = Depends(get_engine),
):
    """Open filings due within *days* (default from settings), soonest first."""
    return engine.upcoming_deadlines(days=days, ca_id=ca_id, client_id=client_id)


# ---------- GET /filings/client/{client_id} ----------
@router.get("/client/{client_id}", response_model=List[Filing])
def filings_for_client(
    client_id: int,
    status: Optional[FilingStatus] = None,
    limit: Optional[int] = Query(None, ge=1),
    engine: FilingEngine = Depends(get_engine),
):
    return engine.filings_for_client(client_id, status=status, limit=limit)


# ---------- GET /filings/ca/{ca_id} ----------
@router.get("/ca/{ca_id}", response_model=List[Filing])
def filings_for_ca(
    ca_id: int,
    status: Optional[FilingStatus] = None,
    limit: Optional[int] = Query(None, ge=1),
    engine: FilingEngine = Depends(get_engine),
):
    return engine.filings_for_ca(ca_id, status=status, limit=limit)


# ---------- GET /filings/{filing_id} ----------
@router.get("/{filing_id}", response_model=Filing)
def get_filing(filing_id: int, engine: FilingEngine = Depends(get_engine)):
    return engine.get_filing(filing_id)


# ---------- POST /filings ----------
@router.post("", status_code=201, response_model=Filing)
def create_filing(body: FilingCreate, engine: FilingEngine = Depends(get_engine)):
    return engine.create_filing(
        body.client_id,
        body.tax_year,
        body.filing_type,
        priority=body.priority,
        due_date=body.due_date,
        notes=body.notes,
    )


# ---------- PATCH /filings/{filing_id} ----------
@router.patch("/{filing_id}", response_model=Filing)
def update_filing(filing_id: int, body: FilingUpdate,
                  engine: FilingEngine = Depends(get_engine)):
    return engine.update_filing(filing_id, **body.model_dump(exclude_none=True))


# ---------- PATCH /filings/{filing_id}/status ----------
@router.patch("/{filing_id}/status", response_model=Filing)
def change_status(filing_id: int, body: StatusChange,
                  engine: FilingEngine = Depends(get_engine)):
    return engine.transition(filing_id, body.status, body.notes)


# ---------- POST /filings/{filing_id}/assign-ca ----------
@router.post("/{filing_id}/assign-ca", response_model=Filing)
def assign_ca(filing_id: int, body: AssignRequest,
              engine: FilingEngine = Depends(get_engine)):
    return engine.assign_ca(filing_id, body.ca_id)


# ---------- POST /filings/{filing_id}/unassign-ca ----------
@router.post("/{filing_id}/unassign-ca", response_model=Filing)
def unassign_ca(filing_id: int, engine: FilingEngine = Depends(get_engine)):
    return engine.unassign_ca(filing_id)


# ---------- POST /filings/{filing_id}/submit | approve | reject ----------
@router.post("/{filing_id}/submit", response_model=Filing)
def submit_filing(filing_id: int, body: Optional[NoteRequest] = None,
                  engine: FilingEngine = Depends(get_engine)):
    return engine.submit(filing_id, body.notes if body else None)


@router.post("/{filing_id}/approve", response_model=Filing)
def approve_filing(filing_id: int, body: Optional[NoteRequest] = None,
                   engine: FilingEngine = Depends(get_engine)):
    return engine.approve(filing_id, body.notes if body else None)


@router.post("/{filing_id}/reject", response_model=Filing)
def reject_filing(filing_id: int, body: RejectRequest,
                  engine: FilingEngine = Depends(get_engine)):
    return engine.reject(filing_id, body.reason)


# ---------- DELETE /filings/{filing_id} ----------
@router.delete("/{filing_id}")
def delete_filing(filing_id: int, engine: FilingEngine = Depends(get_engine)):
    engine.delete_filing(filing_id)
    logger.info(f"Filing {filing_id} deleted via API")
    return {"status": "success", "deleted": filing_id}

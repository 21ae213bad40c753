"""Cases API router: law-enforcement reports, agency callbacks and legal holds.

Prefix: ``/api/cases``
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from modguard.engine import ModerationEngine
from web.backend.app.middleware.actor import Actor, get_actor, get_engine
from web.backend.app.models.api import (
    AgencyResponseRequest,
    CreateHoldRequest,
    ExtendHoldRequest,
    FileReportRequest,
    HoldResponse,
    ReleaseHoldRequest,
    ReportResponse,
    plain,
)

router = APIRouter(prefix="/api/cases", tags=["cases"])


# =========================================================================
# Law-enforcement reports
# =========================================================================


@router.post("/reports", response_model=ReportResponse, status_code=201)
async def report_to_authorities(
    req: FileReportRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """File a case from a content flag. The evidence is snapshotted at filing."""
    report = engine.report_to_authorities(
        req.flag_id,
        req.agency,
        req.urgency,
        actor=actor.id,
        additional_info=req.additional_info,
        preservation_request=req.preservation_request,
    )
    return ReportResponse(**plain(report))


@router.get("/reports", response_model=list[ReportResponse])
async def list_reports(
    status: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    engine: ModerationEngine = Depends(get_engine),
):
    return [ReportResponse(**plain(r)) for r in engine.cases.list_reports(status=status, user_id=user_id)]


@router.get("/reports/{case_id}", response_model=ReportResponse)
async def get_report(case_id: str, engine: ModerationEngine = Depends(get_engine)):
    return ReportResponse(**plain(engine.cases.get_by_case(case_id)))


@router.post("/reports/{case_id}/submit", response_model=ReportResponse)
async def submit_report(
    case_id: str,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """(Re)submit a draft or failed case to its agency."""
    report = engine.cases.get_by_case(case_id)
    return ReportResponse(**plain(engine.cases.submit_report(report.id, actor.id)))


@router.post("/reports/{case_id}/response", response_model=ReportResponse)
async def record_agency_response(
    case_id: str,
    req: AgencyResponseRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Agency callback: record the agency's status update for a case."""
    report = engine.cases.record_agency_response(
        case_id,
        req.status,
        external_case_id=req.external_case_id,
        investigator_contact=req.investigator_contact,
        additional_requests=req.additional_requests,
        message=req.message,
        actor=actor.id,
    )
    return ReportResponse(**plain(report))


# =========================================================================
# Evidence holds
# =========================================================================


@router.post("/holds", response_model=HoldResponse, status_code=201)
async def create_hold(
    req: CreateHoldRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    hold = engine.holds.create_hold(
        actor.id,
        req.legal_basis,
        req.retention_class,
        req.scope.model_dump(),
        case_id=req.case_id,
        reason=req.reason,
    )
    return HoldResponse(**plain(hold))


@router.get("/holds", response_model=list[HoldResponse])
async def list_holds(
    status: Optional[str] = Query(None),
    case_id: Optional[str] = Query(None),
    engine: ModerationEngine = Depends(get_engine),
):
    return [HoldResponse(**plain(h)) for h in engine.holds.list_holds(status=status, case_id=case_id)]


@router.get("/holds/{hold_id}", response_model=HoldResponse)
async def get_hold(hold_id: str, engine: ModerationEngine = Depends(get_engine)):
    return HoldResponse(**plain(engine.holds.get(hold_id)))


@router.post("/holds/{hold_id}/extend", response_model=HoldResponse)
async def extend_hold(
    hold_id: str,
    req: ExtendHoldRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    return HoldResponse(**plain(engine.holds.extend_hold(hold_id, actor.id, req.days)))


@router.post("/holds/{hold_id}/release", response_model=HoldResponse)
async def release_hold(
    hold_id: str,
    req: ReleaseHoldRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Release a hold; covered messages become eligible for normal deletion."""
    return HoldResponse(**plain(engine.holds.release_hold(hold_id, actor.id, req.reason)))

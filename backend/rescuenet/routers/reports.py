from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query

from ..schemas import (
    AuditEntries,
    ClaimIn,
    ReportCreated,
    ReportEnvelope,
    ReportIn,
    SanitizedReport,
    StatusIn,
)
from ..services.deidentify import sanitize
from ..state import Coordinator
from .deps import get_coordinator

router = APIRouter(prefix="/reports", tags=["reports"])


@router.post("", status_code=201, response_model=ReportCreated)
def create_report(payload: Optional[ReportIn] = Body(None),
                  coord: Coordinator = Depends(get_coordinator)) -> ReportCreated:
    report = coord.engine.create_report(payload or ReportIn(), source="web")
    return ReportCreated(id=report.id, short_code=report.short_code)


@router.get("", response_model=List[SanitizedReport])
def list_reports(
    status: Optional[str] = Query(None),
    severity: Optional[str] = Query(None),
    coord: Coordinator = Depends(get_coordinator),
) -> List[SanitizedReport]:
    return [sanitize(r) for r in coord.engine.list_reports(status=status, severity=severity)]


@router.get("/{identifier}", response_model=SanitizedReport)
def get_report(identifier: str, coord: Coordinator = Depends(get_coordinator)) -> SanitizedReport:
    return sanitize(coord.engine.get(identifier))


@router.get("/{identifier}/audit", response_model=AuditEntries)
def get_report_audit(identifier: str, coord: Coordinator = Depends(get_coordinator)) -> AuditEntries:
    report = coord.engine.get(identifier)
    return AuditEntries(report_id=report.id, entries=coord.audit.for_report(report.id))


@router.post("/{report_id}/claim", response_model=ReportEnvelope)
def claim_report(report_id: str, payload: ClaimIn = Body(...),
                 coord: Coordinator = Depends(get_coordinator)) -> ReportEnvelope:
    report = coord.engine.claim(report_id, payload.rescuer_id, payload.rescuer_name, payload.eta)
    return ReportEnvelope(report=sanitize(report))


@router.put("/{report_id}/status", response_model=ReportEnvelope)
def update_status(report_id: str, payload: StatusIn = Body(...),
                  coord: Coordinator = Depends(get_coordinator)) -> ReportEnvelope:
    report = coord.engine.update_status(report_id, payload.status, payload.eta, payload.notes)
    return ReportEnvelope(report=sanitize(report))


@router.post("/{report_id}/release", response_model=ReportEnvelope)
def release_report(report_id: str, coord: Coordinator = Depends(get_coordinator)) -> ReportEnvelope:
    return ReportEnvelope(report=sanitize(coord.engine.release(report_id)))

"""
Scan sessions API router (poll/store synchronizer).

Every write goes through the SessionService, which classifies against the
stored session inside one atomic read-modify-write.
"""
from enum import Enum
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import Response, StreamingResponse
from urllib.parse import quote
from typing import Optional
import logging
import re

from tally.reconcile.catalog import catalog_from_payload
from tally.reconcile.classifier import ScanOutcome
from tally.reconcile.errors import CodeSpaceExhausted, InvalidInput, SessionNotFound, TallyError
from tally.reconcile.report import export_csv, report_filename

from backend.core.parsers import parse_upload
from backend.core.sessions import SessionService, get_session_service
from backend.core.xlsx_export import create_report_workbook
from backend.api.models import CatalogUpdateRequest, ScanRequest, UploadRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Sessions"])

STATUS_BY_KIND = {
    SessionNotFound.kind: 404,
    InvalidInput.kind: 400,
    CodeSpaceExhausted.kind: 503,
}


def http_error(e: TallyError) -> HTTPException:
    """Map a domain error to its HTTP status."""
    return HTTPException(status_code=STATUS_BY_KIND.get(e.kind, 500), detail=e.detail)


def sanitize_filename(filename: str) -> str:
    """Sanitize filename for safe use in Content-Disposition header."""
    safe = re.sub(r'[^\w\s\-\.]', '_', filename)
    return quote(safe, safe='')


class ReportFormat(str, Enum):
    """Report format options."""
    JSON = "json"
    CSV = "csv"
    XLSX = "xlsx"


def _created(service: SessionService, catalog) -> dict:
    session = service.create_session(catalog)
    return {
        "success": True,
        "code": session.id,
        "expiresAt": session.expires_at,
        "itemCount": len(session.catalog),
        "mode": session.mode.value,
    }


# ============== Catalog ==============

@router.post("/upload")
def upload_catalog(request: UploadRequest, service: SessionService = Depends(get_session_service)):
    """Publish a catalog (rows from the host's spreadsheet) as a new session."""
    payload = request.payload()
    if payload is None:
        raise HTTPException(status_code=400, detail="No catalog data provided")
    try:
        catalog = catalog_from_payload(payload, request.code_column, request.quantity_column)
        return _created(service, catalog)
    except TallyError as e:
        raise http_error(e)


@router.post("/upload/file")
async def upload_catalog_file(
    file: UploadFile = File(...),
    code_column: Optional[str] = Form(None, alias="codeColumn"),
    quantity_column: Optional[str] = Form(None, alias="quantityColumn"),
    service: SessionService = Depends(get_session_service),
):
    """Publish a catalog from an uploaded .xlsx or .csv file."""
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    try:
        parsed = parse_upload(file.filename, content)
        catalog = catalog_from_payload(parsed["rows"], code_column, quantity_column)
        return _created(service, catalog)
    except TallyError as e:
        raise http_error(e)


@router.put("/session/catalog")
def replace_session_catalog(
    request: CatalogUpdateRequest,
    service: SessionService = Depends(get_session_service),
):
    """Replace the catalog of a session. The scan ledger is reset."""
    payload = request.payload()
    if payload is None:
        raise HTTPException(status_code=400, detail="No catalog data provided")
    try:
        catalog = catalog_from_payload(payload, request.code_column, request.quantity_column)
        session = service.replace_catalog(request.code, catalog)
    except TallyError as e:
        raise http_error(e)
    return {"success": True, "itemCount": len(session.catalog), "mode": session.mode.value}


# ============== Session ==============

@router.get("/session")
def get_session(code: str = Query(...), service: SessionService = Depends(get_session_service)):
    """Full session snapshot: catalog, scanned codes, mode and expiry."""
    try:
        session = service.get_session(code)
    except TallyError as e:
        raise http_error(e)
    return {"success": True, "session": session.to_dict()}


@router.delete("/session")
def clear_session(code: str = Query(...), service: SessionService = Depends(get_session_service)):
    """Destroy a session. Deleting an unknown session still succeeds."""
    try:
        service.clear_session(code)
    except TallyError as e:
        raise http_error(e)
    return {"success": True}


# ============== Scans ==============

@router.post("/scan")
def submit_scan(request: ScanRequest, service: SessionService = Depends(get_session_service)):
    """Record one scan. Duplicates are reported, not errors."""
    try:
        decision = service.submit_scan(request.code, request.scanned_code)
    except TallyError as e:
        raise http_error(e)

    if decision.outcome == ScanOutcome.INVALID:
        raise HTTPException(status_code=400, detail=decision.message)

    return {
        "success": True,
        "outcome": decision.outcome.value,
        "isDuplicate": decision.is_duplicate,
        "totalScanned": decision.total_scanned,
        "progressPercent": decision.progress,
        "message": decision.message,
    }


@router.get("/stats")
def get_stats(code: str = Query(...), service: SessionService = Depends(get_session_service)):
    """Progress counters for a session."""
    try:
        stats = service.stats(code)
    except TallyError as e:
        raise http_error(e)
    return {"success": True, "stats": stats}


# ============== Report ==============

@router.get("/report")
def get_report(
    code: str = Query(...),
    format: ReportFormat = Query(ReportFormat.JSON, description="Report format"),
    service: SessionService = Depends(get_session_service),
):
    """
    Reconciliation report for a session.

    Formats:
    - json: buckets and summary
    - csv: Kind, Code, catalog columns (MISSING, SURPLUS, MATCHED rows)
    - xlsx: Summary sheet plus one sheet per bucket
    """
    try:
        session = service.get_session(code)
        report = service.report(session.id)
    except TallyError as e:
        raise http_error(e)

    if format == ReportFormat.JSON:
        return {"success": True, "code": session.id, "report": report.to_dict()}

    if format == ReportFormat.CSV:
        safe_filename = sanitize_filename(report_filename(extension="csv"))
        return Response(
            content=export_csv(report),
            media_type="text/csv; charset=utf-8",
            headers={
                "Content-Disposition": f"attachment; filename=\"{safe_filename}\"; filename*=UTF-8''{safe_filename}"
            }
        )

    buffer = create_report_workbook(report, session_code=session.id)
    safe_filename = sanitize_filename(report_filename(extension="xlsx"))

    def iterfile():
        yield buffer.getvalue()

    logger.info(f"Exported XLSX report for session {session.id}")
    return StreamingResponse(
        iterfile(),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={
            "Content-Disposition": f"attachment; filename=\"{safe_filename}\"; filename*=UTF-8''{safe_filename}"
        }
    )

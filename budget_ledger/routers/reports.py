"""
Reports router.

Mounts under ``/api/reports`` (prefix set in ``main.py``).

Each file endpoint returns a ``StreamingResponse`` whose
``Content-Disposition`` names the file ``ledger_<kind>_<id>_<year>.<ext>``.

Endpoints
---------
GET /{tier_kind}/{tier_id}/summary  — JSON summary for dashboards.
GET /{tier_kind}/{tier_id}/excel    — Same content as an ``.xlsx`` file.
GET /{tier_kind}/{tier_id}/pdf      — Same content as a ``.pdf`` file.
"""

from __future__ import annotations

import io
import logging
import re
from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from budget_ledger.database import get_db
from budget_ledger.schemas.common import ErrorResponse, TierKind, TierRef
from budget_ledger.schemas.report import TierSummaryResponse
from budget_ledger.services import report_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Reports"])

_XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _tier_ref(
    tier_kind: Annotated[TierKind, Path(description="region, organization or farmer.")],
    tier_id: Annotated[str, Path(description="Tier identifier.", min_length=1, max_length=64)],
) -> TierRef:
    return TierRef(kind=tier_kind, id=tier_id)


def _make_filename(tier: TierRef, fiscal_year: int, ext: str) -> str:
    safe_id = re.sub(r"[^A-Za-z0-9_-]", "_", tier.id)
    return f"ledger_{tier.kind}_{safe_id}_{fiscal_year}.{ext}"


def _file_response(content: bytes, filename: str, media_type: str) -> StreamingResponse:
    return StreamingResponse(
        io.BytesIO(content),
        media_type=media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Content-Length": str(len(content)),
        },
    )


@router.get(
    "/{tier_kind}/{tier_id}/summary",
    response_model=TierSummaryResponse,
    summary="Tier financial summary",
    responses={404: {"model": ErrorResponse, "description": "No budget for that year."}},
)
def get_summary(
    tier: Annotated[TierRef, Depends(_tier_ref)],
    fiscal_year: Annotated[int, Query(description="Budget year.", ge=2000, le=2100)],
    db: Annotated[Session, Depends(get_db)],
) -> TierSummaryResponse:
    logger.debug("GET /reports/%s/summary fy=%d", tier.label, fiscal_year)
    return report_service.tier_summary(db, tier, fiscal_year)


@router.get(
    "/{tier_kind}/{tier_id}/excel",
    summary="Export the tier report to Excel (.xlsx)",
    response_class=StreamingResponse,
    responses={
        200: {"content": {_XLSX_MEDIA_TYPE: {}}, "description": "Excel file."},
        404: {"model": ErrorResponse, "description": "No budget for that year."},
    },
)
def export_excel(
    tier: Annotated[TierRef, Depends(_tier_ref)],
    fiscal_year: Annotated[int, Query(description="Budget year.", ge=2000, le=2100)],
    db: Annotated[Session, Depends(get_db)],
) -> StreamingResponse:
    logger.info("GET /reports/%s/excel fy=%d", tier.label, fiscal_year)
    content = report_service.export_excel(db, tier, fiscal_year)
    return _file_response(content, _make_filename(tier, fiscal_year, "xlsx"), _XLSX_MEDIA_TYPE)


@router.get(
    "/{tier_kind}/{tier_id}/pdf",
    summary="Export the tier report to PDF",
    response_class=StreamingResponse,
    responses={
        200: {"content": {"application/pdf": {}}, "description": "PDF file."},
        404: {"model": ErrorResponse, "description": "No budget for that year."},
    },
)
def export_pdf(
    tier: Annotated[TierRef, Depends(_tier_ref)],
    fiscal_year: Annotated[int, Query(description="Budget year.", ge=2000, le=2100)],
    db: Annotated[Session, Depends(get_db)],
) -> StreamingResponse:
    logger.info("GET /reports/%s/pdf fy=%d", tier.label, fiscal_year)
    content = report_service.export_pdf(db, tier, fiscal_year)
    return _file_response(content, _make_filename(tier, fiscal_year, "pdf"), "application/pdf")

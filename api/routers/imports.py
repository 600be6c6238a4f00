"""
Catalog Import Router
=====================
POST /api/v1/imports/{supplier_id}/rows - Import JSON rows
POST /api/v1/imports/{supplier_id}/csv  - Import an uploaded CSV file
GET  /api/v1/imports/runs               - Recent import runs
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from api.deps import get_services
from api.schemas import ImportOptionsIn, ImportResultOut, ImportRowsRequest, ImportRunOut
from authority.imports import ImportOptions
from authority.models import IntegrationType
from authority.normalization import parse_csv
from authority.pipeline_tracking import track_import_run, update_run_counts
from authority.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/imports", tags=["Imports"])


def _to_options(options: Optional[ImportOptionsIn]) -> ImportOptions:
    if options is None:
        return ImportOptions()
    integration_type = None
    if options.integration_type:
        try:
            integration_type = IntegrationType(options.integration_type.upper())
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Unknown integration type: {options.integration_type}")
    return ImportOptions(
        integration_type=integration_type,
        auto_enrich=options.auto_enrich,
        min_auto_match_confidence=options.min_auto_match_confidence,
        create_new_products=options.create_new_products,
        default_currency=options.default_currency,
        skip_invalid_rows=options.skip_invalid_rows,
    )


def _run_import(services: Services, supplier_id: str, rows, options: ImportOptions, source: str) -> ImportResultOut:
    with track_import_run(services.repository, supplier_id, source) as run:
        result = services.importer.import_catalog(supplier_id, rows, options)
        update_run_counts(run, result)
    return ImportResultOut(run_id=run.id, **result.to_dict())


@router.post("/{supplier_id}/rows", response_model=ImportResultOut)
def import_rows(
    supplier_id: str,
    request: ImportRowsRequest,
    services: Services = Depends(get_services)
):
    """
    Import a batch of flat row records for a global supplier.

    Row failures are reported per row; the batch itself always completes.
    """
    return _run_import(services, supplier_id, request.rows, _to_options(request.options), "api")


@router.post("/{supplier_id}/csv", response_model=ImportResultOut)
def import_csv(
    supplier_id: str,
    file: UploadFile = File(..., description="CSV with a header row (comma or semicolon delimited)"),
    auto_enrich: Optional[bool] = Form(None),
    create_new_products: Optional[bool] = Form(None),
    min_auto_match_confidence: Optional[float] = Form(None),
    default_currency: Optional[str] = Form(None),
    skip_invalid_rows: Optional[bool] = Form(None),
    services: Services = Depends(get_services)
):
    """Upload a supplier CSV and import it."""
    content = file.file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    rows = parse_csv(content)
    options = _to_options(ImportOptionsIn(
        integration_type=IntegrationType.CSV.value,
        auto_enrich=auto_enrich,
        create_new_products=create_new_products,
        min_auto_match_confidence=min_auto_match_confidence,
        default_currency=default_currency,
        skip_invalid_rows=skip_invalid_rows,
    ))
    logger.info(f"CSV upload {file.filename} for supplier {supplier_id}: {len(rows)} rows")
    return _run_import(services, supplier_id, rows, options, f"csv:{file.filename}")


@router.get("/runs", response_model=List[ImportRunOut])
def list_import_runs(
    limit: int = Query(20, ge=1, le=200),
    supplier_id: Optional[str] = Query(None),
    services: Services = Depends(get_services)
):
    """Most recent import runs, newest first."""
    runs = services.repository.list_import_runs(limit=limit, supplier_id=supplier_id)
    return [ImportRunOut(**run.to_dict()) for run in runs]

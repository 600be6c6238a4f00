"""
Import Run Tracking
===================
Records each catalog import batch in the import_runs history.

Features:
- Context manager for automatic run tracking
- Counter update helper
- Status management (RUNNING, SUCCESS, PARTIAL, FAILED)

Usage:
    from authority.pipeline_tracking import track_import_run, update_run_counts

    with track_import_run(repository, supplier_id, "csv:catalog.csv") as run:
        result = importer.import_catalog(supplier_id, rows)
        update_run_counts(run, result)
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from authority.models import ImportRun, ImportRunStatus, new_id, utcnow

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000


def final_status(run: ImportRun) -> ImportRunStatus:
    """SUCCESS when nothing failed, FAILED when nothing succeeded, PARTIAL otherwise"""
    if run.failed_count == 0:
        return ImportRunStatus.SUCCESS
    if run.success_count == 0:
        return ImportRunStatus.FAILED
    return ImportRunStatus.PARTIAL


@contextmanager
def track_import_run(
    repository,
    supplier_id: str,
    source: str,
    run_id: Optional[str] = None
) -> Generator[ImportRun, None, None]:
    """
    Context manager for tracking one import batch.

    Saves a RUNNING record on entry. On normal exit the status is derived
    from the counters; on exception it is FAILED with error_message and the
    exception propagates.

    Args:
        repository: CatalogRepository holding import history
        supplier_id: Global supplier being imported
        source: Free-text origin, e.g. 'csv:catalog.csv' or 'api'
        run_id: Explicit id (defaults to a new UUID)

    Yields:
        ImportRun to update through update_run_counts()
    """
    run = ImportRun(id=run_id or new_id(), global_supplier_id=supplier_id, source=source)
    repository.save_import_run(run)
    logger.info(f"Import run started: supplier={supplier_id} source={source} (run_id={run.id[:8]}...)")

    try:
        yield run
    except Exception as e:
        run.status = ImportRunStatus.FAILED
        run.completed_at = utcnow()
        run.error_message = str(e)[:MAX_ERROR_LENGTH]
        try:
            repository.save_import_run(run)
        except Exception as db_error:
            logger.error(f"Failed to update import run status: {db_error}")
        logger.error(f"Import run failed: supplier={supplier_id} (run_id={run.id[:8]}...) - {run.error_message}")
        raise

    run.status = final_status(run)
    run.completed_at = utcnow()
    repository.save_import_run(run)
    logger.info(
        f"Import run completed: supplier={supplier_id} (run_id={run.id[:8]}...) - {run.status.value} "
        f"({run.success_count}/{run.total_rows} ok, {run.failed_count} failed)"
    )


def update_run_counts(run: ImportRun, result) -> ImportRun:
    """
    Copy counters from an ImportResult (or FeedSyncResult-like object) onto the run.

    Only attributes present on `result` are copied.
    """
    for attr in ('total_rows', 'success_count', 'failed_count', 'review_count', 'enriched_count'):
        value = getattr(result, attr, None)
        if value is not None:
            setattr(run, attr, value)
    if getattr(result, 'cancelled', False):
        run.error_message = "Cancelled before all rows were processed"
    return run

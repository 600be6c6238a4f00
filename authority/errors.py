"""
Error taxonomy for the Product Authority core
==============================================
Row-level errors are captured into per-row import results and never escape
the import orchestrator. Operation-level errors (merge, single triage
actions) propagate to the caller as the exceptions below.
"""

from typing import Any, Dict, List, Optional


class AuthorityError(Exception):
    """Base class for all Product Authority errors"""

    code = "AUTHORITY_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class RowValidationError(AuthorityError):
    """A raw row failed normalization (e.g. missing name)"""

    code = "VALIDATION_ERROR"

    def __init__(self, errors: List[str], warnings: Optional[List[str]] = None):
        super().__init__("; ".join(errors) or "Invalid row", {"errors": errors, "warnings": warnings or []})
        self.errors = errors
        self.warnings = warnings or []


class PersistenceConflictError(AuthorityError):
    """A write violated a uniqueness constraint"""

    code = "PERSISTENCE_CONFLICT"


class NotFoundError(AuthorityError):
    code = "NOT_FOUND"


class ProductNotFoundError(NotFoundError):

    def __init__(self, product_id: str, role: str = "Product"):
        super().__init__(f"{role} not found", {"product_id": product_id})
        self.product_id = product_id


class SupplierItemNotFoundError(NotFoundError):

    def __init__(self, supplier_item_id: str):
        super().__init__("Supplier item not found", {"supplier_item_id": supplier_item_id})
        self.supplier_item_id = supplier_item_id


class MergePreconditionError(AuthorityError):
    """Merge refused before any transaction was opened"""

    code = "MERGE_PRECONDITION"


class MergeFailedError(AuthorityError):
    """Merge failed mid-transaction; everything was rolled back"""

    code = "MERGE_FAILED"


class ImportCancelledError(AuthorityError):
    """Raised between rows when an import's cancellation token is set"""

    code = "IMPORT_CANCELLED"

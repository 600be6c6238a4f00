"""
Triage Router
=============
Review queue for supplier items with uncertain product matches.

GET  /api/v1/triage                          - Review queue (filters + pagination)
GET  /api/v1/triage/stats                    - Queue counts per issue type
POST /api/v1/triage/{item_id}/confirm        - Accept the current match
POST /api/v1/triage/{item_id}/reassign       - Link to another product
POST /api/v1/triage/{item_id}/create-product - Create a product and link to it
POST /api/v1/triage/{item_id}/ignore         - Deactivate the item

Mutating endpoints require the X-Actor-Id header.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.deps import get_actor_id, get_services
from api.schemas import (
    ProductDraftIn,
    ReassignRequest,
    TriageActionResponse,
    TriageItemOut,
    TriageListResponse,
    TriageStatsOut,
)
from authority.models import ProductDraft, TriageFilters, TriageIssueType
from authority.services import Services
from authority.triage import TriageActionResult

router = APIRouter(prefix="/api/v1/triage", tags=["Triage"])


def _action_response(result: TriageActionResult) -> TriageActionResponse:
    return TriageActionResponse(**result.to_dict())


@router.get("", response_model=TriageListResponse)
def list_for_review(
    issue_type: TriageIssueType = Query(TriageIssueType.ALL, description="all, needs-review, low-confidence, no-gtin or fuzzy-match"),
    supplier_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Matches supplier name/SKU, product name or GTIN"),
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services)
):
    filters = TriageFilters(issue_type=issue_type, supplier_id=supplier_id, search=search)
    page = services.triage.list_for_review(filters, limit=limit, offset=offset)
    return TriageListResponse(
        items=[TriageItemOut(**item.to_dict()) for item in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/stats", response_model=TriageStatsOut)
def triage_stats(services: Services = Depends(get_services)):
    return TriageStatsOut(**services.triage.get_stats().to_dict())


@router.post("/{item_id}/confirm", response_model=TriageActionResponse)
def confirm_match(
    item_id: str,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services)
):
    return _action_response(services.triage.confirm_match(item_id, actor_id))


@router.post("/{item_id}/reassign", response_model=TriageActionResponse)
def reassign_product(
    item_id: str,
    request: ReassignRequest,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services)
):
    return _action_response(services.triage.reassign_product(item_id, request.product_id, actor_id))


@router.post("/{item_id}/create-product", response_model=TriageActionResponse)
def create_product_and_link(
    item_id: str,
    request: ProductDraftIn,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services)
):
    draft = ProductDraft(
        name=request.name.strip(),
        gtin=request.gtin,
        brand=request.brand,
        description=request.description,
        manufacturer_name=request.manufacturer_name,
    )
    return _action_response(services.triage.create_product_and_link(item_id, draft, actor_id))


@router.post("/{item_id}/ignore", response_model=TriageActionResponse)
def mark_ignored(
    item_id: str,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services)
):
    return _action_response(services.triage.mark_ignored(item_id, actor_id))

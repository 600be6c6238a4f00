"""
Products Router
===============
GET  /api/v1/products/search       - Find products by GTIN or name
GET  /api/v1/products/{product_id} - Product details
POST /api/v1/products/merge        - Merge a duplicate product into a canonical one
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query

from api.deps import get_actor_id, get_services
from api.schemas import MergeRequest, MergeResponse, ProductOut
from authority.errors import ProductNotFoundError
from authority.services import Services

router = APIRouter(prefix="/api/v1/products", tags=["Products"])
logger = logging.getLogger(__name__)


@router.get("/search", response_model=List[ProductOut])
def search_products(
    q: str = Query("", description="GTIN or name fragment (at least 2 characters)"),
    limit: int = Query(10, ge=1, le=100),
    services: Services = Depends(get_services)
):
    products = services.triage.search_products(q, limit)
    return [ProductOut(**p.to_dict()) for p in products]


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: str, services: Services = Depends(get_services)):
    product = services.repository.find_product_by_id(product_id)
    if product is None:
        raise ProductNotFoundError(product_id)
    return ProductOut(**product.to_dict())


@router.post("/merge", response_model=MergeResponse)
def merge_products(
    request: MergeRequest,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services)
):
    """
    Move every supplier link and practice item from the source product onto
    the target, then delete the source. All-or-nothing.
    """
    result = services.merge.merge(request.source_product_id, request.target_product_id, actor_id)
    return MergeResponse(**result.to_dict())

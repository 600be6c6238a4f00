"""
Health Router
=============
Health check endpoint.
"""

from datetime import datetime

from fastapi import APIRouter, Depends

from api import __version__
from api.deps import check_repository_health, get_services
from api.schemas import HealthStatus
from authority.services import Services

router = APIRouter(prefix="/api/v1", tags=["Health"])


@router.get("/health", response_model=HealthStatus)
def health_check(services: Services = Depends(get_services)):
    """
    Health check endpoint.

    Returns API status, repository connectivity and GDSN provider reachability.
    """
    repository_ok = check_repository_health(services)
    gdsn_ok = services.gdsn_client.is_connected()

    return HealthStatus(
        status="ok" if repository_ok and gdsn_ok else "degraded",
        repository="ok" if repository_ok else "error",
        gdsn="ok" if gdsn_ok else "unreachable",
        gdsn_provider=services.gdsn_client.provider_id,
        version=__version__,
        timestamp=datetime.utcnow()
    )

"""
API Dependencies
================
Service and actor dependency injection for FastAPI endpoints.

Services are built once by the app lifespan (or passed to create_app) and
kept on app.state; endpoints receive them through get_services.
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException, Request

from authority.services import Services

logger = logging.getLogger(__name__)


def get_services(request: Request) -> Services:
    """
    FastAPI dependency returning the process-wide Services container.

    Usage in endpoints:
        @router.get("/endpoint")
        def endpoint(services: Services = Depends(get_services)):
            services.triage.get_stats()
    """
    services = getattr(request.app.state, 'services', None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services are not initialised")
    return services


def get_actor_id(x_actor_id: Optional[str] = Header(None)) -> str:
    """Audit actor for mutating endpoints, taken from the X-Actor-Id header"""
    actor = (x_actor_id or '').strip()
    if not actor:
        raise HTTPException(status_code=400, detail="X-Actor-Id header is required")
    return actor


def check_repository_health(services: Services) -> bool:
    """
    Check catalog storage connectivity.
    Returns True if healthy, False otherwise.
    """
    if services.db_manager is None:
        return True
    try:
        return services.db_manager.check_health()
    except Exception as e:
        logger.error(f"Repository health check failed: {e}")
        return False

"""
API Routers Package
"""
from .health import router as health_router
from .imports import router as imports_router
from .triage import router as triage_router
from .products import router as products_router

__all__ = [
    'health_router',
    'imports_router',
    'triage_router',
    'products_router',
]

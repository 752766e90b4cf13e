"""Compliance automation app module.

Provides the FastAPI router that triggers scans on demand.
"""

from .api import router as compliance_router

__all__ = ["compliance_router"]

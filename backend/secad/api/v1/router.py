"""Aggregate all v1 sub-routers."""

from fastapi import APIRouter

from secad.api.v1.audit import router as audit_router
from secad.api.v1.certificates import router as certificates_router
from secad.api.v1.health import router as health_router

api_v1_router = APIRouter()

api_v1_router.include_router(health_router, tags=["health"])
api_v1_router.include_router(certificates_router, prefix="/certificates", tags=["certificates"])
api_v1_router.include_router(audit_router, prefix="/audit", tags=["audit"])

"""API v1 router."""

from fastapi import APIRouter

from flexo_api.api.v1.endpoints import health, machine_programs, snapshots

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(machine_programs.router, prefix="/machine-programs", tags=["machine-programs"])
api_router.include_router(snapshots.router, prefix="/machine-snapshots", tags=["machine-snapshots"])

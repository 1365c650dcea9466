from fastapi import APIRouter

from quotebridge.api.routes import admin, health, jobs, maintenance

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["lifecycle"])
api_router.include_router(maintenance.router, prefix="/maintenance", tags=["maintenance"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])

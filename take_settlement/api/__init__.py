"""API routes for take settlement."""

from fastapi import APIRouter

from .grading import router as grading_router
from .jobs import router as jobs_router
from .packs import router as packs_router
from .sms import router as sms_router
from .takes import router as takes_router

# Main API router
api_router = APIRouter()

# Public take submission and tallies
api_router.include_router(takes_router)
api_router.include_router(packs_router)

# Provider webhooks and scheduled jobs
api_router.include_router(sms_router)
api_router.include_router(jobs_router)

# Admin grading
api_router.include_router(grading_router)

__all__ = ["api_router"]

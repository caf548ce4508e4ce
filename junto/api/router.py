from fastapi import APIRouter

from junto.api.scheduling import router as scheduling_router

api_router = APIRouter()

# API routes at /api/*
api_router.include_router(scheduling_router, prefix="/api", tags=["scheduling"])

"""Main API routes for Trip Assistant."""

from fastapi import APIRouter

from .chat import router as chat_router
from .places import router as places_router

# Main API router
router = APIRouter()

router.include_router(chat_router, tags=["chat"])
router.include_router(places_router, tags=["places"])

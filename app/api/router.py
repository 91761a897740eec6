from fastapi import APIRouter
from app.api import status_updates, topics

router = APIRouter()
router.include_router(topics.router, prefix="/topics", tags=["Topics"])
router.include_router(status_updates.router, prefix="/status_updates", tags=["StatusUpdates"])

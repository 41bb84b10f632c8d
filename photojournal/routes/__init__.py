from fastapi import APIRouter
from .auth import router as auth_router
from .stories import router as stories_router
from .photos import router as photos_router
from .stats import router as stats_router

router = APIRouter()
router.include_router(auth_router, prefix='/auth', tags=['auth'])
router.include_router(stories_router, prefix='/stories', tags=['stories'])
router.include_router(photos_router, prefix='/photos', tags=['photos'])
router.include_router(stats_router, prefix='/stats', tags=['stats'])

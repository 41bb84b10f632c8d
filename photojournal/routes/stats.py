from fastapi import APIRouter, Depends

from ..auth import get_current_user
from ..crud import StoryRepository
from ..dependencies import get_repository
from ..schemas.stories import UserStatsOut

router = APIRouter()


@router.get('', response_model=UserStatsOut)
async def my_stats(current_user: dict = Depends(get_current_user), repo: StoryRepository = Depends(get_repository)):
    return await repo.get_user_stats(current_user['id'])

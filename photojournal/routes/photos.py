from fastapi import APIRouter, Depends, HTTPException

from ..auth import get_current_user
from ..crud import StoryRepository
from ..dependencies import get_repository
from ..schemas.users import ActionOkOut

router = APIRouter()


@router.delete('/{photo_id}', response_model=ActionOkOut)
async def delete(photo_id: str, current_user: dict = Depends(get_current_user),
                 repo: StoryRepository = Depends(get_repository)):
    if not await repo.delete_photo(photo_id, current_user['id']):
        raise HTTPException(404, 'Photo not found')
    return ActionOkOut()

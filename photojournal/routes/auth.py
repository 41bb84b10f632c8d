from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError as PydanticValidationError

from ..auth import get_current_user
from ..crud import StoryRepository
from ..dependencies import get_repository
from ..errors import ValidationError
from ..schemas.users import UserOut, UserUpsertIn

router = APIRouter()


@router.post('/login', response_model=UserOut)
async def login(current_user: dict = Depends(get_current_user), repo: StoryRepository = Depends(get_repository)):
    """Record the identity provider's view of the caller (upsert on login)."""
    claims = current_user['claims']
    try:
        payload = UserUpsertIn(
            id=current_user['id'],
            email=claims.get('email'),
            first_name=claims.get('first_name'),
            last_name=claims.get('last_name'),
            profile_image_url=claims.get('profile_image_url'),
        )
    except PydanticValidationError as e:
        raise ValidationError('Invalid identity claims') from e
    return await repo.upsert_user(payload)


@router.get('/user', response_model=UserOut)
async def me(current_user: dict = Depends(get_current_user), repo: StoryRepository = Depends(get_repository)):
    user = await repo.get_user(current_user['id'])
    if not user:
        raise HTTPException(404, 'User not found')
    return user

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import ValidationError as PydanticValidationError

from ..auth import get_current_user
from ..crud import StoryRepository
from ..dependencies import get_pipeline, get_repository
from ..errors import ValidationError
from ..file_storage import ImageIngestionPipeline
from ..schemas.stories import (
    StoryCreateIn,
    StorySummaryOut,
    StoryUpdateIn,
    StoryWithPhotosOut,
    split_tags,
)
from ..schemas.users import ActionOkOut

logger = logging.getLogger(__name__)

router = APIRouter()


def _validation_error(e: PydanticValidationError) -> ValidationError:
    fields = sorted({str(err['loc'][0]) for err in e.errors() if err.get('loc')})
    message = f"Invalid {', '.join(fields)}" if fields else 'Invalid story'
    return ValidationError(message, {'fields': fields})


@router.get('', response_model=List[StorySummaryOut])
async def list_my(
    search: Optional[str] = None,
    tags: Optional[List[str]] = Query(None),
    current_user: dict = Depends(get_current_user),
    repo: StoryRepository = Depends(get_repository),
):
    # tags may arrive as ?tags=a,b or ?tags=a&tags=b
    tag_filter = split_tags([t for raw in (tags or []) for t in raw.split(',')])
    return await repo.list_stories(current_user['id'], search=search or None, tags=tag_filter or None)


@router.post('', response_model=StoryWithPhotosOut)
async def create(
    title: str = Form(''),
    content: str = Form(''),
    tags: str = Form(''),
    photos: Optional[List[UploadFile]] = File(None),
    current_user: dict = Depends(get_current_user),
    repo: StoryRepository = Depends(get_repository),
    pipeline: ImageIngestionPipeline = Depends(get_pipeline),
):
    """Create a story with up to max_files photos.

    Photos are normalized before the story row is written; story and photos are
    then inserted together, so a failed image leaves nothing behind.
    """
    try:
        payload = StoryCreateIn(title=title, content=content, tags=tags)
    except PydanticValidationError as e:
        raise _validation_error(e) from e

    items = await pipeline.spool_uploads(photos or [])
    descriptors = await pipeline.ingest(items)
    try:
        story = await repo.create_story_with_photos(
            current_user['id'], payload.title, payload.content, payload.tags, descriptors
        )
    except Exception:
        pipeline.discard(descriptors)
        raise
    logger.info({'msg': 'story_created', 'story_id': story.id, 'photos': len(story.photos)})
    return story


@router.get('/{story_id}', response_model=StoryWithPhotosOut)
async def get_one(story_id: str, current_user: dict = Depends(get_current_user),
                  repo: StoryRepository = Depends(get_repository)):
    story = await repo.get_story_with_photos(story_id, current_user['id'])
    if not story:
        raise HTTPException(404, 'Story not found')
    return story


@router.patch('/{story_id}', response_model=StoryWithPhotosOut)
async def update(story_id: str, body: dict, current_user: dict = Depends(get_current_user),
                 repo: StoryRepository = Depends(get_repository)):
    try:
        payload = StoryUpdateIn.model_validate(body)
    except PydanticValidationError as e:
        raise _validation_error(e) from e
    updated = await repo.update_story(story_id, current_user['id'], payload)
    if not updated:
        raise HTTPException(404, 'Story not found')
    return await repo.get_story_with_photos(story_id, current_user['id'])


@router.delete('/{story_id}', response_model=ActionOkOut)
async def delete(story_id: str, current_user: dict = Depends(get_current_user),
                 repo: StoryRepository = Depends(get_repository)):
    if not await repo.delete_story(story_id, current_user['id']):
        raise HTTPException(404, 'Story not found')
    return ActionOkOut()

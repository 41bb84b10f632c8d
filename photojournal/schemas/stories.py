from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator


def split_tags(value: Union[str, List[str], None]) -> List[str]:
    """Accept a list or a comma separated string; trim and drop blanks."""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(',')
    return [tag.strip() for tag in value if tag and tag.strip()]


def _require_text(value: str) -> str:
    if value is None or not value.strip():
        raise ValueError('must not be empty')
    return value


class StoryCreateIn(BaseModel):
    title: str
    content: str
    tags: List[str] = []

    @field_validator('title', 'content')
    @classmethod
    def _check_text(cls, value):
        return _require_text(value)

    @field_validator('tags', mode='before')
    @classmethod
    def _split_tags(cls, value):
        return split_tags(value)


class StoryUpdateIn(BaseModel):
    """Partial update; only fields that were sent are applied."""

    title: Optional[str] = None
    content: Optional[str] = None
    tags: Optional[List[str]] = None

    @field_validator('title', 'content')
    @classmethod
    def _check_text(cls, value):
        return _require_text(value)

    @field_validator('tags', mode='before')
    @classmethod
    def _split_tags(cls, value):
        return split_tags(value)


class PhotoIn(BaseModel):
    url: str
    caption: Optional[str] = ''
    order: int = 0


class PhotoOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    story_id: str
    url: str
    caption: Optional[str] = None
    order: int
    created_at: datetime


class StoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    content: str
    tags: List[str]
    created_at: datetime
    updated_at: datetime


class StoryWithPhotosOut(StoryOut):
    photos: List[PhotoOut] = []


class StorySummaryOut(StoryOut):
    first_photo: Optional[PhotoOut] = None
    photo_count: int = 0


class UserStatsOut(BaseModel):
    total_stories: int
    total_photos: int
    unique_tags: List[str]

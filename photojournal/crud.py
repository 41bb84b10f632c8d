"""
Story/photo persistence.

Every read and write is scoped to the calling user. A story that exists but
belongs to someone else looks exactly like a story that does not exist.
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional, Sequence

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from .errors import InternalError, ValidationError
from .models.base_types import utcnow
from .models.photos import Photo
from .models.stories import Story
from .models.users import User
from .schemas.stories import (
    PhotoIn,
    PhotoOut,
    StoryOut,
    StorySummaryOut,
    StoryUpdateIn,
    StoryWithPhotosOut,
    UserStatsOut,
    split_tags,
)
from .schemas.users import UserOut, UserUpsertIn

logger = logging.getLogger(__name__)


def _require_text(name: str, value: Optional[str]) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f'{name} must not be empty', {'field': name})
    return value


def story_filter(user_id: str, dialect: str, search: Optional[str] = None, tags: Optional[Sequence[str]] = None):
    """Build the single WHERE clause used by list_stories.

    ownership AND (title/content contains search, case-insensitive)
    AND (tags share at least one element with the filter)
    """
    clauses = [Story.user_id == user_id]
    if search:
        clauses.append(or_(
            Story.title.icontains(search, autoescape=True),
            Story.content.icontains(search, autoescape=True),
        ))
    if tags:
        clauses.append(tag_overlap(tags, dialect))
    return and_(*clauses)


def tag_overlap(tags: Sequence[str], dialect: str):
    if dialect == 'sqlite':
        elements = func.json_each(Story.tags).table_valued('value')
        return (
            select(elements.c.value)
            .where(elements.c.value.in_(list(tags)))
            .correlate(Story)
            .exists()
        )
    return Story.tags.overlap(list(tags))


class StoryRepository:
    """Scoped CRUD over users, stories and photos on an injected async engine."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._sessionmaker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @asynccontextmanager
    async def _transaction(self, operation: str):
        try:
            async with self._sessionmaker.begin() as session:
                yield session
        except SQLAlchemyError as e:
            logger.exception({'msg': 'storage_failure', 'operation': operation})
            raise InternalError(f'{operation} failed: {e.__class__.__name__}') from e

    # users

    async def get_user(self, user_id: str) -> Optional[UserOut]:
        async with self._transaction('get_user') as session:
            user = await session.get(User, user_id)
            return UserOut.model_validate(user) if user else None

    async def upsert_user(self, payload: UserUpsertIn) -> UserOut:
        """Create the user, or overwrite its non-null fields when it already exists."""
        fields = payload.model_dump(exclude={'id'}, exclude_none=True)
        now = utcnow()
        insert = sqlite_insert if self.dialect == 'sqlite' else pg_insert
        stmt = (
            insert(User)
            .values(id=payload.id, created_at=now, updated_at=now, **fields)
            .on_conflict_do_update(index_elements=[User.id], set_={**fields, 'updated_at': now})
            .returning(User)
        )
        async with self._transaction('upsert_user') as session:
            user = (await session.scalars(stmt, execution_options={'populate_existing': True})).one()
            return UserOut.model_validate(user)

    # stories

    async def _insert_story(self, session: AsyncSession, user_id: str, title: str, content: str, tags) -> Story:
        _require_text('title', title)
        _require_text('content', content)
        now = utcnow()
        story = Story(user_id=user_id, title=title, content=content, tags=split_tags(tags),
                      created_at=now, updated_at=now)
        session.add(story)
        await session.flush()
        return story

    async def _insert_photos(self, session: AsyncSession, story_id: str, photos: Sequence[PhotoIn]) -> List[Photo]:
        # order comes from list position, never from the descriptor
        rows = [
            Photo(story_id=story_id, url=photo.url, caption=photo.caption, order=index)
            for index, photo in enumerate(photos)
        ]
        session.add_all(rows)
        await session.flush()
        return rows

    async def create_story(self, user_id: str, title: str, content: str, tags: Optional[List[str]] = None) -> StoryOut:
        async with self._transaction('create_story') as session:
            story = await self._insert_story(session, user_id, title, content, tags)
            return StoryOut.model_validate(story)

    async def create_story_with_photos(self, user_id: str, title: str, content: str,
                                       tags: Optional[List[str]], photos: Sequence[PhotoIn]) -> StoryWithPhotosOut:
        """Insert a story and its photo batch in one transaction."""
        async with self._transaction('create_story') as session:
            story = await self._insert_story(session, user_id, title, content, tags)
            rows = await self._insert_photos(session, story.id, photos)
            return StoryWithPhotosOut(
                **StoryOut.model_validate(story).model_dump(),
                photos=[PhotoOut.model_validate(p) for p in rows],
            )

    async def list_stories(self, user_id: str, search: Optional[str] = None,
                           tags: Optional[Sequence[str]] = None) -> List[StorySummaryOut]:
        photo_count = (
            select(func.count(Photo.id))
            .where(Photo.story_id == Story.id)
            .correlate(Story)
            .scalar_subquery()
        )
        query = (
            select(Story, photo_count.label('photo_count'))
            .where(story_filter(user_id, self.dialect, search=search, tags=tags))
            .order_by(Story.created_at.desc(), Story.id.desc())
        )
        async with self._transaction('list_stories') as session:
            rows = (await session.execute(query)).all()
            first_photos = await self._first_photos(session, [story.id for story, _ in rows])
            return [
                StorySummaryOut(
                    **StoryOut.model_validate(story).model_dump(),
                    first_photo=first_photos.get(story.id),
                    photo_count=count,
                )
                for story, count in rows
            ]

    async def _first_photos(self, session: AsyncSession, story_ids: List[str]) -> dict:
        """Map story id -> its lowest-order photo. Stories without photos are absent."""
        if not story_ids:
            return {}
        lowest = (
            select(Photo.story_id, func.min(Photo.order).label('min_order'))
            .where(Photo.story_id.in_(story_ids))
            .group_by(Photo.story_id)
            .subquery()
        )
        query = select(Photo).join(
            lowest, and_(Photo.story_id == lowest.c.story_id, Photo.order == lowest.c.min_order)
        )
        result = await session.execute(query)
        return {photo.story_id: PhotoOut.model_validate(photo) for photo in result.scalars()}

    async def get_story_with_photos(self, story_id: str, user_id: str) -> Optional[StoryWithPhotosOut]:
        async with self._transaction('get_story') as session:
            q = await session.execute(select(Story).where(Story.id == story_id, Story.user_id == user_id))
            story = q.scalars().first()
            if not story:
                return None
            photos = await session.execute(
                select(Photo).where(Photo.story_id == story.id).order_by(Photo.order.asc())
            )
            return StoryWithPhotosOut(
                **StoryOut.model_validate(story).model_dump(),
                photos=[PhotoOut.model_validate(p) for p in photos.scalars()],
            )

    async def update_story(self, story_id: str, user_id: str, payload: StoryUpdateIn) -> Optional[StoryOut]:
        fields = payload.model_dump(exclude_unset=True)
        for name in ('title', 'content'):
            if name in fields:
                _require_text(name, fields[name])
        if 'tags' in fields:
            fields['tags'] = split_tags(fields['tags'])
        async with self._transaction('update_story') as session:
            q = await session.execute(select(Story).where(Story.id == story_id, Story.user_id == user_id))
            story = q.scalars().first()
            if not story:
                return None
            for key, value in fields.items():
                setattr(story, key, value)
            story.updated_at = utcnow()
            await session.flush()
            return StoryOut.model_validate(story)

    async def delete_story(self, story_id: str, user_id: str) -> bool:
        owned = and_(Story.id == story_id, Story.user_id == user_id)
        async with self._transaction('delete_story') as session:
            # photos go in the same transaction even where the FK cascade is not enforced
            await session.execute(
                delete(Photo)
                .where(Photo.story_id.in_(select(Story.id).where(owned)))
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(
                delete(Story).where(owned).execution_options(synchronize_session=False)
            )
            return (result.rowcount or 0) > 0

    # photos

    async def add_photos_to_story(self, story_id: str, photos: Sequence[PhotoIn]) -> List[PhotoOut]:
        if not photos:
            return []
        async with self._transaction('add_photos') as session:
            rows = await self._insert_photos(session, story_id, photos)
            return [PhotoOut.model_validate(p) for p in rows]

    async def delete_photo(self, photo_id: str, user_id: str) -> bool:
        """Delete a photo only when its story belongs to user_id."""
        owned_stories = select(Story.id).where(Story.user_id == user_id)
        async with self._transaction('delete_photo') as session:
            result = await session.execute(
                delete(Photo)
                .where(Photo.id == photo_id, Photo.story_id.in_(owned_stories))
                .execution_options(synchronize_session=False)
            )
            return (result.rowcount or 0) > 0

    # stats

    async def get_user_stats(self, user_id: str) -> UserStatsOut:
        async with self._transaction('get_user_stats') as session:
            total_stories = await session.scalar(
                select(func.count(Story.id)).where(Story.user_id == user_id)
            )
            total_photos = await session.scalar(
                select(func.count(Photo.id))
                .select_from(Photo)
                .join(Story, Photo.story_id == Story.id)
                .where(Story.user_id == user_id)
            )
            tag_rows = await session.execute(select(Story.tags).where(Story.user_id == user_id))
            unique_tags = set()
            for tags in tag_rows.scalars():
                unique_tags.update(tags or [])
            return UserStatsOut(
                total_stories=total_stories or 0,
                total_photos=total_photos or 0,
                unique_tags=sorted(unique_tags),
            )

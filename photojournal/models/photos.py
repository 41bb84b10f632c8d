from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint
from . import Base
from .base_types import new_id, utcnow

class Photo(Base):
    __tablename__ = 'photos'
    __table_args__ = (UniqueConstraint('story_id', 'order', name='uix_photo_story_order'),)
    id = Column(String, primary_key=True, default=new_id)
    story_id = Column(String, ForeignKey('stories.id', ondelete='CASCADE'), index=True, nullable=False)
    url = Column(Text, nullable=False)
    caption = Column(Text, nullable=True)
    order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

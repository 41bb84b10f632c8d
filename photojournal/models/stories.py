from sqlalchemy import Column, String, Text, DateTime, ForeignKey
from . import Base
from .base_types import TagList, new_id, utcnow

class Story(Base):
    __tablename__ = 'stories'
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    title = Column(Text, nullable=False)
    content = Column(Text, nullable=False)
    tags = Column(TagList, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

from sqlalchemy import Column, String, DateTime
from . import Base
from .base_types import new_id, utcnow

class User(Base):
    __tablename__ = 'users'
    id = Column(String, primary_key=True, default=new_id)
    email = Column(String, unique=True, index=True, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    profile_image_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

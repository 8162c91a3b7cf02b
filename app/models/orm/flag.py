from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from app.core.clock import utcnow

from .base import Base, JSON_TYPE


class FeatureFlagORM(Base):
    __tablename__ = "feature_flags"

    key = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=True)
    description = Column(Text, nullable=True)

    is_enabled = Column(Boolean, default=False, nullable=False)
    environments = Column(JSON_TYPE, default=list, nullable=False)
    rollout_percentage = Column(Integer, default=100, nullable=False)

    # {"included_users": [...], "excluded_users": [...], "user_attribute_rules": {...}}
    targeting = Column(JSON_TYPE, default=dict, nullable=False)
    conditions = Column(JSON_TYPE, default=dict, nullable=False)

    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

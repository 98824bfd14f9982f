from datetime import datetime

from sqlalchemy import Column, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class SerializerMixin:
    """Column values as a plain dict, the shape the routers return"""

    __serialize_exclude__ = ()

    def to_dict(self) -> dict:
        return {
            column.key: getattr(self, column.key)
            for column in self.__table__.columns
            if column.key not in self.__serialize_exclude__
        }


class TimestampMixin:
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=True, onupdate=datetime.now)

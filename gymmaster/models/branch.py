from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from gymmaster.models.base import Base, SerializerMixin, TimestampMixin


class Branch(SerializerMixin, TimestampMixin, Base):
    __tablename__ = "branches"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True, index=True)
    state = Column(String(100), nullable=True)
    phone = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)
    opening_time = Column(String(8), nullable=False, default="06:00")
    closing_time = Column(String(8), nullable=False, default="22:00")
    capacity = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_by = Column(Integer, nullable=True)

    trainers = relationship("Trainer", back_populates="branch")


class Trainer(SerializerMixin, TimestampMixin, Base):
    __tablename__ = "trainers"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)
    specialties = Column(String(255), nullable=True)
    hourly_rate = Column(Integer, nullable=False, default=0)
    bio = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    user = relationship("User", back_populates="trainer")
    branch = relationship("Branch", back_populates="trainers")

from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from gymmaster.models.base import Base, SerializerMixin, TimestampMixin


class Member(SerializerMixin, TimestampMixin, Base):
    __tablename__ = "members"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    membership_number = Column(String(20), nullable=False, unique=True)
    date_of_birth = Column(Date, nullable=True)
    emergency_contact = Column(String(100), nullable=True)
    emergency_phone = Column(String(20), nullable=True)
    medical_notes = Column(Text, nullable=True)
    # Rotating credential presented at check-in
    qr_code = Column(String(64), nullable=False, unique=True, index=True)
    qr_code_expiry = Column(DateTime, nullable=False)
    join_date = Column(DateTime, nullable=False, default=datetime.now)
    is_active = Column(Boolean, nullable=False, default=True)

    user = relationship("User", back_populates="member")
    memberships = relationship("Membership", back_populates="member", order_by="Membership.end_date.desc()")
    checkins = relationship("CheckIn", back_populates="member")

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from gymmaster.enums import MembershipStatus
from gymmaster.models.base import Base, SerializerMixin, TimestampMixin


class MembershipType(SerializerMixin, TimestampMixin, Base):
    __tablename__ = "membership_types"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    duration_days = Column(Integer, nullable=False)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)


class Membership(SerializerMixin, TimestampMixin, Base):
    __tablename__ = "memberships"

    id = Column(Integer, primary_key=True)
    member_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    membership_type_id = Column(Integer, ForeignKey("membership_types.id"), nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False, index=True)
    # At most one ACTIVE row per member, checked by the service before insert
    status = Column(
        Enum(MembershipStatus, native_enum=False, length=20),
        nullable=False,
        default=MembershipStatus.ACTIVE,
        index=True,
    )
    price_paid = Column(Numeric(12, 2), nullable=True)
    notes = Column(Text, nullable=True)

    member = relationship("Member", back_populates="memberships")
    membership_type = relationship("MembershipType")
    payments = relationship("Payment", back_populates="membership")

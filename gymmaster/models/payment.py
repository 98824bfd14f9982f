from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from gymmaster.enums import PaymentMethod, PaymentStatus
from gymmaster.models.base import Base, SerializerMixin, TimestampMixin


class Payment(SerializerMixin, TimestampMixin, Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)
    membership_id = Column(Integer, ForeignKey("memberships.id"), nullable=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(Enum(PaymentMethod, native_enum=False, length=20), nullable=False)
    status = Column(
        Enum(PaymentStatus, native_enum=False, length=20),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )
    description = Column(String(255), nullable=True)
    reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    payment_date = Column(DateTime, nullable=False, default=datetime.now, index=True)
    due_date = Column(DateTime, nullable=True)

    member = relationship("Member")
    branch = relationship("Branch")
    membership = relationship("Membership", back_populates="payments")

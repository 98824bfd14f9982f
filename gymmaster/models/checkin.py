from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from gymmaster.models.base import Base, SerializerMixin


class CheckIn(SerializerMixin, Base):
    __tablename__ = "checkins"

    id = Column(Integer, primary_key=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)
    check_in_at = Column(DateTime, nullable=False, default=datetime.now, index=True)
    # NULL while the visit is open; one open visit per member
    check_out_at = Column(DateTime, nullable=True, index=True)
    notes = Column(Text, nullable=True)

    member = relationship("Member", back_populates="checkins")
    branch = relationship("Branch")

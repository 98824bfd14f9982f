from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from gymmaster.enums import ClassStatus, ReservationStatus
from gymmaster.models.base import Base, SerializerMixin, TimestampMixin


class GymClass(SerializerMixin, TimestampMixin, Base):
    __tablename__ = "classes"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)
    trainer_id = Column(Integer, ForeignKey("trainers.id"), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    capacity = Column(Integer, nullable=False)
    status = Column(
        Enum(ClassStatus, native_enum=False, length=20),
        nullable=False,
        default=ClassStatus.SCHEDULED,
        index=True,
    )

    branch = relationship("Branch")
    trainer = relationship("Trainer")
    reservations = relationship("Reservation", back_populates="gym_class")


class Reservation(SerializerMixin, TimestampMixin, Base):
    __tablename__ = "reservations"
    __table_args__ = (UniqueConstraint("member_id", "class_id", name="uq_reservation_member_class"),)

    id = Column(Integer, primary_key=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    class_id = Column(Integer, ForeignKey("classes.id"), nullable=False, index=True)
    status = Column(
        Enum(ReservationStatus, native_enum=False, length=20),
        nullable=False,
        default=ReservationStatus.CONFIRMED,
    )
    notes = Column(Text, nullable=True)

    member = relationship("Member")
    gym_class = relationship("GymClass", back_populates="reservations")

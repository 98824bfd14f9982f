from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from gymmaster.enums import Role
from gymmaster.models.base import Base, SerializerMixin, TimestampMixin


class User(SerializerMixin, TimestampMixin, Base):
    __tablename__ = "users"
    __serialize_exclude__ = ("password", "token_version")

    id = Column(Integer, primary_key=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=True)
    role = Column(Enum(Role, native_enum=False, length=20), nullable=False, default=Role.MEMBER, index=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    email_verified = Column(Boolean, nullable=False, default=False)
    # Login needs a code sent by email after the password check
    is_2fa_enabled = Column(Boolean, nullable=False, default=False)
    last_login = Column(DateTime, nullable=True)
    # Bumped to revoke every access token issued before
    token_version = Column(Integer, nullable=False, default=1)

    branch = relationship("Branch", foreign_keys=[branch_id])
    member = relationship("Member", back_populates="user", uselist=False)
    trainer = relationship("Trainer", back_populates="user", uselist=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class RefreshToken(SerializerMixin, TimestampMixin, Base):
    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True)
    token = Column(String(512), nullable=False, unique=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    is_revoked = Column(Boolean, nullable=False, default=False)

    user = relationship("User")


class OtpCode(SerializerMixin, TimestampMixin, Base):
    __tablename__ = "otp_codes"

    id = Column(Integer, primary_key=True)
    purpose = Column(String(50), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    code = Column(String(10), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    is_used = Column(Boolean, nullable=False, default=False)

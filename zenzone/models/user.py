"""User model definitions."""

from sqlalchemy import Column, ForeignKey, Integer, String, UniqueConstraint
from zenzone.database import Base

STUDENT_ROLE = 'student'
PSYCHIATRIST_ROLE = 'psychiatrist'
USER_ROLES = (STUDENT_ROLE, PSYCHIATRIST_ROLE)


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False, default='')
    role = Column(String, nullable=False)  # student/psychiatrist
    college = Column(String, nullable=False, default='')


class UserBlock(Base):
    """A user (in practice a psychiatrist) refusing messages from another user."""
    __tablename__ = "user_blocks"
    __table_args__ = (UniqueConstraint('blocker_id', 'blocked_id', name='uq_user_blocks_pair'),)

    id = Column(Integer, primary_key=True)
    blocker_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    blocked_id = Column(Integer, ForeignKey("users.id"), nullable=False)

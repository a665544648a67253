"""Appointment model definitions."""

from sqlalchemy import Column, Integer, DateTime, ForeignKey, String, Text
from zenzone.database import Base

PENDING = 'pending'
APPROVED = 'approved'
REJECTED = 'rejected'
CLOSED = 'closed'
APPOINTMENT_STATUSES = (PENDING, APPROVED, REJECTED, CLOSED)


class Appointment(Base):
    """A student's request to talk with one psychiatrist."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    psychiatrist_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    college = Column(String, nullable=False, default='')
    requested_date = Column(DateTime, nullable=False)
    message = Column(Text, nullable=False)
    status = Column(String, nullable=False, default=PENDING)

    def participant_ids(self) -> tuple[int, int]:
        return self.student_id, self.psychiatrist_id

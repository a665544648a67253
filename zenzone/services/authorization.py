"""Appointment authorization gate.

Every read or write of conversation data goes through
``authorize_participant``: the caller must be the student or the psychiatrist
bound to the appointment, and unless told otherwise the appointment must be
``approved``.
"""

import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from zenzone.core.errors import Forbidden, NotApproved, NotFound, ValidationFailed
from zenzone.models.appointment import APPROVED, Appointment
from zenzone.models.user import PSYCHIATRIST_ROLE, User

logger = logging.getLogger(__name__)


def is_participant(appointment: Appointment, user_id: int) -> bool:
    return user_id in appointment.participant_ids()


def counterpart_id(appointment: Appointment, user_id: int) -> int:
    if user_id == appointment.student_id:
        return appointment.psychiatrist_id
    if user_id == appointment.psychiatrist_id:
        return appointment.student_id
    raise Forbidden('Not a participant of this appointment.')


def authorize_participant(
    db: Session,
    user: User,
    appointment_id: int,
    require_approved: bool = True,
    allowed_statuses: tuple[str, ...] = (APPROVED,),
) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if appointment is None:
        raise NotFound('Appointment not found.')

    # The role claim must agree with the seat the caller occupies.
    seat_id = appointment.psychiatrist_id if user.role == PSYCHIATRIST_ROLE else appointment.student_id
    if seat_id != user.id:
        logger.warning('User %s denied access to appointment %s', user.id, appointment_id)
        raise Forbidden('Not authorized for this appointment.')

    if require_approved and appointment.status not in allowed_statuses:
        raise NotApproved(f'Appointment is {appointment.status}, not approved.')

    return appointment


def resolve_active_appointment(
    db: Session,
    user: User,
    counterpart: int | None = None,
) -> Appointment:
    """Find the caller's single approved appointment, optionally with one counterpart."""
    query = db.query(Appointment).filter(
        Appointment.status == APPROVED,
        or_(Appointment.student_id == user.id, Appointment.psychiatrist_id == user.id),
    )
    if counterpart is not None:
        query = query.filter(
            or_(Appointment.student_id == counterpart, Appointment.psychiatrist_id == counterpart),
        )

    matches = query.order_by(Appointment.id.asc()).limit(2).all()
    if not matches:
        raise NotFound('No approved appointment found.')
    if len(matches) > 1:
        raise ValidationFailed('More than one approved appointment matches; specify appointmentId.')
    return matches[0]

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zenzone.auth.dependencies import get_current_user
from zenzone.core.errors import Forbidden, NotFound, ServiceUnavailable
from zenzone.database import ensure_database_ready, get_db
from zenzone.models.appointment import APPROVED, CLOSED, PENDING, REJECTED, Appointment
from zenzone.models.user import PSYCHIATRIST_ROLE, STUDENT_ROLE, User
from zenzone.services import anonymity
from zenzone.services.authorization import authorize_participant, resolve_active_appointment

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)

MAX_APPOINTMENT_MESSAGE_LENGTH = 600

# Closing has its own endpoint; a psychiatrist only approves or rejects.
REVIEW_STATUSES = (APPROVED, REJECTED)


class CreateAppointmentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: datetime
    message: str
    psychiatrist_id: int = Field(alias='psychiatristId')

    @field_validator('message')
    @classmethod
    def validate_message(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('A message for the psychiatrist is required.')
        if len(normalized) > MAX_APPOINTMENT_MESSAGE_LENGTH:
            raise ValueError(f'Message must be {MAX_APPOINTMENT_MESSAGE_LENGTH} characters or fewer.')
        return normalized


class UpdateAppointmentRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in REVIEW_STATUSES:
            raise ValueError(f"Status must be one of: {', '.join(REVIEW_STATUSES)}.")
        return normalized


class AppointmentCreatedResponse(BaseModel):
    message: str
    appointmentId: int


class AppointmentStatusResponse(BaseModel):
    message: str
    appointmentId: int
    status: str


class ParticipantResponse(BaseModel):
    id: int
    displayName: str


class AppointmentResponse(BaseModel):
    id: int
    studentId: int
    psychiatristId: int
    college: str
    requestedDate: datetime
    message: str
    status: str
    student: ParticipantResponse
    psychiatrist: ParticipantResponse


def serialize_appointment(db: Session, appointment: Appointment) -> AppointmentResponse:
    users = {
        user.id: user
        for user in db.query(User).filter(User.id.in_(appointment.participant_ids())).all()
    }
    return AppointmentResponse(
        id=appointment.id,
        studentId=appointment.student_id,
        psychiatristId=appointment.psychiatrist_id,
        college=appointment.college or '',
        requestedDate=appointment.requested_date,
        message=appointment.message,
        status=appointment.status,
        student=ParticipantResponse(
            id=appointment.student_id,
            displayName=anonymity.display_name(users.get(appointment.student_id)),
        ),
        psychiatrist=ParticipantResponse(
            id=appointment.psychiatrist_id,
            displayName=anonymity.display_name(users.get(appointment.psychiatrist_id)),
        ),
    )


@router.post('', response_model=AppointmentCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if current_user.role != STUDENT_ROLE:
        raise Forbidden('Only students can create appointments.')

    ensure_database_ready()

    try:
        psychiatrist = db.query(User).filter(
            User.id == data.psychiatrist_id,
            User.role == PSYCHIATRIST_ROLE,
        ).first()
        if psychiatrist is None:
            raise NotFound('Psychiatrist not found.')

        appointment = Appointment(
            student_id=current_user.id,
            psychiatrist_id=psychiatrist.id,
            college=current_user.college or '',
            requested_date=data.date,
            message=data.message,
            status=PENDING,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)

        logger.info('Appointment %s requested by user %s', appointment.id, current_user.id)
        return AppointmentCreatedResponse(message='Appointment request created', appointmentId=appointment.id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise ServiceUnavailable() from exc


@router.get('/mine', response_model=list[AppointmentResponse])
def list_my_appointments(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        seat = Appointment.psychiatrist_id if current_user.role == PSYCHIATRIST_ROLE else Appointment.student_id
        appointments = db.query(Appointment).filter(
            seat == current_user.id,
        ).order_by(Appointment.requested_date.desc(), Appointment.id.desc()).all()

        return [serialize_appointment(db, appointment) for appointment in appointments]
    except SQLAlchemyError as exc:
        raise ServiceUnavailable() from exc


@router.get('/active', response_model=AppointmentResponse)
def get_active_appointment(
    counterpart_id: int | None = Query(default=None, alias='counterpartId'),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = resolve_active_appointment(db, current_user, counterpart=counterpart_id)
        return serialize_appointment(db, appointment)
    except SQLAlchemyError as exc:
        raise ServiceUnavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = authorize_participant(db, current_user, appointment_id, require_approved=False)
        return serialize_appointment(db, appointment)
    except SQLAlchemyError as exc:
        raise ServiceUnavailable() from exc


@router.put('/{appointment_id}', response_model=AppointmentStatusResponse)
def update_appointment_status(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if current_user.role != PSYCHIATRIST_ROLE:
        raise Forbidden('Only psychiatrists can update appointments.')

    ensure_database_ready()

    try:
        appointment = db.query(Appointment).filter(
            Appointment.id == appointment_id,
            Appointment.psychiatrist_id == current_user.id,
        ).first()
        if appointment is None:
            raise NotFound('Appointment not found.')
        if appointment.status == CLOSED:
            raise Forbidden('Appointment is closed.')

        appointment.status = data.status
        db.commit()

        logger.info('Appointment %s set to %s by user %s', appointment_id, data.status, current_user.id)
        return AppointmentStatusResponse(message='Appointment updated', appointmentId=appointment_id, status=data.status)
    except SQLAlchemyError as exc:
        db.rollback()
        raise ServiceUnavailable() from exc


@router.post('/{appointment_id}/close', response_model=AppointmentStatusResponse)
def close_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if appointment is None:
            raise NotFound('Appointment not found.')
        if current_user.id not in appointment.participant_ids():
            raise Forbidden('Not authorized to close this appointment.')

        appointment.status = CLOSED
        db.commit()

        logger.info('Appointment %s closed by user %s', appointment_id, current_user.id)
        return AppointmentStatusResponse(message='Appointment closed', appointmentId=appointment_id, status=CLOSED)
    except SQLAlchemyError as exc:
        db.rollback()
        raise ServiceUnavailable() from exc

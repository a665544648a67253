import pytest
from fastapi import HTTPException

from zenzone.models.appointment import CLOSED, PENDING
from zenzone.models.user import PSYCHIATRIST_ROLE
from zenzone.services.authorization import (
    authorize_participant,
    counterpart_id,
    is_participant,
    resolve_active_appointment,
)


def test_both_participants_pass_the_gate(db, student, psychiatrist, approved_appointment) -> None:
    for user in (student, psychiatrist):
        appointment = authorize_participant(db, user, approved_appointment.id)
        assert appointment.id == approved_appointment.id


def test_counterpart_is_the_other_seat(student, psychiatrist, approved_appointment) -> None:
    assert counterpart_id(approved_appointment, student.id) == psychiatrist.id
    assert counterpart_id(approved_appointment, psychiatrist.id) == student.id
    assert is_participant(approved_appointment, student.id)
    assert not is_participant(approved_appointment, 12345)

    with pytest.raises(HTTPException) as exception_info:
        counterpart_id(approved_appointment, 12345)

    assert exception_info.value.status_code == 403


def test_unknown_appointment_is_not_found(db, student) -> None:
    with pytest.raises(HTTPException) as exception_info:
        authorize_participant(db, student, 404)

    assert exception_info.value.status_code == 404
    assert exception_info.value.code == 'NotFound'


def test_outsider_is_forbidden(db, make_user, approved_appointment) -> None:
    outsider = make_user('dr_outsider', role=PSYCHIATRIST_ROLE)

    with pytest.raises(HTTPException) as exception_info:
        authorize_participant(db, outsider, approved_appointment.id)

    assert exception_info.value.status_code == 403
    assert exception_info.value.code == 'Forbidden'


def test_role_must_match_seat(db, make_user, make_appointment) -> None:
    # A student id sitting in the psychiatrist seat does not pass as a student.
    student = make_user('student_a')
    other_student = make_user('student_b')
    appointment = make_appointment(student, other_student)

    with pytest.raises(HTTPException) as exception_info:
        authorize_participant(db, other_student, appointment.id)

    assert exception_info.value.status_code == 403


def test_pending_appointment_is_not_approved(db, student, psychiatrist, make_appointment) -> None:
    appointment = make_appointment(student, psychiatrist, status=PENDING)

    with pytest.raises(HTTPException) as exception_info:
        authorize_participant(db, student, appointment.id)

    assert exception_info.value.status_code == 403
    assert exception_info.value.code == 'NotApproved'


def test_status_check_can_be_skipped(db, student, psychiatrist, make_appointment) -> None:
    appointment = make_appointment(student, psychiatrist, status=PENDING)

    assert authorize_participant(db, student, appointment.id, require_approved=False).id == appointment.id


def test_allowed_statuses_widen_the_gate(db, student, psychiatrist, make_appointment) -> None:
    appointment = make_appointment(student, psychiatrist, status=CLOSED)

    found = authorize_participant(db, psychiatrist, appointment.id, allowed_statuses=('approved', CLOSED))

    assert found.id == appointment.id


def test_resolve_active_appointment_finds_single_match(db, student, approved_appointment) -> None:
    assert resolve_active_appointment(db, student).id == approved_appointment.id


def test_resolve_active_appointment_without_match(db, student, psychiatrist, make_appointment) -> None:
    make_appointment(student, psychiatrist, status=PENDING)

    with pytest.raises(HTTPException) as exception_info:
        resolve_active_appointment(db, student)

    assert exception_info.value.status_code == 404


def test_resolve_active_appointment_is_ambiguous_with_two_matches(
    db, student, psychiatrist, make_user, make_appointment, approved_appointment,
) -> None:
    second_doctor = make_user('dr_c', role=PSYCHIATRIST_ROLE)
    second = make_appointment(student, second_doctor)

    with pytest.raises(HTTPException) as exception_info:
        resolve_active_appointment(db, student)

    assert exception_info.value.status_code == 400
    assert resolve_active_appointment(db, student, counterpart=second_doctor.id).id == second.id
    assert resolve_active_appointment(db, student, counterpart=psychiatrist.id).id == approved_appointment.id

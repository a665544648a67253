import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zenzone.auth.dependencies import get_current_user
from zenzone.core.errors import Forbidden, NotFound, ServiceUnavailable, ValidationFailed
from zenzone.database import get_db
from zenzone.models.user import PSYCHIATRIST_ROLE, User, UserBlock

router = APIRouter(tags=['auth'])

logger = logging.getLogger(__name__)


class MeResponse(BaseModel):
    id: int
    username: str
    role: str
    college: str
    blockedUserIds: list[int]


class PsychiatristResponse(BaseModel):
    id: int
    username: str
    college: str


class BlockResponse(BaseModel):
    message: str
    blockedUserIds: list[int]


def blocked_user_ids(db: Session, user_id: int) -> list[int]:
    rows = db.query(UserBlock.blocked_id).filter(
        UserBlock.blocker_id == user_id,
    ).order_by(UserBlock.blocked_id.asc()).all()
    return [blocked_id for (blocked_id,) in rows]


@router.get('/me', response_model=MeResponse)
def me(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        return MeResponse(
            id=current_user.id,
            username=current_user.username,
            role=current_user.role,
            college=current_user.college or '',
            blockedUserIds=blocked_user_ids(db, current_user.id),
        )
    except SQLAlchemyError as exc:
        raise ServiceUnavailable() from exc


@router.get('/psychiatrists', response_model=list[PsychiatristResponse])
def list_psychiatrists(
    college: str | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del current_user
    try:
        query = db.query(User).filter(User.role == PSYCHIATRIST_ROLE)
        if college:
            query = query.filter(User.college == college.strip())
        return [
            PsychiatristResponse(id=user.id, username=user.username, college=user.college or '')
            for user in query.order_by(User.username.asc()).all()
        ]
    except SQLAlchemyError as exc:
        raise ServiceUnavailable() from exc


def _require_psychiatrist(current_user: User, action: str) -> None:
    if current_user.role != PSYCHIATRIST_ROLE:
        raise Forbidden(f'Only psychiatrists can {action} users.')


@router.post('/block/{user_id}', response_model=BlockResponse)
def block_user(user_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _require_psychiatrist(current_user, 'block')
    if user_id == current_user.id:
        raise ValidationFailed('You cannot block yourself.')

    try:
        if db.query(User.id).filter(User.id == user_id).first() is None:
            raise NotFound('User not found.')

        existing = db.query(UserBlock).filter(
            UserBlock.blocker_id == current_user.id,
            UserBlock.blocked_id == user_id,
        ).first()
        if existing is None:
            db.add(UserBlock(blocker_id=current_user.id, blocked_id=user_id))
            db.commit()
            logger.info('User %s blocked user %s', current_user.id, user_id)

        return BlockResponse(message='User blocked', blockedUserIds=blocked_user_ids(db, current_user.id))
    except SQLAlchemyError as exc:
        db.rollback()
        raise ServiceUnavailable() from exc


@router.post('/unblock/{user_id}', response_model=BlockResponse)
def unblock_user(user_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _require_psychiatrist(current_user, 'unblock')

    try:
        db.query(UserBlock).filter(
            UserBlock.blocker_id == current_user.id,
            UserBlock.blocked_id == user_id,
        ).delete(synchronize_session=False)
        db.commit()
        logger.info('User %s unblocked user %s', current_user.id, user_id)

        return BlockResponse(message='User unblocked', blockedUserIds=blocked_user_ids(db, current_user.id))
    except SQLAlchemyError as exc:
        db.rollback()
        raise ServiceUnavailable() from exc

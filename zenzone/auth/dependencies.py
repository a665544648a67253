import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from zenzone import database
from zenzone.auth import jwt_handler
from zenzone.core.errors import AuthError
from zenzone.models.user import User

security = HTTPBearer(auto_error=False)


def user_from_token(token: str | None) -> User:
    if not token:
        raise AuthError('No token provided')
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise AuthError('Invalid token') from exc

    subject = payload.get('sub')
    try:
        user_id = int(subject)
    except (TypeError, ValueError) as exc:
        raise AuthError('Invalid token subject') from exc

    db = database.SessionLocal()
    try:
        user = db.query(User).filter(User.id == user_id).first()
    finally:
        db.close()
    if user is None:
        raise AuthError('User not found')
    return user


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> User:
    return user_from_token(credentials.credentials if credentials else None)

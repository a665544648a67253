from datetime import datetime, timedelta, timezone

import jwt

from zenzone.core import config


def create_access_token(
    subject: str | int,
    role: str,
    college: str = '',
    expires_minutes: int | None = None,
) -> str:
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    payload = {
        'sub': str(subject),
        'role': role,
        'college': college,
        'exp': expire,
        'iat': datetime.now(timezone.utc),
    }
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])

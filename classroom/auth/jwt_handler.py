from datetime import datetime, timedelta, timezone

import jwt

from classroom.core import config


def create_access_token(subject: str | int, expires_minutes: int | None = None) -> str:
    """Issue a bearer token whose subject is the user id."""
    issued_at = datetime.now(timezone.utc)
    expires_at = issued_at + timedelta(minutes=expires_minutes or config.JWT_EXPIRES_MINUTES)
    payload = {"sub": str(subject), "exp": expires_at, "iat": issued_at}
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt  # type: ignore
from passlib.context import CryptContext  # type: ignore

from core.config import settings
from core.errors import GuardViolation

# Reviewer and author accounts share one scheme; pbkdf2_sha256 needs no native extension.
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def create_access_token(sub: str, role: str, email: str, organization_id: str | None = None) -> str:
    exp = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    payload: dict[str, Any] = {"sub": sub, "role": role, "email": email, "org": organization_id, "exp": exp}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise GuardViolation("Invalid token.") from exc

import logging

from fastapi import APIRouter, HTTPException, status

from api.deps import DbDep
from models.user import User
from schemas.auth import LoginRequest, LoginResponse
from services.auth_service import create_access_token, verify_password

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest, db: DbDep):
    email = payload.email.lower().strip()
    user = db.query(User).filter(User.email == email).first()
    if not user or not verify_password(payload.password, user.hashed_password):
        logger.warning("failed login for %s", email)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials.")

    token = create_access_token(
        sub=str(user.id), role=user.role, email=user.email, organization_id=user.organization_id
    )
    return LoginResponse(
        access_token=token,
        user_id=str(user.id),
        role=user.role,
        email=user.email,
        organization_id=user.organization_id,
    )

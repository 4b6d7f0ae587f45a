from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from core.errors import GuardViolation
from database.session import SessionLocal
from models.user import User
from schemas.exercise import Actor, ActorRole
from services.auth_service import decode_token
from services.content_state_machine import ContentStateMachine
from services.gateway import SqlGateway

bearer = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


DbDep = Annotated[Session, Depends(get_db)]


def get_gateway() -> SqlGateway:
    return SqlGateway(SessionLocal)


GatewayDep = Annotated[SqlGateway, Depends(get_gateway)]


def get_state_machine(gateway: GatewayDep) -> ContentStateMachine:
    return ContentStateMachine(gateway)


StateMachineDep = Annotated[ContentStateMachine, Depends(get_state_machine)]


def get_current_user(
    db: DbDep, creds: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer)]
) -> User:
    if creds is None or not creds.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated.")
    try:
        payload = decode_token(creds.credentials)
    except GuardViolation:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token.") from None
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token.")

    user = db.query(User).filter(User.id == sub).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found.")
    return user


CurrentUserDep = Annotated[User, Depends(get_current_user)]


def get_current_actor(user: CurrentUserDep) -> Actor:
    return Actor(id=str(user.id), role=ActorRole(user.role), organization_id=user.organization_id)


CurrentActorDep = Annotated[Actor, Depends(get_current_actor)]


def require_reviewer(actor: CurrentActorDep) -> Actor:
    if actor.role is not ActorRole.REVIEWER:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Reviewer access required.")
    return actor


ReviewerDep = Annotated[Actor, Depends(require_reviewer)]

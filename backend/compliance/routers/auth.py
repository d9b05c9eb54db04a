"""
Agency Compliance - Authentication Router
Handles login and session verification.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.actor import ActorContext
from ..models.db_models import UserDB
from ..models.results import ErrorKind
from ..auth import verify_password, create_access_token, get_actor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str


class ActorResponse(BaseModel):
    user_id: str
    role: str
    name: str


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/login", response_model=TokenResponse)
async def login(request: LoginRequest, db: Session = Depends(get_db)):
    """Authenticate user and return JWT token."""
    user = db.query(UserDB).filter(UserDB.email == request.email).first()

    if not user or not user.password_hash or not verify_password(request.password, user.password_hash):
        logger.warning(f"Failed login attempt for {request.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": ErrorKind.UNAUTHORIZED.value, "message": "Invalid email or password"},
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": ErrorKind.FORBIDDEN.value, "message": "Account is deactivated"},
        )

    token = create_access_token(user.id, user.email, user.role)
    return TokenResponse(access_token=token, role=user.role.value)


@router.get("/me", response_model=ActorResponse)
async def get_me(actor: ActorContext = Depends(get_actor)):
    """Get the signed-in actor."""
    return ActorResponse(user_id=actor.user_id, role=actor.role.value, name=actor.name or "")

"""
Agency Compliance - Authentication Utilities
Password hashing, JWT tokens, and the actor dependency
"""
import os
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .database import get_db
from .models.actor import ActorContext
from .models.db_models import UserDB, UserRole
from .models.results import ErrorKind

# Configuration
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "agency-compliance-secret-key-change-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = int(os.getenv("ACCESS_TOKEN_EXPIRE_HOURS", "24"))

# Bearer token security; a missing header is reported as Unauthorized below
security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password_bytes, salt).decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    password_bytes = plain_password.encode('utf-8')
    hashed_bytes = hashed_password.encode('utf-8')
    return bcrypt.checkpw(password_bytes, hashed_bytes)


def create_access_token(user_id: str, email: str, role: UserRole = UserRole.USER) -> str:
    """Create a JWT access token with role claim."""
    expire = datetime.utcnow() + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)
    to_encode = {
        "sub": user_id,
        "email": email,
        "role": role.value,
        "exp": expire
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token. Expired tokens fail validation."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except JWTError:
        return None


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": ErrorKind.UNAUTHORIZED.value, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> ActorContext:
    """
    Dependency resolving the session into an ActorContext.
    Validates the JWT and loads the user so deactivated accounts are refused.
    """
    if credentials is None:
        raise _unauthorized("You must be logged in.")

    payload = decode_token(credentials.credentials)
    if payload is None or payload.get("sub") is None:
        raise _unauthorized("Could not validate credentials")

    user = db.query(UserDB).filter(UserDB.id == payload["sub"]).first()
    if user is None or not user.is_active:
        raise _unauthorized("Could not validate credentials")

    return ActorContext(user_id=user.id, role=user.role, name=user.name)

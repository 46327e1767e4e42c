"""
FastAPI dependencies for authentication.

Extracts and validates the current user from a JWT bearer token. Project-level
authorization lives in auth.permissions.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from database import get_db
from models import User
from auth.security import verify_token

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme for JWT authentication
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """
    Extract and validate the current user from a JWT bearer token.

    Raises:
        HTTPException: 401 if authentication fails

    Example:
        @app.get("/api/protected")
        async def protected_route(user: User = Depends(get_current_user)):
            return {"user_id": user.id}
    """
    logger.debug("Attempting to authenticate user")

    if not credentials or not credentials.credentials:
        logger.info("No authentication credentials provided")
        raise _unauthorized("Not authenticated")

    payload = verify_token(credentials.credentials)
    if payload is None:
        logger.info("JWT token verification failed")
        raise _unauthorized("Invalid or expired token")

    token_type = payload.get("type")
    if token_type != "access":
        logger.info(f"Invalid token type: {token_type}")
        raise _unauthorized("Invalid token type. Use access token for API requests.")

    user_id = payload.get("sub")
    if not user_id:
        logger.info("Token payload missing 'sub' claim")
        raise _unauthorized("Invalid token payload")

    user = db.query(User).filter(User.id == str(user_id)).first()
    if user is None:
        logger.info(f"User not found for id: {user_id}")
        raise _unauthorized("User not found")

    if not user.is_active:
        logger.info(f"Inactive user attempted access: {user_id}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")

    logger.debug(f"JWT authentication successful for user_id: {user_id}")
    return user

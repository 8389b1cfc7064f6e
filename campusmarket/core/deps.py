"""
Common FastAPI dependencies.
"""
from typing import Generator, Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from jose import JWTError

from campusmarket.db.session import SessionLocal
from campusmarket.core.security import decode_token

security = HTTPBearer(auto_error=False)


def get_db() -> Generator:
    """
    Provide a database session for the request.

    Yields:
        Session: SQLAlchemy session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> str:
    """
    Read the current user's id from the bearer JWT.

    Args:
        credentials: HTTP Bearer credentials

    Returns:
        User id

    Raises:
        HTTPException: If the token is missing or invalid
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="You are not logged in! Please log in to get access.",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise credentials_exception

    try:
        payload = decode_token(credentials.credentials)

        user_id: Optional[str] = payload.get("sub")
        token_type: Optional[str] = payload.get("type")

        if user_id is None or token_type != "access":
            raise credentials_exception

        return user_id

    except JWTError:
        raise credentials_exception


def get_current_user(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """
    Load the current user from the database.

    Raises:
        HTTPException: If the user no longer exists
    """
    # Imported here to avoid a circular import
    from campusmarket.models.user import User
    from uuid import UUID

    try:
        user = db.query(User).filter(User.id == UUID(str(user_id))).first()
    except ValueError:
        user = None

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="The user belonging to this token no longer exists."
        )

    return user


def get_current_active_user(
    current_user = Depends(get_current_user)
):
    """
    Require an active (not suspended or banned) user.

    Raises:
        HTTPException: If the account is not active
    """
    if not current_user.is_active():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your account is not active"
        )

    return current_user

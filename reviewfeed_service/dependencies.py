"""
FastAPI dependencies for Review Feed Service
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError

from .config import settings
from .pipeline import Pipeline, get_pipeline
from .schemas import User
from .scoring import QualityScoreService
from .service import ReviewFeedService

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> User:
    """
    Validate JWT token and return current user
    """
    token = credentials.credentials

    try:
        # Decode JWT token
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    username = payload.get("username")
    email = payload.get("email")

    if user_id is None or username is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return User(id=str(user_id), username=username, email=email)


async def get_token(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> str:
    """Raw bearer token, forwarded to the graph service"""
    return credentials.credentials


async def get_feed_service(p: Pipeline = Depends(get_pipeline)) -> ReviewFeedService:
    """Dependency for getting the review feed service"""
    return p.feed_service


async def get_quality_service(p: Pipeline = Depends(get_pipeline)) -> QualityScoreService:
    """Dependency for getting the quality score service"""
    return p.quality_service

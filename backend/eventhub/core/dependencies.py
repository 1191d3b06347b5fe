"""
FastAPI dependency injection functions.
"""

from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from eventhub.config import get_settings
from eventhub.core.database import get_supabase_client
from eventhub.core.security import decode_access_token
from eventhub.features.events.service import EventEngine, build_event_engine

# Bearer token scheme for Swagger UI
bearer_scheme = HTTPBearer()


@lru_cache
def get_event_engine() -> EventEngine:
    """Dependency: the event engine (singleton, shares one task dispatcher)."""
    return build_event_engine(get_settings(), get_supabase_client())


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> str:
    """Dependency: extract and validate user_id from JWT token.

    Returns:
        str: The user's id as string.

    Raises:
        HTTPException 401: If token is invalid or expired.
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token does not identify a user",
        )

    return user_id

"""
FastAPI dependencies for authentication, authorization and services.

Tokens are issued elsewhere; this module only decodes bearer JWTs and loads
the user they name.
"""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.cache.redis_client import get_redis_client
from storefront.core.config import get_settings
from storefront.core.logging import get_logger, set_user_id
from storefront.database.connection import get_db
from storefront.database.models import User
from storefront.services.cache.order_cache import OrderCache
from storefront.services.orders.repository import UserRepository
from storefront.services.orders.service import OrderService

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Validate the bearer JWT and load the user named by its ``sub`` claim.

    Raises:
        HTTPException: 401 if the token is missing, invalid or names no user
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise credentials_exception

    settings = get_settings()
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        logger.warning(
            "Authentication failed: JWT validation error",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise credentials_exception

    user_id_str: Optional[str] = payload.get("sub")
    if user_id_str is None:
        logger.warning("Authentication failed: Token missing 'sub' claim")
        raise credentials_exception

    try:
        user_id = UUID(user_id_str)
    except ValueError:
        logger.warning("Authentication failed: Invalid user ID format", user_id=user_id_str)
        raise credentials_exception

    user = await UserRepository(db).get_user(user_id)
    if user is None or user.is_deleted:
        logger.warning("Authentication failed: User not found", user_id=user_id_str)
        raise credentials_exception

    set_user_id(str(user.id))
    return user


async def get_current_active_user(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """
    Raises:
        HTTPException: 403 if the account is inactive
    """
    if not current_user.is_active:
        logger.warning("Access denied: User is inactive", user_id=str(current_user.id))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user",
        )
    return current_user


async def require_admin(
    current_user: Annotated[User, Depends(get_current_active_user)],
) -> User:
    if not current_user.is_admin:
        logger.warning(
            "Access denied: Insufficient permissions",
            user_id=str(current_user.id),
            user_role=current_user.role.value,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


async def get_order_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> OrderService:
    return OrderService(session=db, cache=OrderCache(get_redis_client()))


CurrentUser = Annotated[User, Depends(get_current_active_user)]
AdminUser = Annotated[User, Depends(require_admin)]
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]

from fastapi import Request, HTTPException, status, Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from botdesk.core.config import settings
from sqlalchemy.orm import Session
from botdesk.core.database import get_db
from botdesk.core.firebase import caller_identity
from botdesk.services.entitlement_service import EntitlementService
import logging

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> dict:
    """
    Dependency to get current authenticated user from Firebase token.
    The caller's uid is the only source of resource ownership.
    """
    logger.info("get_current_user: Entry")

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        identity = await run_in_threadpool(caller_identity, credentials.credentials)
    except Exception as e:
        logger.error(f"get_current_user: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials"
        )
    user_id = identity['uid']

    # Used by the rate limiter keyed on user
    request.state.user_id = user_id
    logger.info(f"get_current_user: Success - {user_id}")
    return identity


async def require_admin(current_user: dict = Depends(get_current_user)) -> dict:
    """Dependency restricting a route to operators listed in ADMIN_USER_IDS"""
    if current_user['uid'] not in settings.admin_user_ids:
        logger.warning(f"require_admin: Denied - {current_user['uid']}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user


def get_current_account(
    current_user: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> dict:
    """Authenticated caller with a users row created on first request"""
    EntitlementService().ensure_user(
        db,
        current_user['uid'],
        email=current_user.get('email'),
        name=current_user.get('name')
    )
    return current_user

from fastapi import Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from botdesk.core.config import settings
from botdesk.core.firebase import caller_identity
from botdesk.core.database import SessionLocal
from botdesk.models.user import User
from botdesk.core.cache import get_cache
from datetime import datetime
import logging

logger = logging.getLogger(__name__)

# Rate limit configuration per plan (per_hour -1 = unlimited)
RATE_LIMITS = {
    'Free': {
        'per_minute': 30,
        'per_hour': 500,
    },
    'Basic': {
        'per_minute': 60,
        'per_hour': 1000,
    },
    'Premium': {
        'per_minute': 120,
        'per_hour': -1,
    },
}

# Default rate limits for unauthenticated requests (IP-based)
DEFAULT_IP_LIMITS = {
    'per_minute': 30,
    'per_hour': 500,
}

EXEMPT_PATHS = {'/health', '/docs', '/openapi.json', '/redoc'}


def effective_plan(user: User) -> str:
    """Plan used for rate limiting; lapsed subscriptions fall back to Free"""
    if user.subscription_status != 'active':
        return 'Free'
    return user.subscription_plan if user.subscription_plan in RATE_LIMITS else 'Free'


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Middleware to apply rate limiting based on user plan or IP address.
    Counters live in Redis; when Redis is unavailable requests pass through.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.cache = get_cache()

    async def dispatch(self, request: Request, call_next):
        if not settings.rate_limit_enabled or request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        # Stripe retries on non-2xx, signature check guards this path instead
        if request.url.path.startswith(f"{settings.api_v1_str}/billing/webhook"):
            return await call_next(request)

        # Blocking: Firebase verification, DB and Redis calls run in the threadpool
        user_id, plan = await run_in_threadpool(self._identify, request)

        if user_id:
            if not await run_in_threadpool(self._check_limit, f"user:{user_id}", RATE_LIMITS[plan]):
                limits = RATE_LIMITS[plan]
                return JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content={
                        "detail": f"Rate limit exceeded. Your {plan} plan allows {limits['per_minute']} requests per minute. Please try again later.",
                        "retry_after": 60
                    },
                    headers={
                        "Retry-After": "60",
                        "X-RateLimit-Limit": str(limits['per_minute']),
                        "X-RateLimit-Remaining": "0",
                    }
                )
        else:
            client_ip = self._get_client_ip(request)
            if not await run_in_threadpool(self._check_limit, f"ip:{client_ip}", DEFAULT_IP_LIMITS):
                return JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content={
                        "detail": "Rate limit exceeded. Please authenticate or try again later.",
                        "retry_after": 60
                    },
                    headers={"Retry-After": "60"}
                )

        return await call_next(request)

    def _identify(self, request: Request):
        """Resolve (user_id, plan) from the bearer token, (None, None) if anonymous"""
        auth_header = request.headers.get('Authorization')
        if not auth_header or not auth_header.startswith('Bearer '):
            return None, None

        try:
            identity = caller_identity(auth_header.split(' ', 1)[1])
        except Exception as e:
            # The auth dependency reports the error to the client later
            logger.debug(f"Rate limit middleware: Could not verify token: {e}")
            return None, None

        if identity is None:
            return None, None
        user_id = identity['uid']

        db = SessionLocal()
        try:
            user = db.query(User).filter(User.id == user_id).first()
            plan = effective_plan(user) if user else 'Free'
        finally:
            db.close()
        return user_id, plan

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP address from request"""
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            # Take the first IP in the chain
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"

    def _check_limit(self, subject: str, limits: dict) -> bool:
        """Check and count one request for subject ('user:<id>' or 'ip:<addr>')"""
        now = datetime.utcnow()
        minute_key = f"rate_limit:{subject}:minute:{now.replace(second=0, microsecond=0).isoformat()}"
        minute_count = self.cache.get_int(minute_key) or 0

        if minute_count >= limits['per_minute']:
            logger.warning(f"Rate limit exceeded (per minute) - {subject}")
            return False

        if limits['per_hour'] > 0:
            hour_key = f"rate_limit:{subject}:hour:{now.replace(minute=0, second=0, microsecond=0).isoformat()}"
            hour_count = self.cache.get_int(hour_key) or 0

            if hour_count >= limits['per_hour']:
                logger.warning(f"Rate limit exceeded (per hour) - {subject}")
                return False

            self.cache.set(hour_key, hour_count + 1, ttl_minutes=60)

        self.cache.set(minute_key, minute_count + 1, ttl_minutes=1)
        return True

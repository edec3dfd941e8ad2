"""Redis-backed rate limiter."""
import logging
import time
from typing import Optional, Tuple
import redis
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.config import API_TOKENS, RATE_LIMIT_PER_MINUTE_IP, RATE_LIMIT_PER_MINUTE_USER
from storefront.monitoring import rate_limit_exceeded_counter, suspicious_activity_counter

logger = logging.getLogger(__name__)

# Provider retries and probes are never throttled
EXEMPT_PATH_PREFIXES = ("/webhooks/", "/health")


class RedisRateLimiter(BaseHTTPMiddleware):
    """
    Rate limiter using Redis for distributed rate limiting.

    Implements dual-tier sliding window rate limiting:
    - Per IP: Higher limit - handles shared IPs
    - Per user: Lower limit - prevents individual abuse

    Redis failures fail open.
    """

    def __init__(
        self,
        app,
        redis_client: redis.Redis,
        requests_per_minute_ip: int = RATE_LIMIT_PER_MINUTE_IP,
        requests_per_minute_user: int = RATE_LIMIT_PER_MINUTE_USER,
        window_seconds: int = 60
    ):
        """
        Initialize Redis-backed rate limiter.

        Args:
            app: FastAPI application
            redis_client: Redis connection
            requests_per_minute_ip: Max requests per IP per minute
            requests_per_minute_user: Max requests per user per minute
            window_seconds: Sliding window size in seconds
        """
        super().__init__(app)
        self.redis = redis_client
        self.requests_per_minute_ip = requests_per_minute_ip
        self.requests_per_minute_user = requests_per_minute_user
        self.window_seconds = window_seconds

    def _check_rate_limit(
        self,
        key: str,
        limit: int,
        window: int
    ) -> Tuple[bool, int]:
        """
        Check rate limit using Redis sorted set (sliding window).

        Algorithm:
        1. Remove timestamps older than window
        2. Count requests in window
        3. Add current request
        4. Set TTL

        Args:
            key: Redis key for this limit (e.g., "rate:ip:192.168.1.1")
            limit: Maximum requests allowed
            window: Time window in seconds

        Returns:
            Tuple of (is_allowed, current_count)
        """
        try:
            current_time = time.time()
            window_start = current_time - window

            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            pipe.zadd(key, {str(current_time): current_time})
            pipe.expire(key, window + 1)
            results = pipe.execute()

            # Count BEFORE adding current request
            count = results[1]

            return count < limit, count + 1

        except redis.RedisError as e:
            logger.error("Redis rate limit error", extra={"error": str(e)})
            return True, 0

    def _rejected(self, limit_type: str, limit: int) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content={
                "message": f"Rate limit exceeded for {limit_type}. Maximum {limit} requests per minute."
            },
            headers={"Retry-After": str(self.window_seconds)}
        )

    @staticmethod
    def _user_id(request: Request) -> Optional[str]:
        auth_header = request.headers.get("authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return None
        token = auth_header.split(" ", 1)[1].strip()
        entry = API_TOKENS.get(token)
        return entry[0] if entry else None

    async def dispatch(self, request: Request, call_next):
        """
        Process request with Redis-backed dual-tier rate limiting.

        Returns:
            Response or 429 if rate limited
        """
        if request.url.path.startswith(EXEMPT_PATH_PREFIXES):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        if "x-forwarded-for" in request.headers:
            client_ip = request.headers["x-forwarded-for"].split(",")[0].strip()

        user_id = self._user_id(request)

        # --- IP-based rate limiting ---
        ip_allowed, ip_count = self._check_rate_limit(
            f"rate:ip:{client_ip}",
            self.requests_per_minute_ip,
            self.window_seconds
        )
        if not ip_allowed:
            rate_limit_exceeded_counter.add(1, {"limit_type": "ip"})
            logger.warning("Rate limit exceeded for IP", extra={
                "client_ip": client_ip,
                "count": ip_count,
                "limit": self.requests_per_minute_ip
            })
            return self._rejected("IP", self.requests_per_minute_ip)

        # --- User-based rate limiting ---
        if user_id:
            user_allowed, user_count = self._check_rate_limit(
                f"rate:user:{user_id}",
                self.requests_per_minute_user,
                self.window_seconds
            )
            if not user_allowed:
                rate_limit_exceeded_counter.add(1, {"limit_type": "user"})
                logger.warning("Rate limit exceeded for user", extra={
                    "user_id": user_id,
                    "count": user_count,
                    "limit": self.requests_per_minute_user
                })
                return self._rejected("user", self.requests_per_minute_user)

        response = await call_next(request)

        self._detect_suspicious_activity(response.status_code, client_ip)

        return response

    def _record(self, kind: str, client_ip: str, threshold: int, window: int = 300) -> None:
        current_time = time.time()
        key = f"suspicious:{kind}:{client_ip}"
        self.redis.zadd(key, {str(current_time): current_time})
        self.redis.expire(key, window + 1)

        count = self.redis.zcount(key, current_time - window, current_time)
        if count >= threshold:
            suspicious_activity_counter.add(1, {"type": kind})
            logger.warning("Suspicious activity detected", extra={
                "type": kind,
                "client_ip": client_ip,
                "count": count,
                "window_seconds": window
            })

    def _detect_suspicious_activity(self, status_code: int, client_ip: str) -> None:
        """
        Detect suspicious activity patterns within a 5 minute window.

        - Credential stuffing: 5+ failed auths
        - Endpoint scanning: 10+ 404s
        - Abuse: 20+ 4xx errors
        """
        try:
            if status_code == 401:
                self._record("credential_stuffing", client_ip, threshold=5)
            if status_code == 404:
                self._record("endpoint_scanning", client_ip, threshold=10)
            if 400 <= status_code < 500:
                self._record("abuse", client_ip, threshold=20)
        except redis.RedisError as e:
            logger.error("Error detecting suspicious activity", extra={"error": str(e)})

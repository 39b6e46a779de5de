"""Rate limiting middleware for the gateway.

Every request spends one token from its client's bucket before it reaches
the application. Bucket state lives in Redis, so all instances behind the
load balancer share one budget per client.
"""

from typing import Awaitable, Callable, Iterable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from bucketgate.app.core.logging import get_log_context, get_logger
from bucketgate.app.middleware.request_id import get_request_id
from bucketgate.app.exceptions import (
    AuthenticationError,
    RateLimitExceededError,
    StoreUnavailableError,
)
from bucketgate.app.services.token_bucket import (
    DEFAULT_KEY_PREFIX,
    AttemptResult,
    TokenBucketTransactor,
    derive_bucket_key,
)

logger = get_logger(__name__)

MAX_IDENTITY_LENGTH = 512

Downstream = Callable[[Request], Awaitable[Response]]


def get_client_identity(request: Request) -> Optional[str]:
    """Extract the client identity from the request.

    Uses the ``Authorization: Bearer <token>`` header, falling back to a
    bare ``Bearer`` header sent by older clients.

    Returns:
        The identity string, or None if absent, empty or over-long
    """
    token = None
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        token = auth[7:].strip()
    if not token:
        token = request.headers.get("Bearer", "").strip()
    if not token:
        return None
    # Reject before hashing so huge headers cost nothing
    if len(token) > MAX_IDENTITY_LENGTH:
        return None
    return token


class AdmissionGate:
    """Admit or reject one request against its client's token bucket.

    Outcomes:
    - no identity: 401, the store is not touched
    - admitted: the downstream response, unchanged
    - denied: 429 with an empty body; downstream is not called
    - store unavailable: 503 when failing closed, otherwise forwarded
    """

    def __init__(
        self,
        transactor: TokenBucketTransactor,
        fail_closed: bool = True,
        expose_headers: bool = False,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ):
        """Initialize the gate.

        Args:
            transactor: Bucket transactor bound to the shared Redis client
            fail_closed: Reject requests when Redis is unavailable
            expose_headers: Add X-RateLimit-* headers to responses
            key_prefix: Namespace of bucket keys in Redis
        """
        self.transactor = transactor
        self.fail_closed = fail_closed
        self.expose_headers = expose_headers
        self.key_prefix = key_prefix

    async def check(self, identity: Optional[str]) -> AttemptResult:
        """Spend one token for ``identity``.

        Raises:
            AuthenticationError: No identity presented
            RateLimitExceededError: Bucket empty or contention exhausted
            StoreUnavailableError: Redis failed during the transaction
        """
        if not identity:
            raise AuthenticationError()
        key = derive_bucket_key(identity, self.key_prefix)
        result = await self.transactor.attempt(key)
        if not result.allowed:
            logger.debug(
                "Request denied by rate limit",
                extra=get_log_context(bucket_key=key, outcome=result.outcome, attempts=result.attempts),
            )
            raise RateLimitExceededError(limit=result.limit, retry_after=result.retry_after)
        return result

    async def handle(
        self,
        request: Request,
        identity: Optional[str],
        downstream: Downstream,
    ) -> Response:
        """Run admission for ``request`` and forward it on success."""
        request_id = get_request_id(request)
        try:
            result = await self.check(identity)
        except AuthenticationError as e:
            return Response(status_code=e.status_code)
        except RateLimitExceededError as e:
            response = Response(status_code=e.status_code)
            if e.retry_after:
                response.headers["Retry-After"] = str(e.retry_after)
            if self.expose_headers:
                self._add_headers(response, e.limit, e.remaining)
            return response
        except StoreUnavailableError as e:
            if self.fail_closed:
                logger.error(
                    f"Rate limiting fail-closed triggered: {e}. Request denied.",
                    extra=get_log_context(
                        request_id=request_id, outcome="store_error", path=request.url.path
                    ),
                )
                return Response(status_code=e.status_code)
            logger.warning(
                f"Rate limiting fail-open triggered: {e}. "
                "Request allowed without rate limit check.",
                extra=get_log_context(
                    request_id=request_id, outcome="store_error", path=request.url.path
                ),
            )
            return await downstream(request)

        response = await downstream(request)
        if self.expose_headers:
            self._add_headers(response, result.limit, result.remaining)
        return response

    def _add_headers(self, response: Response, limit: int, remaining: int) -> None:
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce the per-client token bucket on requests.

    Paths in ``exempt_paths`` (health checks) bypass the limiter.
    """

    def __init__(
        self,
        app,
        gate: AdmissionGate,
        exempt_paths: Iterable[str] = ("/health",),
    ):
        super().__init__(app)
        self.gate = gate
        self.exempt_paths = frozenset(exempt_paths)

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if request.url.path in self.exempt_paths:
            return await call_next(request)
        return await self.gate.handle(request, get_client_identity(request), call_next)

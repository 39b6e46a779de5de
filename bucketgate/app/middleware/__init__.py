"""Middleware package for the gateway."""

from bucketgate.app.middleware.rate_limit import (
    AdmissionGate,
    RateLimitMiddleware,
    get_client_identity,
)
from bucketgate.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "AdmissionGate",
    "RateLimitMiddleware",
    "RequestIdMiddleware",
    "get_client_identity",
    "get_request_id",
]

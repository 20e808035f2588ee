"""
Scoped throttles for the write-heavy and credential endpoints.

Function views cannot carry ``throttle_scope``, so each scope gets its own
class and is attached with ``@throttle_classes``.
"""
from rest_framework.throttling import AnonRateThrottle, UserRateThrottle


class LoginRateThrottle(AnonRateThrottle):
    scope = 'login'


class RegisterRateThrottle(AnonRateThrottle):
    scope = 'register'


class BidWriteRateThrottle(UserRateThrottle):
    scope = 'bid_write'

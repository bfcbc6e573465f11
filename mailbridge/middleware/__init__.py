"""HTTP middleware. Applied in mailbridge.main."""

from mailbridge.middleware.request_id import RequestIDMiddleware

__all__ = ["RequestIDMiddleware"]

"""Custom middleware."""

from authgate.middleware.route_guard import RouteGuardMiddleware

__all__ = ["RouteGuardMiddleware"]

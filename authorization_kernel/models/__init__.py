"""ORM models for the authorization kernel."""

from authorization_kernel.models.authorization import (
    Authorization,
    AuthorizationServiceType,
    AuthorizationUtilization,
)

__all__ = [
    "Authorization",
    "AuthorizationServiceType",
    "AuthorizationUtilization",
]

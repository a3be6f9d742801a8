"""Selectors for the authorization kernel (read side)."""

from authorization_kernel.selectors.authorization_selector import AuthorizationSelector

__all__ = [
    "AuthorizationSelector",
]

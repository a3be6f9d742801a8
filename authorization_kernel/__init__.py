"""
Authorization Kernel

Service authorization and utilization tracking for a billing backend:
- Authorizations with per-service-type caps
- Atomic utilization ledger that never passes its cap
- Overlap detection between authorizations of one client
- Validation of candidate billable services
- Status lifecycle with automatic ACTIVE -> EXPIRING
"""

__version__ = "0.1.0"

"""Pure functional core: clock, DTOs, lifecycle table, policy, rules."""

from authorization_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from authorization_kernel.domain.dtos import (
    AdjustDirection,
    AuthorizationHeader,
    AuthorizationInfo,
    AuthorizationPage,
    AuthorizationPatch,
    AuthorizationStatus,
    CandidateService,
    DateRange,
    ServiceRecording,
    ServiceTypeEntry,
    ServiceTypeInfo,
    StatusChange,
    UtilizationSnapshot,
    ValidationIssue,
    ValidationResult,
)
from authorization_kernel.domain.policy import RetryPolicy, UtilizationPolicy

__all__ = [
    "AdjustDirection",
    "AuthorizationHeader",
    "AuthorizationInfo",
    "AuthorizationPage",
    "AuthorizationPatch",
    "AuthorizationStatus",
    "CandidateService",
    "Clock",
    "DateRange",
    "DeterministicClock",
    "RetryPolicy",
    "ServiceRecording",
    "ServiceTypeEntry",
    "ServiceTypeInfo",
    "StatusChange",
    "SystemClock",
    "UtilizationPolicy",
    "UtilizationSnapshot",
    "ValidationIssue",
    "ValidationResult",
]

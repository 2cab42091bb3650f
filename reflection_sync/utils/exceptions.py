from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    AVAILABILITY = "availability"
    WRITE = "write"
    SUBSCRIPTION = "subscription"
    DATA = "data"
    VALIDATION = "validation"


class SyncError(Exception):
    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.AVAILABILITY,
        path: Optional[str] = None,
    ) -> None:
        self.message = message
        self.category = category
        self.path = path
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.category.value}] {self.message}"]
        if self.path:
            parts.append(f"Path: {self.path}")
        return " | ".join(parts)


class StoreUnavailable(SyncError):
    def __init__(self, message: str = "Remote store unavailable", path: Optional[str] = None) -> None:
        super().__init__(message, ErrorCategory.AVAILABILITY, path)


class WriteRejected(SyncError):
    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, ErrorCategory.WRITE, path)


class SubscriptionError(SyncError):
    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, ErrorCategory.SUBSCRIPTION, path)


class MalformedRecord(SyncError):
    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, ErrorCategory.DATA, path)


class OnboardingIncomplete(SyncError):
    def __init__(self, message: str, missing: Optional[list[str]] = None) -> None:
        self.missing = list(missing or [])
        super().__init__(message, ErrorCategory.VALIDATION)

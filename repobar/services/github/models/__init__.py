"""
GitHub Models Module

Shared types, enums, and models for device-flow auth and issues.
"""

from repobar.services.github.models.types import (
    AuthState,
    Comment,
    DeviceCode,
    Issue,
    IssuePage,
    IssueState,
    Label,
    StateReason,
)

__all__ = [
    "AuthState",
    "Comment",
    "DeviceCode",
    "Issue",
    "IssuePage",
    "IssueState",
    "Label",
    "StateReason",
]

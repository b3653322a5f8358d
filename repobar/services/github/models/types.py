"""
Shared types and models for GitHub authentication and issues.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthState(str, Enum):
    IDLE = "idle"
    AWAITING_CODE = "awaiting_code"
    POLLING = "polling"
    AUTHENTICATED = "authenticated"
    ERROR = "error"


class IssueState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class StateReason(str, Enum):
    COMPLETED = "completed"
    NOT_PLANNED = "not_planned"


@dataclass(frozen=True)
class DeviceCode:
    device_code: str
    user_code: str
    verification_uri: str
    expires_in: float
    interval: float


class Label(BaseModel):
    name: str
    color: str = ""
    description: Optional[str] = None


class Comment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    body: str = ""
    author: str = ""
    author_association: str = "NONE"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Comment":
        return cls(
            id=data["id"],
            body=data.get("body") or "",
            author=(data.get("user") or {}).get("login", ""),
            author_association=data.get("author_association") or "NONE",
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


class Issue(BaseModel):
    number: int
    title: str
    body: str = ""
    state: IssueState = IssueState.OPEN
    state_reason: Optional[StateReason] = None
    labels: List[Label] = Field(default_factory=list)
    author: str = ""
    comments: List[Comment] = Field(default_factory=list)
    comments_count: int = 0
    comments_loaded: bool = False
    html_url: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Issue":
        """Build an Issue from a REST payload; comments stay empty until loaded."""
        reason = data.get("state_reason")
        return cls(
            number=data["number"],
            title=data.get("title") or "",
            body=data.get("body") or "",
            state=IssueState(data.get("state", "open")),
            # "reopened" and other reasons carry no meaning for a closed/open toggle
            state_reason=reason if reason in {r.value for r in StateReason} else None,
            labels=[Label(**_label_fields(label)) for label in data.get("labels") or []],
            author=(data.get("user") or {}).get("login", ""),
            comments_count=data.get("comments") or 0,
            html_url=data.get("html_url") or "",
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            closed_at=data.get("closed_at"),
        )


class IssuePage(BaseModel):
    issues: List[Issue] = Field(default_factory=list)
    page: int = 1
    per_page: int = 30
    has_more: bool = False


def _label_fields(label: Any) -> Dict[str, Any]:
    if isinstance(label, str):
        return {"name": label}
    return {
        "name": label.get("name", ""),
        "color": label.get("color") or "",
        "description": label.get("description"),
    }


def is_pull_request(data: Dict[str, Any]) -> bool:
    """The issues endpoint also returns pull requests, marked by this key."""
    return "pull_request" in data

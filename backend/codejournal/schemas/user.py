"""
Code Journal Backend — User Schemas
====================================

What:  Request/response models for registration, login, profiles, user
       queries, permission changes and the federation user view.
Why:   Shape checks at the edge; the password policy and name rules are
       enforced again by services/validation.py.
"""

from typing import List, Optional

from pydantic import Field

from codejournal.schemas.common import CamelModel


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class RegisterRequest(CamelModel):
    email: str = Field(max_length=320)
    password: str = Field(min_length=1, max_length=256)
    first_name: str = Field(max_length=32)
    last_name: str = Field(max_length=32)
    phone_number: Optional[str] = Field(default=None, max_length=32)
    organization: Optional[str] = Field(default=None, max_length=128)
    capabilities: List[str] = Field(
        default_factory=lambda: ["publisher"],
        description="Any of publisher, reviewer (editor cannot be self-granted)",
    )


class LoginRequest(CamelModel):
    email: str
    password: str


class PermissionsRequest(CamelModel):
    capabilities: List[str] = Field(description="Full new capability set")


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class RegisterResponse(CamelModel):
    user_id: str


class LoginResponse(CamelModel):
    user_id: str
    access_token: str
    token_type: str = "bearer"


class UserProfileResponse(CamelModel):
    """
    What:  A user's public profile.
    Who:   GET /api/users/{id}; `submissions` lists authored submission IDs.
    """
    user_id: str
    email: str
    first_name: str
    last_name: str
    phone_number: Optional[str] = None
    organization: Optional[str] = None
    role: str
    capabilities: List[str]
    submissions: List[int] = Field(default_factory=list)


class PermissionsResponse(CamelModel):
    user_id: str
    role: str
    capabilities: List[str]


class FederatedUserResponse(CamelModel):
    """Profile shape served to peer journals (no contact details)."""
    user_id: str
    first_name: str
    last_name: str
    organization: Optional[str] = None


class UserSummary(CamelModel):
    """One row of a user query; no password hash, email or phone number."""
    user_id: str
    first_name: str
    last_name: str
    organization: Optional[str] = None
    role: str
    capabilities: List[str]


class UserQueryResponse(CamelModel):
    users: List[UserSummary]
    total_count: int

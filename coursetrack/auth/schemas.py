"""Pydantic schemas for authentication."""

from uuid import UUID

from pydantic import BaseModel, Field

from coursetrack.auth.permissions import UserRole


class AuthenticatedUser(BaseModel):
    """User identity carried by a verified access token."""

    id: UUID = Field(..., description="User UUID (token subject)")
    email: str | None = Field(None, description="Email address")
    role: UserRole = Field(UserRole.USER, description="User role")

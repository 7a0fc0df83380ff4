"""Pydantic schemas for the authenticated user.

The login flow itself lives outside this package; it hands over the JWT and
the user record returned by ``/auth/login``, which are cached in local
storage under ``jwt_token`` and ``user``.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class UserProfile(BaseModel):
    """Current user as returned by the auth API.

    Attributes:
        id: Numeric user ID (also the sender ID on direct messages).
        username: Login name.
        email: Account email.
        bio: Free-form profile text.
        birthdate: ``YYYY-MM-DD``.
        country_code: ISO 3166-1 alpha-3 code (wire name ``country-code``).
        country_name: Display name (wire name ``country-name``).
        avatar_url: Optional avatar location.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = Field(..., description="User ID")
    username: str = Field(default="", description="Login name")
    email: str = Field(default="", description="Account email")
    bio: str = Field(default="", description="Profile text")
    birthdate: str = Field(default="", description="YYYY-MM-DD")
    country_code: str = Field(default="", alias="country-code")
    country_name: Optional[str] = Field(default=None, alias="country-name")
    avatar_url: Optional[str] = Field(default=None, description="Avatar URL")

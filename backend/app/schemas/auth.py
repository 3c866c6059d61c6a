"""Authentication schemas."""
from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Model exchanged with the client using camelCase keys."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class UserRegister(CamelModel):
    """User registration request."""

    email: str | None = None
    password: str | None = None
    name: str | None = None


class UserLogin(CamelModel):
    """User login request."""

    email: str
    password: str


class TokenRefresh(CamelModel):
    """Token refresh request."""

    refresh_token: str


class PasswordChange(CamelModel):
    """Password change request."""

    current_password: str
    new_password: str


class UserResponse(CamelModel):
    """User info response. The password hash is never part of it."""

    id: str
    email: str
    name: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class AuthResponse(CamelModel):
    """User plus a fresh token pair."""

    message: str
    user: UserResponse
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"


class MeResponse(CamelModel):
    """Current user profile."""

    message: str
    user: UserResponse


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str


class LogoutResponse(MessageResponse):
    """Logout acknowledgement."""

    timestamp: str

"""Authentication API endpoints."""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, status

from app.api.deps import get_auth_service, get_current_user, get_request_ip
from app.models.user import User
from app.schemas.auth import (
    AuthResponse,
    LogoutResponse,
    MeResponse,
    MessageResponse,
    PasswordChange,
    TokenRefresh,
    UserLogin,
    UserRegister,
    UserResponse,
)
from app.services.auth import AuthResult, AuthService

router = APIRouter(prefix="/auth", tags=["auth"])


def _auth_response(message: str, result: AuthResult) -> AuthResponse:
    return AuthResponse(
        message=message,
        user=UserResponse.model_validate(result.user),
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        expires_in=result.tokens.expires_in,
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    user_data: UserRegister,
    client_ip: str | None = Depends(get_request_ip),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Register a new user and sign them in."""
    result = auth_service.register(
        email=user_data.email,
        password=user_data.password,
        name=user_data.name,
        address=client_ip,
    )
    return _auth_response("User registered successfully", result)


@router.post("/login", response_model=AuthResponse)
def login(
    user_data: UserLogin,
    auth_service: AuthService = Depends(get_auth_service),
    client_ip: str | None = Depends(get_request_ip),
):
    """Login and get tokens."""
    result = auth_service.login(user_data.email, user_data.password, address=client_ip)
    return _auth_response("Login successful", result)


@router.get("/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)):
    """Get the current user's profile."""
    return MeResponse(
        message="User profile retrieved successfully",
        user=UserResponse.model_validate(current_user),
    )


@router.post("/refresh", response_model=AuthResponse)
def refresh_tokens(
    token_data: TokenRefresh,
    auth_service: AuthService = Depends(get_auth_service),
    client_ip: str | None = Depends(get_request_ip),
):
    """Exchange a refresh token for a new token pair."""
    result = auth_service.refresh(token_data.refresh_token, address=client_ip)
    return _auth_response("Tokens refreshed successfully", result)


@router.put("/change-password", response_model=MessageResponse)
def change_password(
    password_data: PasswordChange,
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Change the current user's password."""
    auth_service.change_password(
        current_user,
        password_data.current_password,
        password_data.new_password,
    )
    return MessageResponse(message="Password changed successfully")


@router.post("/logout", response_model=LogoutResponse)
def logout(
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Logout. Tokens are stateless, so the client is responsible for discarding them."""
    auth_service.logout(current_user)
    return LogoutResponse(
        message="Logout successful",
        timestamp=datetime.now(timezone.utc).isoformat(),
    )

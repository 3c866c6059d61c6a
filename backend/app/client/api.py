"""Async HTTP client for the auth endpoints."""
import logging

import httpx

from app.schemas.auth import AuthResponse, MeResponse, UserResponse

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Non-2xx response or network failure. ``status_code`` is 0 when the server was unreachable."""

    def __init__(self, status_code: int, code: str, message: str, details: list[str] | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or []

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401


class AuthClient:
    """Thin wrapper over ``httpx.AsyncClient`` that speaks the auth API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "AuthClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def request(
        self,
        method: str,
        path: str,
        access_token: str | None = None,
        **kwargs,
    ) -> httpx.Response:
        """Send a request, raising ApiError for anything but a 2xx response."""
        headers = dict(kwargs.pop("headers", None) or {})
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        try:
            response = await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"{method} {path} failed: {e.__class__.__name__}")
            raise ApiError(0, "NetworkError", "Unable to connect to server") from e

        if response.is_success:
            return response

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        raise ApiError(
            response.status_code,
            body.get("error") or "HttpError",
            body.get("message") or f"HTTP {response.status_code}: {response.reason_phrase}",
            body.get("details"),
        )

    async def register(self, email: str, password: str, name: str | None = None) -> AuthResponse:
        payload = {"email": email, "password": password}
        if name is not None:
            payload["name"] = name
        response = await self.request("POST", "/auth/register", json=payload)
        return AuthResponse.model_validate(response.json())

    async def login(self, email: str, password: str) -> AuthResponse:
        response = await self.request("POST", "/auth/login", json={"email": email, "password": password})
        return AuthResponse.model_validate(response.json())

    async def me(self, access_token: str) -> UserResponse:
        response = await self.request("GET", "/auth/me", access_token=access_token)
        return MeResponse.model_validate(response.json()).user

    async def refresh(self, refresh_token: str) -> AuthResponse:
        response = await self.request("POST", "/auth/refresh", json={"refreshToken": refresh_token})
        return AuthResponse.model_validate(response.json())

    async def change_password(self, access_token: str, current_password: str, new_password: str) -> None:
        await self.request(
            "PUT",
            "/auth/change-password",
            access_token=access_token,
            json={"currentPassword": current_password, "newPassword": new_password},
        )

    async def logout(self, access_token: str) -> None:
        await self.request("POST", "/auth/logout", access_token=access_token)

"""Client-side session lifecycle.

:class:`SessionBootstrapper` recovers a signed-in session from stored tokens
at startup and keeps it alive afterwards:

1. no stored access token: ``unauthenticated``
2. access token present: ``authenticating``, fetch the profile; success is ``authenticated``
3. profile fetch failed: ``refreshing``, exchange the stored refresh token
4. refresh succeeded: store the new pair and fetch the profile once more
5. refresh failed: clear stored tokens, ``unauthenticated``

Bootstrap and refresh are single-flight: concurrent callers share one
in-flight task. :meth:`SessionBootstrapper.cancel` abandons in-flight work;
anything it would have produced is dropped instead of being applied.
"""
import asyncio
import enum
import logging
from typing import Awaitable, Callable, TypeVar

import httpx

from app.client.api import ApiError, AuthClient
from app.client.storage import TokenStore
from app.schemas.auth import AuthResponse, UserResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"


class SessionBootstrapper:
    def __init__(self, client: AuthClient, store: TokenStore):
        self.client = client
        self.store = store
        self.state = SessionState.UNAUTHENTICATED
        self.user: UserResponse | None = None
        self.error: str | None = None
        self._generation = 0
        self._bootstrap_task: asyncio.Task | None = None
        self._refresh_task: asyncio.Task | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _set_state(self, generation: int, state: SessionState, user: UserResponse | None = None) -> None:
        if not self._is_current(generation):
            return
        self.state = state
        if state is SessionState.AUTHENTICATED:
            self.user = user
        elif state is SessionState.UNAUTHENTICATED:
            self.user = None

    def _accept(self, generation: int, result: AuthResponse) -> None:
        if not self._is_current(generation):
            return
        self.store.save(result.access_token, result.refresh_token)
        self.user = result.user

    # Bootstrap

    async def bootstrap(self) -> SessionState:
        """Recover the session from stored tokens; joins a bootstrap already in flight."""
        task = self._bootstrap_task
        if task is None or task.done():
            task = asyncio.create_task(self._run_bootstrap(self._generation))
            self._bootstrap_task = task
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return self.state
            raise

    async def _run_bootstrap(self, generation: int) -> SessionState:
        tokens = self.store.load()
        if not tokens.access_token:
            logger.debug("No stored access token")
            self._set_state(generation, SessionState.UNAUTHENTICATED)
            return self.state

        self._set_state(generation, SessionState.AUTHENTICATING)
        try:
            user = await self.client.me(tokens.access_token)
        except ApiError as e:
            logger.info(f"Stored access token rejected ({e.code}), trying refresh")
        else:
            self._set_state(generation, SessionState.AUTHENTICATED, user)
            return self.state

        if not self._is_current(generation):
            return self.state

        self._set_state(generation, SessionState.REFRESHING)
        try:
            await self._refresh_once(generation)
            access_token = self.store.load().access_token
            user = await self.client.me(access_token)
        except ApiError as e:
            logger.info(f"Session recovery failed ({e.code}), signing out")
            if self._is_current(generation):
                self.store.clear()
            self._set_state(generation, SessionState.UNAUTHENTICATED)
            return self.state

        self._set_state(generation, SessionState.AUTHENTICATED, user)
        return self.state

    def cancel(self) -> None:
        """Abandon in-flight bootstrap/refresh work without touching stored tokens."""
        self._generation += 1
        for task in (self._bootstrap_task, self._refresh_task):
            if task is not None and not task.done():
                task.cancel()
        self._bootstrap_task = None
        self._refresh_task = None
        if self.state in (SessionState.AUTHENTICATING, SessionState.REFRESHING):
            self.state = SessionState.UNAUTHENTICATED
            self.user = None

    # Refresh

    async def refresh(self) -> AuthResponse:
        """Exchange the stored refresh token; concurrent callers share one request."""
        return await self._refresh_once(self._generation)

    async def _refresh_once(self, generation: int) -> AuthResponse:
        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.create_task(self._run_refresh(generation))
            self._refresh_task = task
        return await asyncio.shield(task)

    async def _run_refresh(self, generation: int) -> AuthResponse:
        refresh_token = self.store.load().refresh_token
        if not refresh_token:
            raise ApiError(401, "SessionExpired", "No refresh token available")
        result = await self.client.refresh(refresh_token)
        self._accept(generation, result)
        return result

    # Authenticated calls

    async def _with_access_token(self, call: Callable[[str], Awaitable[T]]) -> T:
        access_token = self.store.load().access_token
        if not access_token:
            raise ApiError(401, "InvalidToken", "Not authenticated")
        try:
            return await call(access_token)
        except ApiError as e:
            if not e.is_unauthorized:
                raise

        generation = self._generation
        # Another caller may already have rotated the pair while this request was in flight.
        if self.store.load().access_token == access_token:
            try:
                await self._refresh_once(generation)
            except ApiError:
                if self._is_current(generation):
                    self.store.clear()
                self._set_state(generation, SessionState.UNAUTHENTICATED)
                raise
        return await call(self.store.load().access_token)

    async def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Call a protected endpoint, refreshing once if the access token is rejected."""
        return await self._with_access_token(
            lambda token: self.client.request(method, path, access_token=token, **kwargs)
        )

    # Account actions

    async def _sign_in(self, call: Callable[[], Awaitable[AuthResponse]]) -> UserResponse:
        self.cancel()
        generation = self._generation
        self.error = None
        self._set_state(generation, SessionState.AUTHENTICATING)
        try:
            result = await call()
        except ApiError as e:
            self.error = e.message
            self._set_state(generation, SessionState.UNAUTHENTICATED)
            raise
        self._accept(generation, result)
        self._set_state(generation, SessionState.AUTHENTICATED, result.user)
        return result.user

    async def login(self, email: str, password: str) -> UserResponse:
        return await self._sign_in(lambda: self.client.login(email, password))

    async def register(self, email: str, password: str, name: str | None = None) -> UserResponse:
        return await self._sign_in(lambda: self.client.register(email, password, name))

    async def change_password(self, current_password: str, new_password: str) -> None:
        await self._with_access_token(
            lambda token: self.client.change_password(token, current_password, new_password)
        )

    async def logout(self) -> None:
        """Tell the server, then always drop local tokens."""
        access_token = self.store.load().access_token
        self.cancel()
        try:
            if access_token:
                await self.client.logout(access_token)
        except ApiError as e:
            logger.warning(f"Logout request failed ({e.code}); clearing local session anyway")
        finally:
            self.store.clear()
            self.state = SessionState.UNAUTHENTICATED
            self.user = None
            self.error = None

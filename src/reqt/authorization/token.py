"""Token-based authorization with single-flight refresh.

OAuth2, OIDC and Keycloak providers hold an access token with an expiry. When
the token is missing, expired, or about to expire, the first caller noticing it
starts one refresh exchange and every concurrent caller awaits that same
exchange instead of issuing its own.
"""

import asyncio
import time
from abc import abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from typing import Self, override

import httpx
import logfire_api as logfire
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, SecretStr

from ..errors import AuthExpired
from ..settings import REQT_SETTINGS
from .base import AuthorizationProvider


class TokenGrant(BaseModel):
    """Token endpoint response."""

    access_token: str
    refresh_token: str | None = None
    expires_in: float | None = None
    token_type: str = "Bearer"


class TokenState(BaseModel):
    """The token currently in use. Replaced as a whole on refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str | None = None
    # Epoch seconds, None when the server did not announce an expiry
    expires_at: float | None = None

    def expires_within(self, margin: float, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return self.expires_at - margin <= now


TokenExchange = Callable[[str, dict[str, str]], Awaitable[TokenGrant]]
"""Posts a form-encoded grant to a token endpoint and returns the grant."""


class TokenAuthorization(AuthorizationProvider):
    """Base class for providers authenticating with expiring bearer tokens.

    Attributes
    ----------
    client_id : str
        OAuth client identifier.
    client_secret : SecretStr or None
        OAuth client secret, omitted for public clients.
    scopes : list[str]
        Scopes requested by the initial grant.
    refresh_margin : float
        Seconds before expiry at which the token is considered expired.
    timeout : float
        Timeout of the default token exchange, in seconds.
    """

    client_id: str
    client_secret: SecretStr | None = None
    scopes: list[str] = Field(default_factory=list)
    refresh_margin: float = Field(
        default_factory=lambda: REQT_SETTINGS.refresh_margin, ge=0
    )
    timeout: float = Field(default_factory=lambda: REQT_SETTINGS.http_timeout, gt=0)

    _state: TokenState | None = PrivateAttr(default=None)
    _inflight: asyncio.Task[None] | None = PrivateAttr(default=None)
    _exchange: TokenExchange | None = PrivateAttr(default=None)

    @abstractmethod
    def token_endpoint(self) -> str:
        """URL of the token endpoint."""

    @abstractmethod
    def initial_grant(self) -> dict[str, str]:
        """Form parameters used when no refresh token is available."""

    @property
    @override
    def refreshable(self) -> bool:
        return True

    @property
    def token_state(self) -> TokenState | None:
        return self._state

    def with_exchange(self, exchange: TokenExchange) -> Self:
        """Return a copy of this provider using `exchange` to obtain tokens.

        Parameters
        ----------
        exchange : TokenExchange
            Async callable receiving the token URL and the grant form.

        Returns
        -------
        Self
            A new provider with no token yet.
        """
        provider = self.model_copy()
        provider._exchange = exchange
        provider._state = None
        provider._inflight = None
        return provider

    def with_token(
        self,
        access_token: str,
        *,
        refresh_token: str | None = None,
        expires_in: float | None = None,
    ) -> Self:
        """Return a copy of this provider seeded with a token obtained elsewhere.

        The copy keeps the token exchange and has no refresh in flight.
        """
        provider = self.model_copy()
        provider._inflight = None
        provider._state = TokenState(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=time.time() + expires_in if expires_in is not None else None,
        )
        return provider

    @override
    def header_for(self) -> dict[str, str]:
        if self._state is None:
            raise AuthExpired("No access token available, call ensure_valid() first")
        return {"Authorization": f"Bearer {self._state.access_token}"}

    @override
    async def ensure_valid(self) -> None:
        state = self._state
        if state is not None and not state.expires_within(self.refresh_margin):
            return

        task = self._inflight
        if task is None:
            task = asyncio.create_task(self._refresh(state))
            self._inflight = task
            task.add_done_callback(self._refresh_done)

        # A cancelled caller must not cancel the refresh other callers await
        await asyncio.shield(task)

    @override
    def invalidate(self, rejected_headers: Mapping[str, str] | None = None) -> None:
        state = self._state
        if state is None:
            return
        if rejected_headers is not None and rejected_headers != self.header_for():
            # Already rotated by a concurrent refresh
            return
        self._state = state.model_copy(update={"expires_at": 0.0})

    def _refresh_done(self, task: asyncio.Task[None]) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            task.exception()

    async def _refresh(self, previous: TokenState | None) -> None:
        if previous is not None and previous.refresh_token:
            form = self._client_params()
            form.update(grant_type="refresh_token", refresh_token=previous.refresh_token)
            grant_type = "refresh_token"
        else:
            form = self.initial_grant()
            grant_type = form.get("grant_type", "unknown")

        exchange = self._exchange or self._post_grant
        try:
            grant = await exchange(self.token_endpoint(), form)
        except Exception as err:
            logfire.error(
                "authorization.refresh_failed",
                kind=self.kind,
                grant_type=grant_type,
                error=str(err),
            )
            raise AuthExpired(f"Token refresh failed: {err}") from err

        self._state = TokenState(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token
            or (previous.refresh_token if previous else None),
            expires_at=time.time() + grant.expires_in
            if grant.expires_in is not None
            else None,
        )
        logfire.info(
            "authorization.token_refreshed",
            kind=self.kind,
            grant_type=grant_type,
            expires_in=grant.expires_in,
        )

    async def _post_grant(self, url: str, form: dict[str, str]) -> TokenGrant:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                url, data=form, headers={"Accept": "application/json"}
            )
            response.raise_for_status()
            return TokenGrant.model_validate(response.json())

    def _client_params(self) -> dict[str, str]:
        params = {"client_id": self.client_id}
        if self.client_secret is not None:
            params["client_secret"] = self.client_secret.get_secret_value()
        return params

    def _scope(self) -> str:
        return " ".join(self.scopes)


@AuthorizationProvider.register("oauth2")
class OAuth2Authorization(TokenAuthorization):
    """OAuth2 client credentials flow."""

    token_url: str

    @override
    def token_endpoint(self) -> str:
        return self.token_url

    @override
    def initial_grant(self) -> dict[str, str]:
        form = self._client_params()
        form["grant_type"] = "client_credentials"
        if self.scopes:
            form["scope"] = self._scope()
        return form


@AuthorizationProvider.register("oidc")
class OIDCAuthorization(OAuth2Authorization):
    """OpenID Connect client credentials flow, always requests `openid`."""

    @override
    def _scope(self) -> str:
        scopes = self.scopes if "openid" in self.scopes else ["openid", *self.scopes]
        return " ".join(scopes)

    @override
    def initial_grant(self) -> dict[str, str]:
        form = super().initial_grant()
        form["scope"] = self._scope()
        return form


@AuthorizationProvider.register("keycloak")
class KeycloakAuthorization(TokenAuthorization):
    """Keycloak resource owner password flow on a realm."""

    server_url: str
    realm: str
    username: str
    password: SecretStr

    @override
    def token_endpoint(self) -> str:
        return (
            f"{self.server_url.rstrip('/')}/realms/{self.realm}"
            "/protocol/openid-connect/token"
        )

    @override
    def initial_grant(self) -> dict[str, str]:
        form = self._client_params()
        form.update(
            grant_type="password",
            username=self.username,
            password=self.password.get_secret_value(),
        )
        if self.scopes:
            form["scope"] = self._scope()
        return form

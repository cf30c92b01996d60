import base64
from typing import override

from pydantic import Field, SecretStr

from .base import AuthorizationProvider


@AuthorizationProvider.register("none")
class NoAuthorization(AuthorizationProvider):
    """Anonymous access, no header is sent."""

    @override
    def header_for(self) -> dict[str, str]:
        return {}


@AuthorizationProvider.register("basic")
class BasicAuthorization(AuthorizationProvider):
    """`Authorization: Basic <base64(username:password)>`."""

    username: str
    password: SecretStr

    @override
    def header_for(self) -> dict[str, str]:
        credentials = f"{self.username}:{self.password.get_secret_value()}"
        encoded = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {encoded}"}


@AuthorizationProvider.register("bearer")
class BearerAuthorization(AuthorizationProvider):
    """`Authorization: Bearer <token>` with a long-lived token."""

    token: SecretStr

    @override
    def header_for(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token.get_secret_value()}"}


@AuthorizationProvider.register("api_key")
class ApiKeyAuthorization(AuthorizationProvider):
    """`X-API-Key: <key>`, the header name can be changed for APIs that differ."""

    key: SecretStr
    header_name: str = Field(default="X-API-Key")

    @override
    def header_for(self) -> dict[str, str]:
        return {self.header_name: self.key.get_secret_value()}

"""Authorization providers materializing request credentials.

Static schemes (none, basic, bearer, API key) only format headers. Token
schemes (OAuth2, OIDC, Keycloak) also refresh their token, one exchange at a
time no matter how many requests need it.
"""

from .base import AuthorizationProvider
from .static import (
    ApiKeyAuthorization,
    BasicAuthorization,
    BearerAuthorization,
    NoAuthorization,
)
from .token import (
    KeycloakAuthorization,
    OAuth2Authorization,
    OIDCAuthorization,
    TokenAuthorization,
    TokenExchange,
    TokenGrant,
    TokenState,
)

__all__ = [
    "ApiKeyAuthorization",
    "AuthorizationProvider",
    "BasicAuthorization",
    "BearerAuthorization",
    "KeycloakAuthorization",
    "NoAuthorization",
    "OAuth2Authorization",
    "OIDCAuthorization",
    "TokenAuthorization",
    "TokenExchange",
    "TokenGrant",
    "TokenState",
]

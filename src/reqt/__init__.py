from .authorization import (
    ApiKeyAuthorization,
    AuthorizationProvider,
    BasicAuthorization,
    BearerAuthorization,
    KeycloakAuthorization,
    NoAuthorization,
    OAuth2Authorization,
    OIDCAuthorization,
    TokenGrant,
    TokenState,
)
from .connector import Api, ApiBuilder
from .discriminated import Discriminated, discriminated_base
from .errors import (
    AuthExpired,
    Error,
    HttpStatusError,
    PaginationError,
    RateLimitExceeded,
    ReqtError,
    RetriesExhausted,
    TransportError,
)
from .executor import AttemptState, RequestExecutor
from .pagination import (
    Exhaustive,
    Fixed,
    OneShot,
    Page,
    PageCursor,
    PaginationEngine,
    PaginationRule,
    PaginationState,
)
from .policies import (
    FilterRule,
    Policies,
    PolicyComposer,
    RangeRule,
    SortOrder,
    SortRule,
)
from .rate_limiter import (
    BaseRateLimiter,
    RateLimitMode,
    TimePeriod,
    TokenBucketRateLimiter,
)
from .request import Request
from .retries import RetryPolicy
from .settings import REQT_SETTINGS, ReqtSettings
from .transport import HttpRequest, HttpResponse, HttpxTransport, Transport

__all__ = [
    "Api",
    "ApiBuilder",
    "ApiKeyAuthorization",
    "AttemptState",
    "AuthExpired",
    "AuthorizationProvider",
    "BaseRateLimiter",
    "BasicAuthorization",
    "BearerAuthorization",
    "Discriminated",
    "Error",
    "Exhaustive",
    "FilterRule",
    "Fixed",
    "HttpRequest",
    "HttpResponse",
    "HttpStatusError",
    "HttpxTransport",
    "KeycloakAuthorization",
    "NoAuthorization",
    "OAuth2Authorization",
    "OIDCAuthorization",
    "OneShot",
    "Page",
    "PageCursor",
    "PaginationEngine",
    "PaginationError",
    "PaginationRule",
    "PaginationState",
    "Policies",
    "PolicyComposer",
    "REQT_SETTINGS",
    "RangeRule",
    "RateLimitExceeded",
    "RateLimitMode",
    "ReqtError",
    "ReqtSettings",
    "Request",
    "RequestExecutor",
    "RetriesExhausted",
    "RetryPolicy",
    "SortOrder",
    "SortRule",
    "TimePeriod",
    "TokenBucketRateLimiter",
    "TokenGrant",
    "TokenState",
    "Transport",
    "TransportError",
    "discriminated_base",
]

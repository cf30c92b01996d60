import uuid
from collections import deque
from collections.abc import Callable

import pytest
from reqt import Api, HttpRequest, HttpResponse, RetryPolicy, TokenBucketRateLimiter

BASE_URL = "https://api.example.com/v1"


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add CLI toggle for integration tests."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run tests marked as integration.",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Skip integration tests unless explicitly requested."""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(
        reason="Pass --run-integration to include integration tests."
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


def pytest_sessionfinish(session, exitstatus):
    # If no tests were collected, set the exit status to 0 to avoid failure.
    if exitstatus == 5:
        session.exitstatus = 0


class FakeTransport:
    """Records sent requests and answers from a queue, then from a handler."""

    def __init__(self):
        self.requests: list[HttpRequest] = []
        self.responses: deque[HttpResponse] = deque()
        self.handler: Callable[[HttpRequest], HttpResponse] = lambda request: (
            HttpResponse(status_code=200, body=[])
        )

    def queue(self, *responses: HttpResponse) -> None:
        self.responses.extend(responses)

    async def __call__(self, request: HttpRequest) -> HttpResponse:
        self.requests.append(request)
        if self.responses:
            return self.responses.popleft()
        return self.handler(request)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def api(transport: FakeTransport) -> Api:
    """Connector with a generous rate limit and near-instant backoff."""
    return Api(
        base_url=BASE_URL,
        rate_limiter=TokenBucketRateLimiter(
            capacity=1000, period=1.0, id=str(uuid.uuid4())
        ),
        retry_policy=RetryPolicy(
            max_attempts=3, base_delay=0.001, max_delay=0.01, jitter=False
        ),
        page_size=10,
        transport=transport,
    )

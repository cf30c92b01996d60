import os

import pytest
from pydantic import SecretStr
from reqt import ApiBuilder, Fixed, KeycloakAuthorization

pytestmark = pytest.mark.integration


@pytest.fixture
def base_url() -> str:
    url = os.getenv("REQT_INTEGRATION_BASE_URL")
    if not url:
        pytest.skip("REQT_INTEGRATION_BASE_URL is not set")
    return url


async def test_public_listing(base_url: str):
    route = os.getenv("REQT_INTEGRATION_ROUTE", "")

    async with ApiBuilder(base_url).rate_limit(2).page_size(5).build() as api:
        items = await api.get(route).with_pagination(Fixed(2)).send()

    assert isinstance(items, list)
    assert len(items) <= 10


async def test_keycloak_token():
    server_url = os.getenv("REQT_KEYCLOAK_URL")
    if not server_url:
        pytest.skip("REQT_KEYCLOAK_URL is not set")

    provider = KeycloakAuthorization(
        server_url=server_url,
        realm=os.environ["REQT_KEYCLOAK_REALM"],
        client_id=os.environ["REQT_KEYCLOAK_CLIENT_ID"],
        username=os.environ["REQT_KEYCLOAK_USERNAME"],
        password=SecretStr(os.environ["REQT_KEYCLOAK_PASSWORD"]),
    )

    headers = await provider.headers()

    assert headers["Authorization"].startswith("Bearer ")
    assert provider.token_state is not None

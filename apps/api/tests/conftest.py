from collections.abc import Callable, Iterator
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from tutor_api.config import get_settings
from tutor_api.db import OfflineStore
from tutor_api.main import app, get_gateway, get_store
from tutor_api.services.sync import HttpxTransport, OfflineGateway, build_gateway

ORIGIN = "http://tutor.test"

Handler = Callable[[httpx.Request], httpx.Response]


class FakeUpstream:
    """Programmable stand-in for the application origin."""

    def __init__(self) -> None:
        self.online = True
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], Handler] = {}

    def route(self, method: str, path: str, handler: Handler) -> None:
        self.routes[(method.upper(), path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if not self.online:
            raise httpx.ConnectError("network down", request=request)
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(200, json={"ok": True, "path": request.url.path})
        return handler(request)

    def transport(self) -> HttpxTransport:
        return HttpxTransport(
            origin=ORIGIN,
            client=httpx.Client(base_url=ORIGIN, transport=httpx.MockTransport(self)),
        )


@pytest.fixture(autouse=True)
def reset_api_caches() -> Iterator[None]:
    get_settings.cache_clear()
    get_store.cache_clear()
    get_gateway.cache_clear()
    yield
    get_settings.cache_clear()
    get_store.cache_clear()
    get_gateway.cache_clear()


@pytest.fixture
def store(tmp_path: Path) -> Iterator[OfflineStore]:
    with OfflineStore(f"sqlite+pysqlite:///{tmp_path / 'offline-tests.db'}") as opened:
        yield opened


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[TestClient]:
    monkeypatch.setenv("OFFLINE_DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'api-tests.db'}")
    monkeypatch.setenv("OFFLINE_DB_ECHO", "false")
    monkeypatch.setenv("UPSTREAM_ORIGIN", ORIGIN)

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def gateway_client(
    client: TestClient,
    upstream: FakeUpstream,
) -> Iterator[tuple[TestClient, OfflineGateway]]:
    gateway = build_gateway(get_store(), get_settings(), transport=upstream.transport())
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield client, gateway
    app.dependency_overrides.clear()
    gateway.close()

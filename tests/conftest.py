from pathlib import Path
from typing import Optional

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from codestudio.config import AppSettings
from codestudio.main import create_app
from tests.fakes import FakeAdapterFactory, FakeLLMClient, make_settings, make_workspace


@pytest.fixture
def settings(tmp_path: Path) -> AppSettings:
    return make_settings(tmp_path)


@pytest.fixture
def workspace(settings: AppSettings):
    return make_workspace(settings)


@pytest.fixture
def app_factory(tmp_path: Path):
    def _factory(
        *,
        fake_llm: Optional[FakeLLMClient] = None,
        adapters: Optional[FakeAdapterFactory] = None,
        **settings_overrides,
    ):
        settings = make_settings(tmp_path, **settings_overrides)
        llm_client = fake_llm or FakeLLMClient()
        adapter_factory = adapters or FakeAdapterFactory()
        app = create_app(
            settings,
            llm_client=llm_client,
            workspace=make_workspace(settings),
            adapters=adapter_factory,
        )
        return app, llm_client, adapter_factory

    return _factory


@pytest.fixture
async def client(app_factory):
    app, llm_client, adapters = app_factory()
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as http_client:
            http_client.app = app  # type: ignore[attr-defined]
            http_client.fake_llm = llm_client  # type: ignore[attr-defined]
            http_client.adapters = adapters  # type: ignore[attr-defined]
            yield http_client

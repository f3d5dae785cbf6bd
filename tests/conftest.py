import asyncio
import os
import tempfile

import pytest

_TMP_DIR = tempfile.mkdtemp(prefix="codform-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ.setdefault("SHOPIFY_CLIENT_ID", "test-client-id")
os.environ.setdefault("SHOPIFY_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("BASE_URL", "https://cod.example.com")

from backend.codform import db as db_module  # noqa: E402
from backend.codform import geoip, main  # noqa: E402
from .utils import SHOP, seed_installation  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    async def _reset():
        await db_module.drop_db()
        await db_module.init_db()

    asyncio.run(_reset())
    geoip.clear_cache()
    yield


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def installed_shop():
    asyncio.run(seed_installation(SHOP))
    return SHOP

import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from bonfire.domain.messages.repo import reset_message_store
from bonfire.domain.rendezvous.repo import reset_memory_state
from bonfire.infra import postgres
from bonfire.main import app
from bonfire.settings import settings

TEST_MASTER_KEY = "test-master-key"


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from bonfire.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest_asyncio.fixture(autouse=True)
async def reset_state():
	await reset_memory_state()
	await reset_message_store()
	yield
	await reset_memory_state()
	await reset_message_store()


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via the X-User-Id header, which is only accepted in
	dev mode.
	"""
	original_env = settings.environment
	original_key = settings.bonfire_master_key
	settings.environment = "dev"
	settings.bonfire_master_key = TEST_MASTER_KEY
	try:
		yield
	finally:
		settings.environment = original_env
		settings.bonfire_master_key = original_key


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client

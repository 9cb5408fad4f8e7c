"""Shared fixtures: an in-memory database per test and fast credentials."""

import pytest
import pytest_asyncio

from shelf.config import AuthConfig, ShelfConfig, StorageConfig
from shelf.database import create_engine, init_db, make_session_factory
from shelf.models import Account
from shelf.objectstore import LocalObjectStore
from shelf.tokens import TokenSigner

TEST_SECRET = "test-secret-key"


@pytest.fixture
def config(tmp_path) -> ShelfConfig:
    return ShelfConfig(
        auth=AuthConfig(secret_key=TEST_SECRET, bcrypt_rounds=4),
        storage=StorageConfig(path=tmp_path / "objects", public_url="http://test.local/objects"),
    )


@pytest_asyncio.fixture
async def engine():
    engine = create_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def signer() -> TokenSigner:
    return TokenSigner(TEST_SECRET, expire_minutes=60)


@pytest.fixture
def store(config) -> LocalObjectStore:
    return LocalObjectStore(config.storage.path, config.storage.public_url, TEST_SECRET)


async def _make_account(session, email: str) -> Account:
    account = Account(email=email, credential_hash="not-a-real-hash")
    session.add(account)
    await session.commit()
    return account


@pytest_asyncio.fixture
async def owner(session) -> Account:
    return await _make_account(session, "alice@example.com")


@pytest_asyncio.fixture
async def other_owner(session) -> Account:
    return await _make_account(session, "bob@example.com")

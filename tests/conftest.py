# tests/conftest.py
from __future__ import annotations

import os
import tempfile
from collections.abc import Callable, Generator, Iterator
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

_DATA_DIR = Path(tempfile.mkdtemp(prefix="dchannel-tests-"))

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STORE_BACKEND", "local")
os.environ.setdefault("SCRYPT_WORK_FACTOR", "10")
os.environ.setdefault("DCHANNEL_DATA_DIR", str(_DATA_DIR))
os.environ.setdefault("IDENTITY_FILE", str(_DATA_DIR / "secretkeys.json"))

from dchannel.core.settings import Settings
from dchannel.db.session import Base
from dchannel.db.session import engine as app_engine
from dchannel.main import app as fastapi_app
from dchannel.services.directory import DirectoryStore
from dchannel.services.identity import IdentityContext, IdentityStore
from dchannel.services.local_store import LocalNamingService, LocalObjectStore

TEST_DB_URL = "sqlite://"
TEST_PASSPHRASE = "correct horse battery staple"
TEST_WORK_FACTOR = 10


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def _clear_tables(engine: Engine) -> None:
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture()
def session_factory(engine: Engine) -> Iterator[Callable[[], Session]]:
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    try:
        yield factory
    finally:
        # Ensure each test sees a clean database even though the store commits.
        _clear_tables(engine)


@pytest.fixture()
def directory(session_factory: Callable[[], Session]) -> DirectoryStore:
    return DirectoryStore(session_factory)


@pytest.fixture()
def object_store(tmp_path: Path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "objects")


@pytest.fixture()
def naming(tmp_path: Path) -> LocalNamingService:
    return LocalNamingService(tmp_path / "names.json")


@pytest.fixture()
def identity(tmp_path: Path) -> IdentityContext:
    """An unlocked identity backed by a throwaway key file."""
    context = IdentityContext(IdentityStore(tmp_path / "secretkeys.json", TEST_WORK_FACTOR))
    context.unlock(TEST_PASSPHRASE)
    return context


@pytest.fixture()
def locked_identity(tmp_path: Path) -> IdentityContext:
    return IdentityContext(IdentityStore(tmp_path / "secretkeys.json", TEST_WORK_FACTOR))


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Settings with short timeouts for engine tests."""
    return Settings(
        NAME_PUBLISH_TIMEOUT_SECONDS=1.0,
        NAME_RESOLVE_TIMEOUT_SECONDS=1.0,
        POLL_INTERVAL_SECONDS=5.0,
        DEFAULT_CHANNEL="self",
    )


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(app: FastAPI, tmp_path: Path) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        # Give every test its own identity file.
        app.state.identity.lock()
        app.state.identity.store.path = tmp_path / "secretkeys.json"
        try:
            yield test_client
        finally:
            _clear_tables(app_engine)


@pytest.fixture()
def unlocked_client(client: TestClient) -> TestClient:
    response = client.post("/api/v1/identity/unlock", json={"password": TEST_PASSPHRASE})
    assert response.status_code == 200
    return client

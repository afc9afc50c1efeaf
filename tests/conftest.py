"""Shared pytest fixtures."""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from range_controller import models
from range_controller.config import Settings
from range_controller.db import get_db
from range_controller.main import app
from range_controller.services import build_services

from tests.fakes import GIB, FakeClock, FakeCluster, FakeRedis


@pytest.fixture
def settings():
    return Settings(
        proxmox_server="pve.test",
        proxmox_port=8006,
        proxmox_token_id="root@pam!range",
        proxmox_token_secret="s3cret",
        proxmox_nodes="pve1,pve2,pve3",
        proxmox_verify_ssl=False,
        storage_id="",
        job_runner="inline",
        controller_token="",
        lock_max_attempts=20,
        lock_initial_backoff=0.001,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cluster():
    cluster = FakeCluster()
    cluster.seed_template("web")
    cluster.seed_router()
    # the template host is the busiest node
    cluster.nodes["pve1"]["used"] = 40 * GIB
    return cluster


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def services(settings, session_factory, fake_redis, cluster, clock):
    return build_services(
        settings,
        session_factory=session_factory,
        redis_client=fake_redis,
        gateway=cluster,
        sleep=clock.sleep,
        clock=clock.monotonic,
    )


@pytest.fixture
def manager(services):
    return services.manager


@pytest.fixture
def client(services, session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.state.services = services
    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        app.state.services = None


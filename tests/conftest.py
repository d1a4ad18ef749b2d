from datetime import datetime, timedelta, timezone

import pytest

from ballotvault.core.auth.roles import Role
from ballotvault.core.config import BallotVaultConfig, PathConfig, SecurityConfig
from ballotvault.db import Database
from ballotvault.services import build_services
from ballotvault.web.app import create_app


# Fewer rounds keep the suite fast; the scheme is the same
TEST_HASH_ITERATIONS = 50

SUPER_ID = "root"
SUPER_PASSWORD = "Root12345"


class FakeClock:
    """Controllable UTC clock shared by every component under test."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def database(tmp_path):
    return Database(tmp_path / "ballotvault.db", timeout_seconds=1.0)


@pytest.fixture
def config(tmp_path):
    return BallotVaultConfig(
        paths=PathConfig(data_dir=tmp_path / "data", log_dir=tmp_path / "logs"),
        security=SecurityConfig(hash_iterations=TEST_HASH_ITERATIONS),
    )


@pytest.fixture
def services(config, clock):
    return build_services(config, clock=clock)


@pytest.fixture
def super_admin(services):
    """An active super account created directly in the store."""
    result = services.store.create(SUPER_ID, "Root Admin", SUPER_PASSWORD, Role.SUPER_ADMIN)
    assert result.ok
    return result.value


@pytest.fixture
def app(services):
    app = create_app(services)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()

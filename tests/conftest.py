"""
Pytest configuration and fixtures for Premier Squares Backend tests.
"""

import os
import random
import shutil
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="squares_test_data_")
os.environ["SQUARES_ENV"] = "test"
os.environ["SQUARES_DB_PATH"] = str(Path(_TEST_DATA_DIR) / "squares.db")
os.environ["SQUARES_RATE_LIMITS_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from premier_squares_backend.contest_manager import ContestManager
from premier_squares_backend.database import SQLiteDocumentStore, UnavailableDocumentStore
from premier_squares_backend.main import app, get_contest_manager, get_winner_registry
from premier_squares_backend.models import ContestRules
from premier_squares_backend.winner_registry import WinnerRegistry


@pytest.fixture(scope="session", autouse=True)
def test_data_dir():
    """Remove the app-level database directory after all tests."""
    yield _TEST_DATA_DIR
    shutil.rmtree(_TEST_DATA_DIR, ignore_errors=True)


@pytest.fixture
def store(tmp_path):
    """A fresh, empty document store for each test."""
    return SQLiteDocumentStore(tmp_path / "squares.db", timeout=10)


@pytest.fixture
def rules():
    return ContestRules()


@pytest.fixture
def contest_manager(store, rules):
    return ContestManager(store, rules, rng=random.Random(1234))


@pytest.fixture
def winner_registry(store, rules):
    return WinnerRegistry(store, rules)


def _client_for(contest_manager, winner_registry):
    app.dependency_overrides[get_contest_manager] = lambda: contest_manager
    app.dependency_overrides[get_winner_registry] = lambda: winner_registry
    return TestClient(app)


@pytest.fixture
def client(contest_manager, winner_registry):
    """Test client wired to the per-test store."""
    yield _client_for(contest_manager, winner_registry)
    app.dependency_overrides.clear()


@pytest.fixture
def unavailable_client(rules):
    """Test client whose store is not configured."""
    store = UnavailableDocumentStore()
    yield _client_for(ContestManager(store, rules), WinnerRegistry(store, rules))
    app.dependency_overrides.clear()


@pytest.fixture
def roster():
    """100 distinct participant names."""
    return [f"Player {index:03d}" for index in range(100)]


@pytest.fixture
def new_contest(client):
    """Create a contest over the API and return its data."""
    response = client.post("/contests", json={"eventId": "evt1", "costPerSquare": 10})
    assert response.status_code == 201
    return response.json()["data"]

import os

import pytest
from fastapi.testclient import TestClient

# Configure before the app module reads settings at import time
os.environ["PERSISTENCE_BACKEND"] = "memory"
os.environ["APP_ENV"] = "test"
os.environ["AUTH_USERS"] = "alice:alice-pw,bob:bob-pw"
os.environ.pop("AUTH_DEV_USER", None)

from todo_api.main import app  # noqa: E402
from todo_api.repositories import InMemoryRepository, get_repository  # noqa: E402
from todo_api.service import TodoService  # noqa: E402

ALICE = ("alice", "alice-pw")
BOB = ("bob", "bob-pw")


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def service(repo):
    return TodoService(repo)


@pytest.fixture
def client(repo):
    # Fresh storage per test so list/count assertions are exact
    app.dependency_overrides[get_repository] = lambda: repo
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()

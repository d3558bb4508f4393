from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator, List, Tuple

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from useradmin.catalog import MessageCatalog, load_catalog
from useradmin.config import Settings
from useradmin.database import Database
from useradmin.models import Role, User
from useradmin.users import UserService
from useradmin.web import create_app

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "correct-horse-battery"


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "useradmin.sqlite3")
    db.initialize()
    return db


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_path=tmp_path / "useradmin.sqlite3",
        session_secret="tests-secret-key",
    )


@pytest.fixture()
def catalog() -> MessageCatalog:
    return load_catalog("en")


@pytest.fixture()
def service(database: Database, catalog: MessageCatalog) -> UserService:
    return UserService(database, catalog)


@pytest.fixture()
def admin(database: Database) -> User:
    return database.create_user("Site Admin", ADMIN_EMAIL, Role.ADMIN, password=ADMIN_PASSWORD)


@pytest.fixture()
def setup_links() -> List[Tuple[User, str]]:
    return []


@pytest.fixture()
def app(database: Database, settings: Settings, setup_links: List[Tuple[User, str]]):
    return create_app(
        database=database,
        settings=settings,
        password_setup_notifier=lambda user, url: setup_links.append((user, url)),
    )


@pytest.fixture()
def client(app, admin: User) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        response = test_client.post(
            "/login",
            data={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
            follow_redirects=False,
        )
        assert response.status_code == 303
        yield test_client

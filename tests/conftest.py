from __future__ import annotations

import os
import sys
from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook
from PIL import Image
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# The app engine is built at import time; keep it off the real database.
os.environ.setdefault("DATABASE_URL", "sqlite://")

import importlib

fastapi_app = importlib.import_module("app.main").app
from app.core.config import settings
from app.db.base import Base
from app.db.session import get_db

# Ensure all models are registered with SQLAlchemy metadata
import app.models  # noqa: F401

ADMIN_HEADERS = {"X-User-Id": "1", "X-Role-Id": "1", "X-User-Email": "admin@example.com"}


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, _connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="function")
def db_session(engine):
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def storage_root(tmp_path, monkeypatch):
    root = tmp_path / "uploads"
    monkeypatch.setattr(settings, "STORAGE_DRIVER", "local")
    monkeypatch.setattr(settings, "LOCAL_STORAGE_PATH", str(root))
    monkeypatch.setattr(settings, "LOCAL_BASE_URL", "")
    monkeypatch.setattr(settings, "AUTH_MODE", "legacy_header")
    monkeypatch.setattr(settings, "ORDER_EXPORT_TEMPLATE_PATH", str(tmp_path / "missing.xlsx"))
    return root


@pytest.fixture(scope="function")
def client(engine, db_session, storage_root):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def _override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    with TestClient(fastapi_app) as test_client:
        yield test_client
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return dict(ADMIN_HEADERS)


@pytest.fixture
def stored_files(storage_root):
    def _list() -> list:
        if not storage_root.exists():
            return []
        return sorted(p for p in storage_root.rglob("*") if p.is_file())

    return _list


@pytest.fixture
def image_bytes():
    def _build(fmt: str = "PNG", size: tuple[int, int] = (40, 30)) -> bytes:
        buffer = BytesIO()
        Image.new("RGB", size, color=(200, 40, 40)).save(buffer, format=fmt)
        return buffer.getvalue()

    return _build


@pytest.fixture
def workbook_bytes():
    """Build an xlsx payload from {sheet title: rows}."""

    def _build(sheets: dict[str, list[list]]) -> bytes:
        workbook = Workbook()
        workbook.remove(workbook.active)
        for title, rows in sheets.items():
            ws = workbook.create_sheet(title)
            for row in rows:
                ws.append(row)
        buffer = BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    return _build

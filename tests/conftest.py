"""Pytest configuration and fixtures."""

import os
import tempfile

# Point the application at a throwaway database before it is imported
os.environ.setdefault(
    "FASTSECURE_DATABASE_URL",
    f"sqlite:///{os.path.join(tempfile.mkdtemp(prefix='fastsecure-'), 'test.db')}",
)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from fastsecure import app  # noqa: E402
from fastsecure.sql_db.database import session_local  # noqa: E402


@pytest.fixture
def client():
    """Fresh test client (and therefore a fresh session cookie jar)."""
    return TestClient(app)


@pytest.fixture
def db():
    session = session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def files_dir(tmp_path, monkeypatch):
    """Serve downloads from a temporary directory."""
    (tmp_path / "report.pdf").write_bytes(b"%PDF-1.4 report body")
    (tmp_path / "photo.JPG").write_bytes(b"\xff\xd8\xff\xe0 jpeg")
    (tmp_path / "notes.txt").write_text("not downloadable")
    monkeypatch.setattr("fastsecure.routes.FILES_PATH", str(tmp_path))
    return tmp_path

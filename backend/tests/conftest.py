import os
import tempfile
import uuid
from pathlib import Path

import pytest

# Configure an isolated database and upload root before the app is imported.
_TMP = Path(tempfile.mkdtemp(prefix="blog-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["UPLOAD_DIR"] = str(_TMP / "uploads")
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["ADMIN_EMAIL"] = "admin@blog.test"
os.environ["ADMIN_PASSWORD"] = "adminpass1"
os.environ["ADMIN_NICKNAME"] = "admin"

from fastapi.testclient import TestClient  # noqa: E402

from blog.main import app  # noqa: E402


def unique(prefix: str = "") -> str:
    return f"{prefix}{uuid.uuid4().hex[:8]}"


@pytest.fixture
def signup():
    """Factory returning a (client, user) pair for a freshly registered account.

    Each account gets its own TestClient so cookie jars never mix.
    """
    def _signup(prefix: str = "user"):
        suffix = unique()
        client = TestClient(app)
        r = client.post('/api/auth/signup', json={
            'email': f'{prefix}{suffix}@blog.test',
            'password': 'password1',
            'name': 'Tester',
            'nickname': f'{prefix[:8]}{suffix}',
        })
        assert r.status_code == 201, r.text
        return client, r.json()['user']
    return _signup


@pytest.fixture
def admin_client():
    client = TestClient(app)
    r = client.post('/api/auth/login', json={'email': 'admin@blog.test', 'password': 'adminpass1'})
    assert r.status_code == 200, r.text
    return client

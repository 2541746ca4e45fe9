"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend, keep every test on a fresh
in-memory document store, and mint HS256 bearer tokens with a test-only
secret so API tests exercise the real verification path.
"""
import os
import sys
import time
from pathlib import Path
from typing import Optional

import pytest
from jose import jwt

# Env must be in place before `backend.web.main` is imported by a test module.
TEST_JWT_SECRET = "test-only-secret-not-used-anywhere-else-0123456789"
os.environ.setdefault("SKOLE_JWT_SECRET", TEST_JWT_SECRET)
os.environ.setdefault("SKOLE_STORE", "memory")
os.environ.setdefault("SKOLE_ENABLE_DOTENV", "false")

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from backend.storage.memory import InMemoryDocumentStore  # noqa: E402
from backend.web import storage_wiring  # noqa: E402
from backend.web.config import SETTINGS  # noqa: E402


def make_token(
    uid: str,
    *,
    name: Optional[str] = None,
    email: Optional[str] = None,
    anonymous: bool = False,
    expires_in: int = 300,
    secret: Optional[str] = None,
) -> str:
    """Sign an ID token the way the identity provider would (HS256 in tests)."""
    now = int(time.time())
    claims = {"sub": uid, "iat": now, "exp": now + expires_in}
    if name:
        claims["name"] = name
    if email:
        claims["email"] = email
    if anonymous:
        claims["firebase"] = {"sign_in_provider": "anonymous"}
    return jwt.encode(claims, secret or os.environ["SKOLE_JWT_SECRET"], algorithm="HS256")


def bearer(uid: str, **kwargs) -> dict:
    return {"Authorization": f"Bearer {make_token(uid, **kwargs)}"}


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(name="make_token")
def make_token_fixture():
    return make_token


@pytest.fixture(name="auth_headers")
def auth_headers_fixture():
    return bearer


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture(autouse=True)
def _fresh_store_per_test(monkeypatch: pytest.MonkeyPatch, store: InMemoryDocumentStore):
    """Wire a fresh in-memory store and clear env toggles between tests.

    Behavior:
        - `storage_wiring` serves the test's `store` fixture.
        - The generator singleton is reset so fakes do not leak.
        - `SKOLE_ENV`, `ADMIN_TOKEN` and the settings override start unset.
    """
    for var in ("SKOLE_ENV", "ADMIN_TOKEN", "SKOLE_JWKS_URL", "SKOLE_JWT_ISSUER", "SKOLE_JWT_AUDIENCE"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("SKOLE_JWT_SECRET", TEST_JWT_SECRET)
    SETTINGS.override_environment(None)
    storage_wiring.set_store(store)
    storage_wiring.set_generator(None)
    yield
    storage_wiring.set_store(None)
    storage_wiring.set_generator(None)
    SETTINGS.override_environment(None)

"""Shared pytest fixtures for the Paillier client test suite."""

import pytest
from httpx import ASGITransport, AsyncClient

from paillier_client.crypto.keygen import generate_keypair
from paillier_client.keystore import KeyStore
from paillier_client.main import app, get_key_store


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
def keypair():
    """One 512-bit key pair shared by tests that only need a valid key."""
    return generate_keypair(512)


def _decrypt(pair, c: int) -> int:
    n = pair.public_key.n
    x = pow(c, pair.private_key.lam, pair.public_key.n_squared)
    return ((x - 1) // n * pair.private_key.mu) % n


@pytest.fixture()
def decrypt():
    """Paillier decryption for checking ciphertexts; the package itself cannot decrypt."""
    return _decrypt


@pytest.fixture()
async def key_store(tmp_path):
    """Provide a fresh SQLite-backed key store per test."""
    store = KeyStore(url=f"sqlite+aiosqlite:///{tmp_path / 'keys.db'}")
    yield store
    await store.close()


@pytest.fixture()
async def client(key_store):
    """Provide an async HTTP test client bound to the FastAPI app."""
    app.dependency_overrides[get_key_store] = lambda: key_store
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()

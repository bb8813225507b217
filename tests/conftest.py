import httpx
import pytest

from decodey.core import storage as keys
from decodey.core.config import Settings
from decodey.core.storage import LocalStorage
from decodey.runtime import Runtime
from tests.fake_backend import TODAY, FakeBackend, create_app


@pytest.fixture()
def settings():
    return Settings(
        _env_file=None,
        API_URL="http://decodey.test",
        INIT_GRACE_SECONDS=0,
        REFRESH_COOLDOWN_SECONDS=30,
        DEFAULT_DIFFICULTY="easy",
        HARDCORE_MODE=False,
        LONG_TEXT=False,
    )


@pytest.fixture()
def storage_path(tmp_path):
    return tmp_path / "storage.json"


@pytest.fixture()
def storage(storage_path):
    return LocalStorage(storage_path)


@pytest.fixture()
def backend():
    return FakeBackend()


@pytest.fixture()
def transport(backend):
    return httpx.ASGITransport(app=create_app(backend))


@pytest.fixture()
def runtime(settings, storage, transport):
    return Runtime(settings, storage, transport=transport, today=lambda: TODAY)


@pytest.fixture()
def sign_in(backend, storage):
    """Put a valid access (and refresh) token for `username` into storage."""
    def _sign_in(username: str = "alice", with_refresh: bool = False) -> str:
        token = backend.issue_token(username)
        storage.set(keys.AUTH_TOKEN, token)
        if with_refresh:
            storage.set(keys.REFRESH_TOKEN, backend.issue_refresh_token(username))
        return token
    return _sign_in

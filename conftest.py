import httpx
import pytest

from catalog_client.mock_server import create_app
from catalog_client.services.catalog_api import CatalogAPI
from catalog_client.services.http_client import CatalogHTTPClient

BASE_URL = "http://catalog.test/api"
ADMIN_SECRET = "s3cret"


class MemoryCredentialStore:
    """Credential store kept in memory; counts clears."""

    def __init__(self, token=None):
        self.token = token
        self.saved = []
        self.clears = 0

    def load(self):
        return self.token

    def save(self, token):
        self.token = token
        self.saved.append(token)

    def clear(self):
        self.token = None
        self.clears += 1


class RecordingPrompt:
    """Prompt returning queued answers in order, then None."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.answers.pop(0) if self.answers else None


class RecordingConfirm:
    def __init__(self, answer=True):
        self.answer = answer
        self.messages = []

    def __call__(self, message):
        self.messages.append(message)
        return self.answer


def make_api(handler) -> CatalogAPI:
    """CatalogAPI whose transport is the given request handler."""
    http = CatalogHTTPClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return CatalogAPI(http)


def make_asgi_api(app) -> CatalogAPI:
    http = CatalogHTTPClient(base_url=BASE_URL, transport=httpx.ASGITransport(app=app))
    return CatalogAPI(http)


@pytest.fixture
def mock_app():
    return create_app(admin_secret=ADMIN_SECRET)


@pytest.fixture
def asgi_api(mock_app):
    return make_asgi_api(mock_app)


@pytest.fixture
def credential_file(tmp_path, monkeypatch):
    from catalog_client.config import settings

    path = tmp_path / "credentials.json"
    monkeypatch.setattr(settings, "credential_file", str(path))
    return path

import mongomock
import pytest
from fastapi.testclient import TestClient

import security
from config import Settings
from main import create_app
from storage import ImageStorage, StoredImage

# bcrypt's minimum cost keeps the suite fast
security.pwd_context.update(bcrypt__rounds=4)

ADMIN_EMAIL = "admin@shop.io"
ADMIN_PASSWORD = "adminpass"


class FakeStorage(ImageStorage):
    """Records every call; ids listed in ``fail_on`` raise on delete."""

    def __init__(self):
        self.uploaded = []
        self.deleted = []
        self.fail_on = set()
        self._counter = 0

    def upload(self, content: bytes, filename: str) -> StoredImage:
        self._counter += 1
        public_id = f"img-{self._counter}"
        self.uploaded.append(public_id)
        return StoredImage(url=f"https://cdn.shop.io/{public_id}.png", public_id=public_id)

    def delete(self, public_id: str) -> bool:
        self.deleted.append(public_id)
        if public_id in self.fail_on:
            raise RuntimeError("storage unavailable")
        return True


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        JWT_SECRET="test-secret",
        JWT_EXPIRES_IN="7d",
        ADMIN_NAME="Root Admin",
        ADMIN_EMAIL=ADMIN_EMAIL,
        ADMIN_PASSWORD=ADMIN_PASSWORD,
        CLIENT_URL="http://localhost:3000",
        CONTACT_EMAIL="help@shop.io",
        CONTACT_PHONE="+250 700 000 000",
        CONTACT_LOCATION="Kigali",
    )


@pytest.fixture
def db():
    return mongomock.MongoClient().get_database("marketplace_test")


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def app(settings, db, storage):
    return create_app(settings, database=db, storage=storage)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c

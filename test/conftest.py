import os
import tempfile

# 必须在导入 live_articles 之前设置
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("DATABASE_URL", "sqlite:///" + os.path.join(tempfile.gettempdir(), "live_articles_test.db"))
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient

from live_articles import crud, deps, models, schemas
from live_articles.errors import DependencyError
from live_articles.main import app, get_storage


class FakeStorage:
    """内存里的图片存储，记录上传和删除"""

    def __init__(self):
        self.blobs = {}
        self.deleted = []
        self.fail_upload = False
        self.fail_delete = False

    def upload(self, data: bytes) -> dict:
        if self.fail_upload:
            raise DependencyError("The error occurred with uploading photo")
        public_id = f"live-articles/img{len(self.blobs) + 1}"
        self.blobs[public_id] = data
        return {
            "public_id": public_id,
            "url": f"http://img.local/{public_id}.png",
            "secure_url": f"https://img.local/{public_id}.png",
            "created_at": "2026-01-01T00:00:00Z",
        }

    def delete(self, public_id: str) -> None:
        if self.fail_delete:
            raise DependencyError("The error occurred with deleting photo")
        self.blobs.pop(public_id, None)
        self.deleted.append(public_id)


@pytest.fixture
def session_factory(tmp_path):
    engine, session_cls = deps.build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    models.Base.metadata.create_all(bind=engine)
    yield session_cls
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def make_user(db):
    def _make(name, email=None, password="secret1"):
        return crud.create_user(
            db, schemas.UserCreate(name=name, email=email or f"{name}@x.com", password=password)
        )

    return _make


@pytest.fixture
def category(db):
    return crud.create_category(db, "Tech")


@pytest.fixture
def make_article(db, storage, category):
    def _make(author, title="Hello", description="World", category_id=None):
        return crud.create_article(
            db,
            storage,
            schemas.ArticleCreate(title=title, description=description, category=category_id or category.id),
            b"\x89PNG fake image",
            author,
        )

    return _make


@pytest.fixture
def client(session_factory, storage):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[deps.get_db] = _get_db
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()

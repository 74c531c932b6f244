import itertools

import pytest
from fastapi.testclient import TestClient
from gridfs.errors import NoFile

from wipeportal.main import app, _upload_request_times


def _matches(doc: dict, query: dict) -> bool:
    for key, expected in query.items():
        value = doc.get(key)
        if isinstance(expected, dict):
            for op, operand in expected.items():
                if op == "$lt" and not (value is not None and value < operand):
                    return False
                if op == "$ne" and value == operand:
                    return False
        elif value != expected:
            return False
    return True


def _project(doc: dict, projection: dict | None) -> dict:
    if not projection:
        return dict(doc)
    included = [k for k, v in projection.items() if v and k != "_id"]
    if included:
        out = {k: doc[k] for k in included if k in doc}
        if projection.get("_id", 1) and "_id" in doc:
            out["_id"] = doc["_id"]
        return out
    return {k: v for k, v in doc.items() if projection.get(k, 1)}


class FakeCursor:
    def __init__(self, items):
        self.items = list(items)

    def sort(self, key, direction=1):
        self.items.sort(key=lambda item: item.get(key), reverse=direction == -1)
        return self

    def limit(self, n):
        self.items = self.items[:n]
        return self

    def __iter__(self):
        return iter(self.items)

    def __aiter__(self):
        self._iter = iter(self.items)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    """Just enough of a Motor collection for the upload/scan/wipe handlers."""

    def __init__(self):
        self.docs: list[dict] = []
        self._ids = itertools.count(1)

    def find(self, query=None, projection=None):
        query = query or {}
        return FakeCursor(_project(d, projection) for d in self.docs if _matches(d, query))

    async def insert_one(self, doc):
        doc.setdefault("_id", next(self._ids))
        self.docs.append(dict(doc))
        return object()

    async def update_one(self, query, update):
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(update.get("$set", {}))
                return object()
        return object()

    async def delete_one(self, query):
        for i, doc in enumerate(self.docs):
            if _matches(doc, query):
                del self.docs[i]
                break
        return object()

    async def create_index(self, *_args, **_kwargs):
        return "index"

    def by_id(self, file_id: str) -> dict | None:
        return next((d for d in self.docs if d["id"] == file_id), None)


class FakeDB:
    def __init__(self):
        self.uploaded_files = FakeCollection()


class FakeBucket:
    """In-memory stand-in for AsyncIOMotorGridFSBucket."""

    def __init__(self):
        self.blobs: dict[int, dict] = {}
        self._ids = itertools.count(1)
        self.fail_on_delete: set[str] = set()
        self.fail_on_upload = False

    async def upload_from_stream(self, filename, source, metadata=None):
        if self.fail_on_upload:
            raise RuntimeError("GridFS unavailable")
        blob_id = next(self._ids)
        self.blobs[blob_id] = {"filename": filename, "data": bytes(source), "metadata": metadata}
        return blob_id

    async def delete(self, blob_id):
        blob = self.blobs.get(blob_id)
        if blob is None:
            raise NoFile(f"no file could be deleted because none matched {blob_id}")
        if any(blob["filename"].endswith(name) for name in self.fail_on_delete):
            raise RuntimeError("storage backend refused delete")
        del self.blobs[blob_id]


class FakeStore:
    def __init__(self):
        self.db = FakeDB()
        self.bucket = FakeBucket()

    @property
    def files(self) -> FakeCollection:
        return self.db.uploaded_files


@pytest.fixture
def fake_store(monkeypatch):
    store = FakeStore()
    monkeypatch.setattr("wipeportal.main.get_db", lambda: store.db)
    monkeypatch.setattr("wipeportal.main.get_blob_bucket", lambda: store.bucket)
    monkeypatch.setattr("wipeportal.routers.sessions.get_db", lambda: store.db)
    return store


@pytest.fixture
def client(fake_store, monkeypatch):
    async def no_indexes():
        return None

    # Startup must not wait on a real MongoDB
    monkeypatch.setattr("wipeportal.main.ensure_file_indexes", no_indexes)
    _upload_request_times.clear()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def session_id():
    return "3f2b8c1e-9a47-4d2e-b6a1-0c5d7e8f9a10"


@pytest.fixture
def upload(client, session_id):
    """Posta filnamn (med samma innehåll) till /upload-files för test-sessionen."""
    def _upload(*names, content=b"data", sid=None):
        files = [("files", (name, content, "application/octet-stream")) for name in names]
        return client.post("/upload-files", files=files, data={"sessionId": sid or session_id})
    return _upload

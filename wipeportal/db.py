from functools import lru_cache
import os

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorGridFSBucket
from pymongo import ASCENDING
from pymongo.errors import ConfigurationError

FILE_BUCKET_NAME = "file_uploads"
DEFAULT_DB_NAME = "wipeportal"


@lru_cache
def _mongo_settings() -> tuple[str, int]:
    uri = os.getenv("MONGODB_URI", f"mongodb://localhost:27017/{DEFAULT_DB_NAME}")
    try:
        timeout_ms = int(os.getenv("MONGO_SERVER_SELECTION_TIMEOUT_MS", "5000"))
    except ValueError:
        timeout_ms = 5000
    return uri, timeout_ms


@lru_cache
def get_mongo_client() -> AsyncIOMotorClient:
    # Singleton; Motor pools connections internally.
    uri, timeout_ms = _mongo_settings()
    return AsyncIOMotorClient(uri, serverSelectionTimeoutMS=timeout_ms)


def get_db():
    client = get_mongo_client()
    try:
        return client.get_default_database()
    except ConfigurationError:
        # URI without a database path
        return client.get_database(os.getenv("MONGO_DB", DEFAULT_DB_NAME))


def get_blob_bucket() -> AsyncIOMotorGridFSBucket:
    """GridFS bucket holding the uploaded file contents (`file_uploads.files/chunks`)."""
    return AsyncIOMotorGridFSBucket(get_db(), bucket_name=FILE_BUCKET_NAME)


async def ensure_file_indexes():
    """
    Indexes for the per-session scan/wipe lookups and the retention sweep.

    No TTL index: it would expire the metadata but leave the GridFS blobs
    behind, so the retention job removes both together instead.
    """
    files = get_db().uploaded_files
    await files.create_index("id", unique=True, name="uploaded_files_id")
    await files.create_index(
        [("session_id", ASCENDING), ("upload_timestamp", ASCENDING)],
        name="uploaded_files_session",
    )
    await files.create_index("upload_timestamp", name="uploaded_files_upload_timestamp")

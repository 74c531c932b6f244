import logging
import os
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Dict, List

import gridfs
from gridfs.errors import NoFile
from pymongo import MongoClient
from pymongo.errors import ConfigurationError

logger = logging.getLogger("wipeportal.retention")

# --- Konfiguration ---
MONGO_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017/wipeportal")
MONGO_DB_NAME = os.getenv("MONGO_DB", "wipeportal")
FILE_BUCKET_NAME = "file_uploads"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = int(value)
        return parsed if parsed > 0 else default
    except ValueError:
        return default


SESSION_RETENTION_HOURS = _env_int("SESSION_RETENTION_HOURS", 24)
RETENTION_SWEEP_INTERVAL_MINUTES = _env_int("RETENTION_SWEEP_INTERVAL_MINUTES", 15)
RETENTION_MAX_FILES_PER_RUN = _env_int("RETENTION_MAX_FILES_PER_RUN", 500)


# --- Databasanslutning ---
@lru_cache
def _get_sync_db():
    client: MongoClient = MongoClient(MONGO_URI)
    try:
        return client.get_default_database()
    except ConfigurationError:
        return client[MONGO_DB_NAME]


def get_uploaded_files_collection():
    return _get_sync_db()["uploaded_files"]


def get_sync_bucket() -> gridfs.GridFSBucket:
    return gridfs.GridFSBucket(_get_sync_db(), bucket_name=FILE_BUCKET_NAME)


def find_abandoned_files(collection, now: datetime | None = None) -> List[Dict]:
    """Files older than the retention window that were never successfully wiped."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=SESSION_RETENTION_HOURS)
    cursor = collection.find(
        {
            "upload_timestamp": {"$lt": cutoff},
            "wipe_status": {"$ne": "success"},
        },
        {"_id": 0, "id": 1, "session_id": 1, "blob_id": 1},
    ).limit(RETENTION_MAX_FILES_PER_RUN)
    return list(cursor)


def purge_abandoned_files(collection=None, bucket=None, now: datetime | None = None) -> int:
    """
    Scheduled job: delete blob and metadata for files left behind by
    sessions that never reached the wipe step (closed tab, failed wipe).
    Returns the number of files removed.
    """
    try:
        collection = collection if collection is not None else get_uploaded_files_collection()
        bucket = bucket if bucket is not None else get_sync_bucket()
        candidates = find_abandoned_files(collection, now)
    except Exception:
        logger.exception("Retention sweep could not query uploaded files")
        return 0

    purged = 0
    for item in candidates:
        try:
            if item.get("blob_id") is not None:
                try:
                    bucket.delete(item["blob_id"])
                except NoFile:
                    pass
            collection.delete_one({"id": item["id"]})
            purged += 1
        except Exception:
            logger.exception(
                "Retention sweep failed for file %s in session %s",
                item.get("id"), item.get("session_id"),
            )

    if purged:
        logger.info("Retention sweep removed %d abandoned file(s)", purged)
    return purged

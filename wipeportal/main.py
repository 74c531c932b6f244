from pathlib import PurePosixPath
from collections import deque
from threading import Lock
from time import monotonic
from datetime import UTC, datetime
from uuid import uuid4
import logging
import os
import re

from fastapi import FastAPI, UploadFile, File, Form, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from gridfs.errors import NoFile

from wipeportal.classifier import ClassifierConfig, assess_file_name
from wipeportal.db import get_db, get_blob_bucket, ensure_file_indexes
from wipeportal.logging_config import setup_logging
from wipeportal.models import (
    RiskLevel,
    ScanRequest,
    ScanSettings,
    UploadedFile,
    WipeRequest,
    WipeStatus,
    WipeType,
)
from wipeportal.routers import sessions
from wipeportal.services.retention import purge_abandoned_files, RETENTION_SWEEP_INTERVAL_MINUTES
from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger("wipeportal")

app = FastAPI(title="Secure Wipe Portal API")

app.include_router(sessions.router)

MAX_FILENAME_LENGTH = 255
CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = int(value)
        return parsed if parsed > 0 else default
    except ValueError:
        return default


MAX_FILE_SIZE_BYTES = _env_int("MAX_UPLOAD_FILE_SIZE_BYTES", 50 * 1024 * 1024)
MAX_FILES_PER_UPLOAD = _env_int("MAX_FILES_PER_UPLOAD", 50)
RATE_LIMIT_UPLOADS_PER_MINUTE = _env_int("UPLOAD_RATE_LIMIT_PER_MINUTE", 10)
RATE_LIMIT_WINDOW_SECONDS = _env_int("UPLOAD_RATE_LIMIT_WINDOW_SECONDS", 60)

_rate_limit_lock = Lock()
_upload_request_times: dict[str, deque[float]] = {}


def enforce_upload_rate_limit(client_id: str):
    now = monotonic()
    with _rate_limit_lock:
        # Cleanup: remove entries for clients with no recent activity
        stale = [
            cid for cid, ts in _upload_request_times.items()
            if not ts or now - ts[-1] >= RATE_LIMIT_WINDOW_SECONDS
        ]
        for cid in stale:
            del _upload_request_times[cid]

        timestamps = _upload_request_times.setdefault(client_id, deque())
        while timestamps and now - timestamps[0] >= RATE_LIMIT_WINDOW_SECONDS:
            timestamps.popleft()

        if len(timestamps) >= RATE_LIMIT_UPLOADS_PER_MINUTE:
            logger.warning("Rate limit exceeded for client %s", client_id)
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded: max {RATE_LIMIT_UPLOADS_PER_MINUTE} uploads per minute",
            )

        timestamps.append(now)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_request: Request, exc: RequestValidationError):
    # Same status as the hand-written bad-input checks
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.get("/health")
def health():
    return {"status": "ok"}


@app.on_event("startup")
async def startup():
    setup_logging()
    try:
        await ensure_file_indexes()
    except Exception:
        # App should stay available even if DB indexes can't be ensured at startup.
        logger.exception("Failed to ensure MongoDB indexes on startup")

    try:
        scheduler = BackgroundScheduler()
        scheduler.add_job(
            purge_abandoned_files, "interval", minutes=RETENTION_SWEEP_INTERVAL_MINUTES
        )
        scheduler.start()
        app.state.scheduler = scheduler
    except Exception:
        logger.exception("Failed to start retention scheduler")


@app.on_event("shutdown")
def shutdown():
    if hasattr(app.state, "scheduler"):
        app.state.scheduler.shutdown()


def sanitize_filename(raw: str | None) -> str:
    """Strip path components from an uploaded filename and validate what is left."""
    if not raw:
        raise HTTPException(status_code=400, detail="Filename is required")

    # Strip path components (defence against path-traversal)
    name = PurePosixPath(raw).name
    # Also handle Windows-style backslash paths
    name = name.split("\\")[-1]

    if not name or name in (".", ".."):
        raise HTTPException(status_code=400, detail="Invalid filename")

    if len(name) > MAX_FILENAME_LENGTH:
        raise HTTPException(status_code=400, detail="Filename too long")

    if CONTROL_CHARS_RE.search(name):
        raise HTTPException(
            status_code=400,
            detail="Filename contains invalid characters",
        )

    return name


def validate_session_id(raw: str | None) -> str:
    if not raw or not SESSION_ID_RE.match(raw):
        raise HTTPException(status_code=400, detail="A valid sessionId is required")
    return raw


def build_classifier_config(settings: ScanSettings | None) -> ClassifierConfig:
    if settings is None:
        return ClassifierConfig()
    values = {"sensitive_keywords": settings.sensitive_keywords}
    if settings.large_file_threshold is not None:
        values["large_file_threshold"] = settings.large_file_threshold
    return ClassifierConfig(**values)


def recommend_wipe_type(risk_levels) -> WipeType:
    if any(level == RiskLevel.HIGH.value for level in risk_levels):
        return WipeType.ADVANCED
    return WipeType.STANDARD


def _scan_summary(items: list[dict]) -> dict:
    return {
        "total": len(items),
        "high": sum(1 for item in items if item["riskLevel"] == RiskLevel.HIGH.value),
        "medium": sum(1 for item in items if item["riskLevel"] == RiskLevel.MEDIUM.value),
        "low": sum(1 for item in items if item["riskLevel"] == RiskLevel.LOW.value),
    }


def _wipe_summary(results: list[dict], wipe_type: WipeType) -> dict:
    return {
        "total": len(results),
        "successful": sum(1 for r in results if r["status"] == WipeStatus.SUCCESS.value),
        "failed": sum(1 for r in results if r["status"] == WipeStatus.FAILED.value),
        "wipeType": wipe_type.value,
    }


async def _load_session_files(db, query: dict) -> list[dict]:
    cursor = db.uploaded_files.find(query, {"_id": 0}).sort("upload_timestamp", 1)
    return [item async for item in cursor]


async def _discard_blob(bucket, blob_id, session_id: str) -> None:
    try:
        await bucket.delete(blob_id)
    except NoFile:
        pass
    except Exception:
        logger.exception("Failed to discard orphaned blob %s for session %s", blob_id, session_id)


@app.post("/upload-files")
async def upload_files(
    request: Request,
    files: list[UploadFile] = File(default=[]),
    session_id: str | None = Form(default=None, alias="sessionId"),
):
    client_ip = request.client.host if request.client else "unknown"
    enforce_upload_rate_limit(client_ip)

    session_id = validate_session_id(session_id)
    if not files:
        raise HTTPException(status_code=400, detail="No files provided")
    if len(files) > MAX_FILES_PER_UPLOAD:
        raise HTTPException(
            status_code=400,
            detail=f"Too many files: max {MAX_FILES_PER_UPLOAD} per upload",
        )

    # Validate and read everything before storing anything
    payloads: list[tuple[str, str, bytes]] = []
    for upload in files:
        filename = sanitize_filename(upload.filename)
        # Read with a limit to avoid unbounded memory usage
        content = await upload.read(MAX_FILE_SIZE_BYTES + 1)
        if len(content) > MAX_FILE_SIZE_BYTES:
            raise HTTPException(status_code=413, detail=f"File too large: {filename}")
        content_type = upload.content_type or "application/octet-stream"
        payloads.append((filename, content_type, content))

    try:
        db = get_db()
        bucket = get_blob_bucket()
        uploaded = []
        for filename, content_type, content in payloads:
            file_path = f"{session_id}/{uuid4()}-{filename}"
            blob_id = await bucket.upload_from_stream(
                file_path,
                content,
                metadata={"session_id": session_id, "content_type": content_type},
            )
            record = UploadedFile(
                session_id=session_id,
                file_name=filename,
                file_path=file_path,
                file_size=len(content),
                content_type=content_type,
                blob_id=blob_id,
            )
            try:
                await db.uploaded_files.insert_one(record.model_dump())
            except Exception:
                # A blob without a metadata document is invisible to the retention sweep
                await _discard_blob(bucket, blob_id, session_id)
                raise
            uploaded.append(
                {
                    "id": record.id,
                    "name": record.file_name,
                    "size": record.file_size,
                    "path": record.file_path,
                    "type": "file",
                }
            )
    except Exception:
        logger.exception("Failed to store uploaded files for session %s", session_id)
        raise HTTPException(status_code=503, detail="Storage unavailable")

    logger.info("Upload stored: session=%s files=%d", session_id, len(uploaded))
    return {"success": True, "sessionId": session_id, "files": uploaded}


@app.post("/scan-files")
async def scan_files(body: ScanRequest):
    config = build_classifier_config(body.settings)

    try:
        db = get_db()
        records = await _load_session_files(db, {"session_id": body.session_id})
        scanned = []
        for record in records:
            if record.get("scan_completed"):
                # Labels are never recomputed once assigned
                risk_level = record["risk_level"]
                risk_reasons = record.get("risk_reasons", [])
            else:
                assessment = assess_file_name(record["file_name"], record.get("file_size"), config)
                risk_level = assessment.level.value
                risk_reasons = list(assessment.reasons)
                await db.uploaded_files.update_one(
                    {"id": record["id"]},
                    {
                        "$set": {
                            "risk_level": risk_level,
                            "risk_reasons": risk_reasons,
                            "scan_timestamp": datetime.now(UTC),
                            "scan_completed": True,
                        }
                    },
                )
            scanned.append(
                {
                    "id": record["id"],
                    "name": record["file_name"],
                    "size": record["file_size"],
                    "path": record["file_path"],
                    "type": "file",
                    "riskLevel": risk_level,
                    "riskReasons": risk_reasons,
                }
            )
    except Exception:
        logger.exception("Failed to scan files for session %s", body.session_id)
        raise HTTPException(status_code=503, detail="Database unavailable")

    summary = _scan_summary(scanned)
    recommended = recommend_wipe_type(item["riskLevel"] for item in scanned)
    if summary["high"]:
        logger.warning(
            "Scan found high-risk files: session=%s high=%d medium=%d low=%d",
            body.session_id, summary["high"], summary["medium"], summary["low"],
        )
    else:
        logger.info(
            "Scan complete: session=%s total=%d medium=%d",
            body.session_id, summary["total"], summary["medium"],
        )

    return {
        "success": True,
        "files": scanned,
        "recommendedWipeType": recommended.value,
        "summary": summary,
    }


async def _wipe_one(db, bucket, record: dict, wipe_type: WipeType) -> dict:
    try:
        if record.get("blob_id") is not None:
            try:
                await bucket.delete(record["blob_id"])
            except NoFile:
                logger.info("Blob already gone: session=%s file=%s", record["session_id"], record["id"])
        await db.uploaded_files.delete_one({"id": record["id"]})
    except Exception as exc:
        logger.warning("Wipe failed: session=%s file=%s error=%s", record["session_id"], record["id"], exc)
        try:
            await db.uploaded_files.update_one(
                {"id": record["id"]},
                {
                    "$set": {
                        "wipe_completed": True,
                        "wipe_timestamp": datetime.now(UTC),
                        "wipe_type": wipe_type.value,
                        "wipe_status": WipeStatus.FAILED.value,
                        "wipe_error": str(exc),
                    }
                },
            )
        except Exception:
            logger.exception("Failed to record wipe failure for file %s", record["id"])
        return {
            "id": record["id"],
            "name": record["file_name"],
            "status": WipeStatus.FAILED.value,
            "message": f"Failed to wipe: {exc}",
        }

    return {
        "id": record["id"],
        "name": record["file_name"],
        "status": WipeStatus.SUCCESS.value,
        "message": f"Successfully wiped using {wipe_type.value} method",
    }


@app.post("/wipe-files")
async def wipe_files(body: WipeRequest):
    try:
        db = get_db()
        bucket = get_blob_bucket()
        records = await _load_session_files(
            db, {"session_id": body.session_id, "scan_completed": True}
        )
    except Exception:
        logger.exception("Failed to load files to wipe for session %s", body.session_id)
        raise HTTPException(status_code=503, detail="Database unavailable")

    # One file failing does not stop the rest
    results = [await _wipe_one(db, bucket, record, body.wipe_type) for record in records]
    summary = _wipe_summary(results, body.wipe_type)

    logger.info(
        "Wipe complete: session=%s type=%s successful=%d failed=%d",
        body.session_id, body.wipe_type.value, summary["successful"], summary["failed"],
    )
    return {"success": True, "results": results, "summary": summary}

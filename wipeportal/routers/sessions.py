import logging

from fastapi import APIRouter, HTTPException, Path

from wipeportal.db import get_db

logger = logging.getLogger("wipeportal")

router = APIRouter(
    prefix="/sessions",
    tags=["Sessions"],
)

_PUBLIC_FIELDS = {
    "_id": 0,
    "id": 1,
    "file_name": 1,
    "file_size": 1,
    "file_path": 1,
    "risk_level": 1,
    "scan_completed": 1,
    "wipe_completed": 1,
    "wipe_status": 1,
}


@router.get("/{session_id}", summary="Get scan and wipe progress for a session")
async def get_session(session_id: str = Path(..., pattern=r"^[A-Za-z0-9_-]{1,64}$")):
    """
    Returns the files still on record for a session with progress counts.
    Successfully wiped files have no record left and are not listed.
    """
    try:
        db = get_db()
        cursor = db.uploaded_files.find({"session_id": session_id}, _PUBLIC_FIELDS)
        items = [item async for item in cursor]
    except Exception:
        logger.exception("Failed to load session %s", session_id)
        raise HTTPException(status_code=503, detail="Database unavailable")

    files = [
        {
            "id": item["id"],
            "name": item["file_name"],
            "size": item["file_size"],
            "path": item["file_path"],
            "riskLevel": item.get("risk_level"),
            "scanCompleted": bool(item.get("scan_completed")),
            "wipeStatus": item.get("wipe_status"),
        }
        for item in items
    ]
    return {
        "sessionId": session_id,
        "files": files,
        "progress": {
            "remaining": len(files),
            "scanned": sum(1 for f in files if f["scanCompleted"]),
            "failed": sum(1 for f in files if f["wipeStatus"] == "failed"),
        },
    }

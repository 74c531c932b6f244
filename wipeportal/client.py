"""
client.py – HTTP-klient för Wipe Portal API:t (upload, scan, wipe).

Varje anrop väntas in innan nästa skickas; klienten gör inga omförsök.
Fel (non-2xx eller nätverksfel) blir RemoteOperationError så att
wizarden kan backa till senaste stabila steg.

Miljövariabler:
  WIPEPORTAL_API_URL              – bas-URL (default http://localhost:8000)
  WIPEPORTAL_API_TIMEOUT_SECONDS  – timeout per anrop; saknas den används
                                    transportens default (ingen timeout)
"""

import logging
import os
from uuid import uuid4

import requests

from wipeportal.classifier import ClassifierConfig
from wipeportal.errors import RemoteOperationError
from wipeportal.models import WipeType

logger = logging.getLogger("wipeportal.client")

DEFAULT_API_URL = os.getenv("WIPEPORTAL_API_URL", "http://localhost:8000")


def _env_timeout() -> float | None:
    value = os.getenv("WIPEPORTAL_API_TIMEOUT_SECONDS")
    if not value:
        return None
    try:
        parsed = float(value)
        return parsed if parsed > 0 else None
    except ValueError:
        return None


def _error_detail(response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or ""
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("error")
        if isinstance(detail, str):
            return detail
        if detail is not None:
            return str(detail)
    return ""


class FileAPI:
    """Thin wrapper around the three lifecycle endpoints plus session status."""

    def __init__(self, base_url: str | None = None, session=None, timeout: float | None = None):
        self.base_url = (DEFAULT_API_URL if base_url is None else base_url).rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout if timeout is not None else _env_timeout()

    def _post(self, operation: str, path: str, **kwargs) -> dict:
        return self._request(operation, "post", path, **kwargs)

    def _request(self, operation: str, method: str, path: str, **kwargs) -> dict:
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        try:
            response = getattr(self.session, method)(f"{self.base_url}{path}", **kwargs)
        except requests.RequestException as exc:
            logger.warning("%s request failed: %s", operation, exc)
            raise RemoteOperationError(operation, str(exc)) from exc

        if not 200 <= response.status_code < 300:
            detail = _error_detail(response)
            logger.warning("%s returned %s: %s", operation, response.status_code, detail)
            raise RemoteOperationError(operation, detail, response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            # requests.JSONDecodeError is a ValueError
            logger.warning("%s returned %s with a non-JSON body", operation, response.status_code)
            raise RemoteOperationError(
                operation, "Invalid response body", response.status_code
            ) from exc

    def upload_files(self, files, session_id: str | None = None) -> dict:
        """
        files: iterable of (name, content, content_type) tuples.
        A new session id is generated when none is given.
        """
        session_id = session_id or str(uuid4())
        multipart = [
            ("files", (name, content, content_type or "application/octet-stream"))
            for name, content, content_type in files
        ]
        return self._post(
            "upload",
            "/upload-files",
            files=multipart,
            data={"sessionId": session_id},
        )

    def scan_files(self, session_id: str, config: ClassifierConfig | None = None) -> dict:
        payload: dict = {"sessionId": session_id}
        if config is not None:
            payload["settings"] = {
                "sensitiveKeywords": list(config.sensitive_keywords),
                "largeFileThreshold": config.large_file_threshold,
            }
        return self._post("scan", "/scan-files", json=payload)

    def wipe_files(self, session_id: str, wipe_type: WipeType | str = WipeType.STANDARD) -> dict:
        wipe_type = WipeType(wipe_type)
        return self._post(
            "wipe",
            "/wipe-files",
            json={"sessionId": session_id, "wipeType": wipe_type.value},
        )

    def get_session(self, session_id: str) -> dict:
        return self._request("session status", "get", f"/sessions/{session_id}")

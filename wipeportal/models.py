from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class WipeType(str, Enum):
    STANDARD = "standard"
    ADVANCED = "advanced"


class WipeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class UploadedFile(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    session_id: str
    file_name: str
    file_path: str
    file_size: int = Field(ge=0)
    content_type: str = Field(default="application/octet-stream")
    upload_timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    blob_id: Any = Field(default=None)
    risk_level: RiskLevel | None = Field(default=None)
    risk_reasons: list[str] = Field(default_factory=list)
    scan_timestamp: datetime | None = Field(default=None)
    scan_completed: bool = Field(default=False)
    wipe_completed: bool = Field(default=False)
    wipe_status: WipeStatus | None = Field(default=None)
    wipe_type: WipeType | None = Field(default=None)
    wipe_timestamp: datetime | None = Field(default=None)
    wipe_error: str | None = Field(default=None)


class ScanSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sensitive_keywords: list[str] = Field(default_factory=list, alias="sensitiveKeywords")
    large_file_threshold: int | None = Field(default=None, ge=0, alias="largeFileThreshold")


class ScanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_-]+$")
    settings: ScanSettings | None = Field(default=None)


class WipeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_-]+$")
    wipe_type: WipeType = Field(default=WipeType.STANDARD, alias="wipeType")

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


class Credentials(BaseModel):
    email: str
    password: str = Field(repr=False)


class DownloadRecord(BaseModel):
    """One entry of `download_history.json`, keyed by `DownloadHistory.document_key`."""

    title: str
    date: str
    filename: str
    downloaded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[str] = None


class RateLimitLock(BaseModel):
    locked_at: datetime
    unlock_at: datetime


class SkippedDocument(BaseModel):
    title: str
    reason: str
    details: str = ""


class ConsultationEntry(BaseModel):
    type: str
    details: str
    code: Optional[str] = None


class Consultation(BaseModel):
    date: str
    surgery: str
    surgery_type: str = ""
    staff_name: str = ""
    staff_role: str = ""
    entries: list[ConsultationEntry] = Field(default_factory=list)


class TestResult(BaseModel):
    __test__ = False  # keep pytest from collecting this model

    name: str
    date: str
    month_group: str = "Ungrouped"
    url: Optional[str] = None
    # Free-text fields as labelled on the result page ("Result", "Filed by", "Specimen", ...)
    details: dict[str, str] = Field(default_factory=dict)

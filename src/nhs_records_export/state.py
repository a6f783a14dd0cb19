from __future__ import annotations

import hashlib
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .models import DownloadRecord


logger = logging.getLogger(__name__)

HISTORY_FILENAME = "download_history.json"

# Length of the MD5 prefix used for documents without an id. Existing history files depend on it.
_HASH_KEY_LENGTH = 13


def document_key(document_id: Optional[str], title: str, date: str) -> str:
    """
    Stable dedup key for a document.

    Prefer the portal's document id; documents without one are keyed by a hash of their
    lowercased, whitespace-normalized title and date.
    """
    doc_id = (document_id or "").strip()
    if doc_id:
        return f"doc_{doc_id}"
    content = re.sub(r"\s+", "_", f"{title}_{date}".lower())
    digest = hashlib.md5(content.encode("utf-8")).hexdigest()
    return f"doc_{digest[:_HASH_KEY_LENGTH]}"


class DownloadHistory:
    """
    JSON index of every document downloaded so far (`<download_dir>/download_history.json`).

    Entries are only ever added; re-runs consult it to skip documents already on disk.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._entries: dict[str, DownloadRecord] = self._load()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[DownloadRecord]:
        return self._entries.get(key)

    def _load(self) -> dict[str, DownloadRecord]:
        if not self.path.exists():
            logger.info("No download history found - starting fresh")
            return {}

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("download history must be a JSON object")
            entries = {str(k): DownloadRecord.model_validate(v) for k, v in raw.items()}
        except Exception as e:
            logger.warning("Could not load download history (%s); quarantining and starting fresh.", e)
            self._quarantine()
            return {}

        logger.info("Loaded download history with %d entries", len(entries))
        return entries

    def _quarantine(self) -> None:
        try:
            stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
            self.path.replace(self.path.with_name(f"{self.path.name}.corrupt-{stamp}"))
        except OSError:
            logger.debug("Failed to quarantine file=%s", self.path, exc_info=True)

    def has_document(self, document_id: Optional[str], title: str, date: str) -> bool:
        return document_key(document_id, title, date) in self._entries

    def record_document(self, document_id: Optional[str], title: str, date: str, filename: str) -> DownloadRecord:
        key = document_key(document_id, title, date)
        record = DownloadRecord(title=title, date=date, filename=filename, id=document_id or None)
        self._entries[key] = record
        self.save()
        return record

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {k: v.model_dump(mode="json") for k, v in self._entries.items()}
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp.replace(self.path)

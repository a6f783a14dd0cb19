from __future__ import annotations

import re
import secrets
from typing import Optional


_UNSAFE_RE = re.compile(r"[^a-z0-9-]+")


def generate_document_filename(date_str: str, doc_type: str, extension: str, *, suffix: Optional[str] = None) -> str:
    """
    Build a unique document file name: `{YYYY-MM-DD}_{type}_{random}.{ext}`.

    `date_str` is expected to already be ISO formatted (see `util.dates.to_filename_date`).
    """
    kind = _UNSAFE_RE.sub("-", (doc_type or "document").strip().lower()).strip("-") or "document"
    ext = (extension or "").strip().lstrip(".").lower() or "bin"
    unique_id = suffix or secrets.token_hex(4)
    return f"{date_str}_{kind}_{unique_id}.{ext}"


def extension_from_hint(text: str) -> str:
    """
    The NHS App shows the file type next to the download link, e.g. "(PDF)" or "(DOCX)".
    """
    return re.sub(r"[()\s]", "", text or "").lower()

from __future__ import annotations

import base64
import binascii
import re
from typing import Iterable, Optional

from ..models import ConsultationEntry


# "Surgery Name (Type) - Staff Name (Role)"
_CONSULTATION_DETAIL_RE = re.compile(r"^(.+?)\s*\((.+?)\)\s*-\s*(.+?)\s*\((.+?)\)")
# "Problem - Asthma (XaVzt)"
_ENTRY_RE = re.compile(r"^(.+?)\s*-\s*(.+)", re.S)
_ENTRY_CODE_RE = re.compile(r"\(([A-Za-z0-9]+)\)")
_TEST_CATEGORY_RE = re.compile(r"^(.+?)\s*-\s*(.+)")
_YEAR_HEADING_RE = re.compile(r"Showing results from (\d{4})")
_DATA_URL_IMAGE_RE = re.compile(r"^data:image/(\w+);base64,(.+)$", re.S)

# Free-text sections inside the result details block, with the heading that ends each one.
_RESULT_SECTIONS: tuple[tuple[str, str, str, bool], ...] = (
    # (details key, start heading, alternative end heading, join lines with "; ")
    ("Specimen", "Specimen", "Pathology Investigations", True),
    ("Investigations", "Pathology Investigations", "General Information", False),
    ("General Information", "General Information", "Message Recipient", True),
)


def parse_consultation_detail(detail_text: str) -> tuple[str, str, str, str]:
    """
    Split a consultation card's detail line into (surgery, surgery_type, staff_name, staff_role).

    Lines that don't follow the "Surgery (Type) - Staff (Role)" shape are returned whole as the surgery.
    """
    text = (detail_text or "").strip()
    m = _CONSULTATION_DETAIL_RE.match(text)
    if not m:
        return text, "", "", ""
    return m.group(1).strip(), m.group(2).strip(), m.group(3).strip(), m.group(4).strip()


def parse_consultation_entry(entry_text: str) -> ConsultationEntry:
    text = (entry_text or "").strip()
    m = _ENTRY_RE.match(text)
    if not m:
        return ConsultationEntry(type="Unknown", details=text)
    details = m.group(2).strip()
    code = _ENTRY_CODE_RE.search(details)
    return ConsultationEntry(type=m.group(1).strip(), details=details, code=code.group(1) if code else None)


def parse_test_result_detail_text(full_text: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for key, start, end, join_lines in _RESULT_SECTIONS:
        m = re.search(rf"{re.escape(start)}\n(.+?)(?:\n\n|{re.escape(end)})", full_text or "", re.S)
        if not m:
            continue
        value = m.group(1)
        out[key] = value.replace("\n", "; ") if join_lines else value.strip()
    return out


def result_category(name: str) -> Optional[str]:
    """ "Pathology - Serum vitamin B12 level" -> "Pathology" """
    m = _TEST_CATEGORY_RE.match(name or "")
    return m.group(1) if m else None


def year_from_sub_heading(text: str) -> Optional[str]:
    m = _YEAR_HEADING_RE.search(text or "")
    return m.group(1) if m else None


def document_id_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    last = url.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
    return last or None


def looks_like_upload_error(text: str, markers: Iterable[str]) -> bool:
    return any(m in (text or "") for m in markers)


def decode_data_url_image(src: str) -> Optional[tuple[str, bytes]]:
    """
    Decode an inline `data:image/<type>;base64,...` URL into (type, bytes).
    """
    m = _DATA_URL_IMAGE_RE.match((src or "").strip())
    if not m:
        return None
    try:
        return m.group(1).lower(), base64.b64decode(m.group(2))
    except (binascii.Error, ValueError):
        return None


def login_markers_present(text: str, *, nhs_number: str, greetings: Iterable[str]) -> bool:
    """
    Best-effort check that the NHS App home page rendered for a logged-in user.
    """
    if nhs_number_visible(text, nhs_number):
        return True
    return any(g in (text or "") for g in greetings)


def nhs_number_visible(text: str, nhs_number: str) -> bool:
    if not nhs_number:
        return False
    text = text or ""
    return nhs_number in text or nhs_number.replace(" ", "") in text

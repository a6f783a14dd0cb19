from __future__ import annotations

import re
from datetime import date
from typing import Optional

from dateutil import parser as date_parser


# "21 July 2025", "3 Jan 2024"
_UK_LONG_DATE_RE = re.compile(r"(\d{1,2}\s+[A-Za-z]+\s+\d{4})")


def find_uk_date(text: str) -> Optional[str]:
    """Return the first "21 July 2025"-style date in `text`, as written."""
    m = _UK_LONG_DATE_RE.search(text or "")
    return m.group(1) if m else None


def parse_uk_date(value: str) -> date:
    """
    Parse dates as the NHS App renders them:
    - "21 July 2025"
    - "3 Jan 2024"
    - "03/01/2024" (day first)
    """
    if value is None:
        raise ValueError("parse_uk_date: value is None")
    s = value.strip()
    if not s:
        raise ValueError("parse_uk_date: empty string")
    dt = date_parser.parse(s, dayfirst=True)
    return dt.date()


def to_filename_date(value: Optional[str], *, today: Optional[date] = None) -> str:
    """
    ISO date for use in file names. Unparseable input falls back to today's date.
    """
    if value:
        try:
            return parse_uk_date(value).isoformat()
        except (ValueError, OverflowError):
            pass
    return (today or date.today()).isoformat()

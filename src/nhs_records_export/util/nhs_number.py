from __future__ import annotations

import re


_NON_DIGITS_RE = re.compile(r"[^0-9]")


def nhs_number_digits(value: str) -> str:
    return _NON_DIGITS_RE.sub("", value or "")


def format_nhs_number(value: str) -> str:
    """
    Normalize an NHS number to the "XXX XXX XXXX" form shown by the NHS App.

    Spaces, dashes and other separators are ignored; exactly 10 digits must remain.
    """
    digits = nhs_number_digits(value)
    if len(digits) != 10:
        raise ValueError(f"NHS number must be exactly 10 digits (got {len(digits)})")
    return f"{digits[0:3]} {digits[3:6]} {digits[6:10]}"

from __future__ import annotations

import logging
import queue
import re
import sys
import threading
from typing import Callable, Optional, TextIO


logger = logging.getLogger(__name__)

_OTP_RE = re.compile(r"[0-9]{6}")

MFA_PROMPT = "Please enter the 6-digit code: "


class MfaTimeoutError(TimeoutError):
    pass


class MfaInputUnavailableError(RuntimeError):
    """
    Raised when there is no interactive terminal to read the security code from.
    """


def is_valid_otp(code: Optional[str]) -> bool:
    return bool(code) and bool(_OTP_RE.fullmatch(code or ""))


def prompt_for_otp(
    *,
    timeout_seconds: float = 120,
    stdin: Optional[TextIO] = None,
    input_fn: Callable[[str], str] = input,
) -> str:
    """
    Ask the user for the 6-digit code the NHS sent to their phone.

    Re-prompts until exactly 6 digits are entered. The terminal is read on a daemon thread so
    the overall `timeout_seconds` ceiling holds even while `input()` is blocked.
    """
    stdin = stdin or sys.stdin
    if not stdin.isatty():
        raise MfaInputUnavailableError(
            "Not running in an interactive terminal, so the MFA code can't be read. "
            "Run nhs_records_export directly in your terminal."
        )

    codes: queue.Queue[Optional[str]] = queue.Queue()

    def _reader() -> None:
        while True:
            try:
                raw = input_fn(MFA_PROMPT)
            except EOFError:
                codes.put(None)
                return
            code = (raw or "").strip()
            if is_valid_otp(code):
                codes.put(code)
                return
            print("Invalid code. Please enter exactly 6 digits.")

    print("A 6-digit security code has been sent to your mobile phone.")
    threading.Thread(target=_reader, name="mfa-prompt", daemon=True).start()

    try:
        code = codes.get(timeout=timeout_seconds)
    except queue.Empty:
        raise MfaTimeoutError(f"Timed out waiting for MFA code ({timeout_seconds:g} seconds)") from None

    if code is None:
        raise MfaInputUnavailableError("Input closed before an MFA code was entered.")
    return code

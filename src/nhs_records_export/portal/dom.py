from __future__ import annotations

import logging
import time
from typing import Optional, Union

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Frame, Locator, Page


logger = logging.getLogger(__name__)

Scope = Union[Page, Frame, Locator]

# Cap on candidates inspected per selector, in case a selector is too generic.
_MAX_CANDIDATES = 25


def _as_tuple(selectors: Union[str, tuple[str, ...]]) -> tuple[str, ...]:
    return (selectors,) if isinstance(selectors, str) else tuple(selectors)


def first_visible(scope: Scope, selectors: Union[str, tuple[str, ...]], *, text_contains: str = "") -> Optional[Locator]:
    """
    Return the first visible element matching any of `selectors` (tried in order).

    With `text_contains`, only elements whose text includes it (case-insensitive) qualify.
    """
    needle = text_contains.casefold()
    for selector in _as_tuple(selectors):
        loc = scope.locator(selector)
        try:
            n = min(int(loc.count()), _MAX_CANDIDATES)
        except PlaywrightError:
            continue
        for i in range(n):
            cand = loc.nth(i)
            try:
                if not cand.is_visible():
                    continue
                if needle and needle not in (cand.inner_text(timeout=2_000) or "").casefold():
                    continue
                return cand
            except PlaywrightError:
                continue
    return None


def wait_for_first_visible(
    page: Page,
    selectors: Union[str, tuple[str, ...]],
    *,
    timeout_s: float,
    poll_s: float = 0.5,
) -> Optional[Locator]:
    """
    Poll for `first_visible` until `timeout_s` elapses. Returns None on timeout.
    """
    deadline = time.monotonic() + timeout_s
    while True:
        found = first_visible(page, selectors)
        if found is not None:
            return found
        if time.monotonic() >= deadline:
            return None
        page.wait_for_timeout(int(poll_s * 1000))


def has_element(scope: Scope, selectors: Union[str, tuple[str, ...]]) -> bool:
    for selector in _as_tuple(selectors):
        try:
            if scope.locator(selector).count() > 0:
                return True
        except PlaywrightError:
            continue
    return False


def text_of(loc: Locator, default: str = "") -> str:
    """
    Text of the first match, or `default` when nothing matches (without waiting for it to appear).
    """
    try:
        if loc.count() == 0:
            return default
        return (loc.first.inner_text(timeout=5_000) or "").strip()
    except PlaywrightError:
        return default


def page_text(page: Page) -> str:
    try:
        return page.inner_text("body", timeout=5_000)
    except PlaywrightError:
        return ""


def click(page: Page, loc: Locator, *, settle_ms: int = 0) -> None:
    """
    Scroll into view and click; the NHS App's sticky header sometimes covers targets otherwise.
    """
    try:
        loc.scroll_into_view_if_needed(timeout=2_000)
    except PlaywrightError:
        logger.debug("scroll_into_view_if_needed failed; clicking anyway.", exc_info=True)
    loc.click()
    if settle_ms:
        page.wait_for_timeout(settle_ms)

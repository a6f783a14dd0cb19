from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Locator, Page

from ..models import TestResult
from .dom import first_visible, text_of
from .parsing import parse_test_result_detail_text, year_from_sub_heading

if TYPE_CHECKING:
    from .client import NhsAppClient


logger = logging.getLogger(__name__)

_YEAR_RE = re.compile(r"^\d{4}$")


@dataclass(frozen=True)
class _Layout:
    """
    One of the card layouts the NHS App uses for test results.

    `groups=None` means cards sit directly on the page (no month groups).
    """

    name: str
    groups: Optional[str]
    heading: Optional[str]
    cards: str
    link: str
    name_selector: Optional[str]  # None: the link text is the test name


@dataclass(frozen=True)
class _CardInfo:
    group_index: int
    card_index: int
    name: str
    date: str
    url: Optional[str]
    month_group: str


class TestResultsScraper:
    __test__ = False  # keep pytest from collecting this class

    def __init__(self, client: "NhsAppClient", *, skip_details: bool = False) -> None:
        self.client = client
        self.selectors = client.selectors
        self.skip_details = skip_details

    def _layouts(self) -> tuple[_Layout, ...]:
        s = self.selectors
        return (
            _Layout("grouped", s.test_results_groups, s.test_results_group_heading, s.test_results_cards, s.test_results_card_link, None),
            _Layout(
                "year view",
                s.test_results_year_groups,
                s.test_results_year_heading,
                s.test_results_year_cards,
                s.test_results_year_card_link,
                s.test_results_year_name,
            ),
            _Layout("ungrouped", None, None, s.test_results_cards, s.test_results_card_link, None),
        )

    def run(self, page: Page) -> list[TestResult]:
        s = self.selectors
        page.wait_for_timeout(2_000)
        logger.debug("Test results page: url=%s title=%r", page.url, page.title())

        year = year_from_sub_heading(text_of(page.locator(s.test_results_sub_heading)))
        if year:
            logger.info("Currently viewing results from %s", year)
        else:
            logger.info("Could not determine the current results year")

        results = self.extract_page(page)
        logger.info("Found %d test results on the main page", len(results))

        view_older = first_visible(page, s.test_results_view_older)
        if view_older is None:
            logger.info("No link to other years; only the current year is available")
        else:
            logger.info("Opening results from other years...")
            view_older.click()
            page.wait_for_timeout(2_000)
            results.extend(self._extract_other_years(page))

        logger.info("Extracted %d test results in total", len(results))
        return results

    def _extract_other_years(self, page: Page) -> list[TestResult]:
        texts = page.locator(self.selectors.test_results_year_links).all_inner_texts()
        years = [t.strip() for t in texts if _YEAR_RE.match(t.strip())]
        logger.info("Found test results for years: %s", ", ".join(years) or "(none)")

        results: list[TestResult] = []
        for year in years:
            logger.info("Processing year %s...", year)
            opened = False
            try:
                page.locator(f'a:text-is("{year}")').first.click()
                opened = True
                page.wait_for_timeout(2_000)
                results.extend(self.extract_page(page))
            except PlaywrightError as e:
                logger.warning("Error processing year %s: %s", year, e)

            if not opened:
                continue
            try:
                page.go_back()
                page.wait_for_timeout(2_000)
            except PlaywrightError as e:
                logger.warning("Could not return to the year list after %s: %s", year, e)
                break
        return results

    def extract_page(self, page: Page) -> list[TestResult]:
        for layout in self._layouts():
            probe = layout.groups or layout.cards
            if page.locator(probe).count() > 0:
                logger.debug("Test results layout: %s", layout.name)
                return self._extract_layout(page, layout)
        logger.info("No test result cards found on this page")
        return []

    def _group(self, page: Page, layout: _Layout, group_index: int) -> Locator:
        if layout.groups is None:
            return page.locator("body")
        return page.locator(layout.groups).nth(group_index)

    def _collect_cards(self, page: Page, layout: _Layout) -> list[_CardInfo]:
        """
        Read every card's metadata up front; opening a result navigates away from the list.
        """
        s = self.selectors
        group_count = page.locator(layout.groups).count() if layout.groups else 1
        infos: list[_CardInfo] = []

        for gi in range(group_count):
            group = self._group(page, layout, gi)
            heading = "Ungrouped"
            if layout.heading:
                heading = text_of(group.locator(layout.heading)) or "Unknown Month"

            cards = group.locator(layout.cards)
            n = cards.count()
            logger.info("Found %d test results in %s", n, heading)
            for ci in range(n):
                card = cards.nth(ci)
                try:
                    link = card.locator(layout.link).first
                    name_loc = card.locator(layout.name_selector) if layout.name_selector else card.locator(layout.link)
                    infos.append(
                        _CardInfo(
                            group_index=gi,
                            card_index=ci,
                            name=text_of(name_loc),
                            date=text_of(card.locator(s.test_results_card_date)),
                            url=link.get_attribute("href"),
                            month_group=heading,
                        )
                    )
                except PlaywrightError as e:
                    logger.warning("Error reading test card %d in %s: %s", ci + 1, heading, e)
        return infos

    def _extract_layout(self, page: Page, layout: _Layout) -> list[TestResult]:
        results: list[TestResult] = []
        for info in self._collect_cards(page, layout):
            details: dict[str, str] = {}
            if self.skip_details:
                logger.info("Found: %s - %s (skipping details)", info.name, info.date)
            else:
                details = self._open_details(page, layout, info)
            results.append(
                TestResult(name=info.name, date=info.date, month_group=info.month_group, url=info.url, details=details)
            )
        return results

    def _open_details(self, page: Page, layout: _Layout, info: _CardInfo) -> dict[str, str]:
        cards = self._group(page, layout, info.group_index).locator(layout.cards)
        if info.card_index >= cards.count():
            logger.warning("Test result list changed; no details for %s", info.name)
            return {}

        logger.info("Processing: %s - %s", info.name, info.date)
        opened = False
        try:
            cards.nth(info.card_index).locator(layout.link).first.click()
            opened = True
            page.wait_for_timeout(2_000)
            return self.extract_details(page)
        except PlaywrightError as e:
            logger.warning("Error reading details for %s: %s", info.name, e)
            return {}
        finally:
            if opened:
                page.go_back()
                page.wait_for_timeout(2_000)

    def extract_details(self, page: Page) -> dict[str, str]:
        s = self.selectors
        details: dict[str, str] = {}

        rows = page.locator(s.test_result_rows)
        for i in range(rows.count()):
            cells = rows.nth(i).locator("td").all_inner_texts()
            if len(cells) >= 2:
                details[cells[0].strip()] = cells[1].strip()

        details.update(parse_test_result_detail_text(text_of(page.locator(s.test_result_details))))
        return details

from __future__ import annotations

import logging
from pathlib import Path
from types import SimpleNamespace
from typing import Optional

import pytest
from playwright.sync_api import Error as PlaywrightError

from nhs_records_export.portal.documents import DocumentsScraper
from nhs_records_export.portal.selectors import PortalSelectors
from nhs_records_export.portal.test_results import TestResultsScraper
from nhs_records_export.state import DownloadHistory


class FakeLocator:
    """
    Just enough of a Playwright locator: counts, texts and attributes come from the owning FakePage.
    """

    def __init__(self, page: "FakePage", selector: str) -> None:
        self.page = page
        self.selector = selector

    @property
    def first(self) -> "FakeLocator":
        return self

    def nth(self, index: int) -> "FakeLocator":
        return self

    def locator(self, selector: str) -> "FakeLocator":
        return FakeLocator(self.page, selector)

    def count(self) -> int:
        return self.page.counts.get(self.selector, 0)

    def all_inner_texts(self) -> list[str]:
        return self.page.texts.get(self.selector, [])

    def get_attribute(self, name: str) -> Optional[str]:
        return self.page.attributes.get(name)

    def wait_for(self, **kwargs) -> None:
        return None

    def click(self) -> None:
        self.page.clicks.append(self.selector)
        if self.page.clicks_fail:
            raise PlaywrightError("Timeout 15000ms exceeded.")
        self.page.navigations += 1


class FakePage:
    def __init__(self, *, clicks_fail: bool = False) -> None:
        self.url = "https://www.nhsapp.service.nhs.uk/patient/health-records/gp-medical-record/test-results-v2"
        self.counts: dict[str, int] = {}
        self.texts: dict[str, list[str]] = {}
        self.attributes: dict[str, str] = {}
        self.clicks: list[str] = []
        self.clicks_fail = clicks_fail
        self.navigations = 0
        self.back_calls = 0

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    def go_back(self) -> None:
        self.back_calls += 1

    def wait_for_timeout(self, ms: int) -> None:
        return None


def _client(tmp_path: Path) -> SimpleNamespace:
    return SimpleNamespace(selectors=PortalSelectors(), download_dir=tmp_path, save_debug=lambda page, **kw: None)


def _year_page(*, clicks_fail: bool) -> FakePage:
    page = FakePage(clicks_fail=clicks_fail)
    page.texts[PortalSelectors().test_results_year_links] = ["2024", "2023", "View all", "2022"]
    return page


def test_other_years_stay_on_the_year_list_when_a_year_cannot_be_opened(tmp_path: Path) -> None:
    page = _year_page(clicks_fail=True)

    results = TestResultsScraper(_client(tmp_path))._extract_other_years(page)

    assert results == []
    assert page.clicks == ['a:text-is("2024")', 'a:text-is("2023")', 'a:text-is("2022")']
    assert page.back_calls == 0


def test_other_years_go_back_once_per_opened_year(tmp_path: Path) -> None:
    page = _year_page(clicks_fail=False)

    TestResultsScraper(_client(tmp_path))._extract_other_years(page)

    assert page.navigations == 3
    assert page.back_calls == 3


def test_other_years_stop_when_the_year_list_cannot_be_restored(tmp_path: Path) -> None:
    page = _year_page(clicks_fail=False)

    def broken_back() -> None:
        page.back_calls += 1
        raise PlaywrightError("Navigation failed")

    page.go_back = broken_back  # type: ignore[method-assign]

    assert TestResultsScraper(_client(tmp_path))._extract_other_years(page) == []
    assert page.clicks == ['a:text-is("2024")']


def test_documents_summary_counts_pages(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    title = "Letter added on 21 July 2025"
    history = DownloadHistory(tmp_path / "download_history.json")
    history.record_document("abc-123", title, "21 July 2025", "2025-07-21_letter_0a1b2c3d.pdf")

    s = PortalSelectors()
    page = FakePage()
    page.counts[s.document_items] = 2
    page.attributes = {"aria-label": title, "href": "/patient/health-records/gp-medical-record/documents/abc-123"}

    with caplog.at_level(logging.INFO, logger="nhs_records_export.portal.documents"):
        outcome = DocumentsScraper(_client(tmp_path), history=history).run(page)

    assert outcome.pages == 1
    assert outcome.already_downloaded == 2
    assert outcome.downloaded == 0
    assert "0 skipped across 1 page(s)" in caplog.text

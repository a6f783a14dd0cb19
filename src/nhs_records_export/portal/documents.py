from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Locator, Page

from ..models import SkippedDocument
from ..state import DownloadHistory
from ..util.dates import find_uk_date, to_filename_date
from ..util.filenames import extension_from_hint, generate_document_filename
from .dom import click, first_visible, text_of
from .parsing import decode_data_url_image, document_id_from_url, looks_like_upload_error

if TYPE_CHECKING:
    from .client import NhsAppClient


logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_MS = 10_000

REASON_UPLOAD_ERROR = "API upload error"
REASON_UNAVAILABLE = "Not available through NHS App"
REASON_DOWNLOAD_FAILED = "Download failed"
REASON_PROCESSING_ERROR = "Processing error"


@dataclass
class DocumentsOutcome:
    downloaded: int = 0
    already_downloaded: int = 0
    pages: int = 0
    skipped: list[SkippedDocument] = field(default_factory=list)


class DocumentsScraper:
    """
    Downloads every document in the GP record "Documents" section.

    Documents already in the download history are skipped; so are ones the NHS App can't serve,
    which are collected in `DocumentsOutcome.skipped` for the skipped-documents report.
    """

    def __init__(self, client: "NhsAppClient", *, history: DownloadHistory) -> None:
        self.client = client
        self.selectors = client.selectors
        self.history = history
        self.download_dir = Path(client.download_dir)

    def _items(self, page: Page) -> Locator:
        return page.locator(self.selectors.documents_list).first.locator(self.selectors.document_items)

    def run(self, page: Page) -> DocumentsOutcome:
        s = self.selectors
        outcome = DocumentsOutcome()
        page_number = 1

        while True:
            try:
                page.locator(s.documents_list).first.wait_for(state="visible", timeout=10_000)
            except PlaywrightError as e:
                logger.warning("Could not find document list: %s", e)
                break

            count = self._items(page).count()
            if count == 0:
                logger.info("No documents found on page %d", page_number)
                break

            logger.info("Page %d: found %d documents", page_number, count)
            outcome.pages = page_number
            for index in range(count):
                # Re-query each time: we navigate away and back for every document.
                items = self._items(page)
                if index >= items.count():
                    logger.warning("Document list changed; skipping remaining items")
                    break
                if not self._process_item(page, items.nth(index), index=index, outcome=outcome):
                    break

            next_link = first_visible(page, s.pagination_next)
            if next_link is None:
                logger.info("No more document pages.")
                break
            logger.info("Navigating to document page %d...", page_number + 1)
            next_link.click()
            page.wait_for_timeout(2_000)
            page_number += 1

        logger.info(
            "Documents: %d downloaded, %d already downloaded, %d skipped across %d page(s)",
            outcome.downloaded,
            outcome.already_downloaded,
            len(outcome.skipped),
            outcome.pages,
        )
        return outcome

    def _process_item(self, page: Page, item: Locator, *, index: int, outcome: DocumentsOutcome) -> bool:
        """
        Handle one list entry. Returns False when we lost the documents list and should stop.
        """
        s = self.selectors
        title = "Unknown document"
        try:
            title = item.locator(s.document_title_label).first.get_attribute("aria-label") or title
            link = item.locator("a").first
            doc_id = document_id_from_url(link.get_attribute("href"))
            doc_date = find_uk_date(title) or "Unknown"

            if self.history.has_document(doc_id, title, doc_date):
                logger.info("%d. Skipping (already downloaded): %s", index + 1, title)
                outcome.already_downloaded += 1
                return True

            note = text_of(item.locator(s.document_item_note))
            if looks_like_upload_error(note, s.document_upload_error_markers):
                logger.info("%d. Skipping upload error document: %s (%s)", index + 1, title, note)
                outcome.skipped.append(SkippedDocument(title=title, reason=REASON_UPLOAD_ERROR, details=note))
                return True

            logger.info("%d. Processing: %s", index + 1, title)
            click(page, link, settle_ms=500)
            try:
                page.locator(s.document_page_title).first.wait_for(state="visible", timeout=10_000)
            except PlaywrightError:
                logger.debug("Document page title did not appear; continuing anyway.")
            page.wait_for_timeout(1_000)

            heading = text_of(page.locator(f"{s.document_page_title} h1"))
            if s.document_unavailable_text in heading:
                outcome.skipped.append(self._unavailable(page, title))
            elif self._download(page, title=title, doc_id=doc_id, doc_date=doc_date):
                outcome.downloaded += 1
            else:
                outcome.skipped.append(
                    SkippedDocument(
                        title=title,
                        reason=REASON_DOWNLOAD_FAILED,
                        details="Could not find download or view options",
                    )
                )

            return self._back_to_list(page)
        except PlaywrightError as e:
            logger.warning("Error processing document %d (%s): %s", index + 1, title, e)
            outcome.skipped.append(SkippedDocument(title=title, reason=REASON_PROCESSING_ERROR, details=str(e)))
            self.client.save_debug(page, name_prefix=f"document_{index + 1}_failed")
            try:
                page.go_back()
            except PlaywrightError:
                logger.debug("go_back failed after document error.", exc_info=True)
            page.wait_for_timeout(2_000)
            return True

    def _back_to_list(self, page: Page) -> bool:
        page.go_back()
        page.wait_for_timeout(2_000)
        if "documents" in page.url:
            return True

        logger.warning("Lost the documents list (url=%s); returning to it", page.url)
        try:
            page.goto(f"{self.selectors.gp_record_url}/documents", wait_until="domcontentloaded")
            page.wait_for_timeout(2_000)
        except PlaywrightError as e:
            logger.error("Failed to navigate back to documents: %s", e)
            return False
        return True

    def _unavailable(self, page: Page, title: str) -> SkippedDocument:
        s = self.selectors
        logger.info("Document is not available through the NHS App: %s", title)

        comments = ""
        section = page.locator(s.document_comments).first
        if "Comments" in text_of(page.locator(s.document_comments)):
            comments = text_of(section.locator("pre"))
        info = text_of(page.locator(s.document_info))
        return SkippedDocument(title=title, reason=REASON_UNAVAILABLE, details=comments or info)

    def _download(self, page: Page, *, title: str, doc_id: Optional[str], doc_date: str) -> bool:
        s = self.selectors
        heading = page.locator(f"{s.document_page_title} h1").first
        heading.wait_for(state="visible", timeout=10_000)
        full_title = (heading.inner_text() or "").strip()

        # "Letter added on 21 July 2025" -> 2025-07-21, "letter"
        file_date = to_filename_date(find_uk_date(full_title))
        doc_type = (full_title.split() or ["Document"])[0]

        menu = page.locator(s.document_action_menu).first
        menu.wait_for(state="visible", timeout=10_000)

        download_btn = menu.locator(s.document_download_button)
        if download_btn.count() > 0:
            hint = text_of(download_btn.first.locator("xpath=..").locator("p"))
            extension = extension_from_hint(hint)
            logger.info("Found download button for %s file", (extension or "unknown").upper())

            with page.expect_download(timeout=DOWNLOAD_TIMEOUT_MS) as download_info:
                download_btn.first.click()
            download = download_info.value
            if not extension:
                extension = Path(download.suggested_filename or "").suffix.lstrip(".")

            filename = generate_document_filename(file_date, doc_type, extension)
            download.save_as(str(self.download_dir / filename))
            logger.info("Downloaded %s", filename)
            self.history.record_document(doc_id, title, doc_date, filename)
            return True

        view_btn = menu.locator(s.document_view_button)
        if view_btn.count() == 0:
            return False

        logger.info("Found view button; checking for an embedded image")
        view_btn.first.click()
        page.wait_for_timeout(2_000)

        img = page.locator(s.document_embedded_image).first
        img.wait_for(state="visible", timeout=10_000)
        decoded = decode_data_url_image(img.get_attribute("src") or "")
        if decoded is None:
            logger.warning("View-only document has no embedded image data: %s", title)
            return False

        image_type, data = decoded
        filename = generate_document_filename(file_date, doc_type, image_type)
        (self.download_dir / filename).write_bytes(data)
        logger.info("Saved embedded image %s", filename)
        self.history.record_document(doc_id, title, doc_date, filename)
        return True

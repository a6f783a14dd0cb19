from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Locator, Page

from ..models import Consultation
from .dom import first_visible, text_of
from .parsing import parse_consultation_detail, parse_consultation_entry
from .selectors import PortalSelectors

if TYPE_CHECKING:
    from .client import NhsAppClient


logger = logging.getLogger(__name__)

PROGRESS_EVERY = 10


def consultation_from_card(card: Locator, selectors: PortalSelectors) -> Consultation:
    date = text_of(card.locator(selectors.consultation_header)) or "Unknown Date"
    surgery, surgery_type, staff_name, staff_role = parse_consultation_detail(
        text_of(card.locator(selectors.consultation_detail))
    )
    entries = [parse_consultation_entry(t) for t in card.locator(selectors.consultation_entries).all_inner_texts()]
    return Consultation(
        date=date,
        surgery=surgery,
        surgery_type=surgery_type,
        staff_name=staff_name,
        staff_role=staff_role,
        entries=[e for e in entries if e.details],
    )


class ConsultationsScraper:
    def __init__(self, client: "NhsAppClient") -> None:
        self.client = client
        self.selectors = client.selectors

    def run(self, page: Page) -> list[Consultation]:
        s = self.selectors
        consultations: list[Consultation] = []
        page.wait_for_timeout(2_000)
        page_number = 1

        while True:
            cards = page.locator(s.consultation_cards)
            count = cards.count()
            if count == 0:
                if page_number == 1:
                    logger.info("No consultations found")
                break

            logger.info("Page %d: found %d consultation records", page_number, count)
            for index in range(count):
                try:
                    consultations.append(consultation_from_card(cards.nth(index), s))
                except PlaywrightError as e:
                    logger.warning("Error processing consultation %d: %s", index + 1, e)
                    continue
                if len(consultations) % PROGRESS_EVERY == 0:
                    logger.info("Processed %d consultations...", len(consultations))

            next_link = first_visible(page, s.pagination_next)
            if next_link is None:
                break
            next_link.click()
            page.wait_for_timeout(2_000)
            page_number += 1

        logger.info("Extracted %d consultations", len(consultations))
        return consultations

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class Section:
    key: str
    name: str  # link text on the GP health record page
    href: str  # URL fragment of the section page
    data_purpose: str
    aliases: tuple[str, ...] = ()


DOCUMENTS = Section(key="documents", name="Documents", href="documents", data_purpose="documents", aliases=("docs",))
CONSULTATIONS = Section(
    key="consultations",
    name="Consultations and events",
    href="events",
    data_purpose="events",
    aliases=("consult", "events"),
)
TEST_RESULTS = Section(
    key="test_results",
    name="Test results",
    href="test-results-v2",
    data_purpose="test-results",
    aliases=("test", "results"),
)

ALL_SECTIONS: tuple[Section, ...] = (DOCUMENTS, CONSULTATIONS, TEST_RESULTS)


def _matches(section: Section, token: str) -> bool:
    t = token.strip().lower().replace("_", " ")
    if not t:
        return False
    if t in section.name.lower():
        return True
    return any(t.startswith(a) or a.startswith(t) for a in section.aliases)


def select_sections(tokens: Optional[Iterable[str]]) -> list[Section]:
    """
    Resolve `-s/--sections` tokens ("documents,consultations,test") to sections, in page order.

    No tokens means every section. Returns an empty list when nothing matches.
    """
    cleaned = [t for t in (tokens or []) if t and t.strip()]
    if not cleaned:
        return list(ALL_SECTIONS)
    return [s for s in ALL_SECTIONS if any(_matches(s, t) for t in cleaned)]


def parse_sections_arg(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [p.strip() for p in value.split(",") if p.strip()]

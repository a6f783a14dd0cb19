from __future__ import annotations

import csv
import json
import logging
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

from .models import Consultation, SkippedDocument, TestResult
from .portal.parsing import result_category


logger = logging.getLogger(__name__)

TEST_RESULTS_BASENAME = "test_results"
CONSULTATIONS_BASENAME = "consultations_and_events"
SKIPPED_REPORT_FILENAME = "skipped_documents_report.txt"
UNKNOWN_DATE = "Unknown Date"

TEST_RESULT_DETAIL_COLUMNS: tuple[str, ...] = (
    "Result",
    "Follow up action",
    "Clinician viewed",
    "Result type",
    "Tests",
    "Filed by",
    "Specimen",
    "Investigations",
    "General Information",
)
TEST_RESULTS_CSV_HEADER: tuple[str, ...] = ("Date", "Test Name", "Month Group", *TEST_RESULT_DETAIL_COLUMNS)
CONSULTATIONS_CSV_HEADER: tuple[str, ...] = (
    "Date",
    "Surgery",
    "Surgery Type",
    "Staff Name",
    "Staff Role",
    "Entry Type",
    "Entry Details",
    "Code",
)


def _write_json(path: Path, items: Sequence) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    data = [i.model_dump(mode="json") for i in items]
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")


def result_rows(results: Sequence[TestResult]) -> list[list[str]]:
    rows: list[list[str]] = []
    for r in results:
        rows.append([r.date, r.name, r.month_group, *(r.details.get(c, "") for c in TEST_RESULT_DETAIL_COLUMNS)])
    return rows


def consultation_rows(consultations: Sequence[Consultation]) -> list[list[str]]:
    """
    One row per entry; consultations without entries still get a row with blank entry columns.
    """
    rows: list[list[str]] = []
    for c in consultations:
        base = [c.date, c.surgery, c.surgery_type, c.staff_name, c.staff_role]
        if not c.entries:
            rows.append([*base, "", "", ""])
            continue
        for e in c.entries:
            rows.append([*base, e.type, e.details, e.code or ""])
    return rows


def _write_csv(path: Path, header: Sequence[str], rows: list[list[str]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(header)
        writer.writerows(rows)


def save_test_results(results: Sequence[TestResult], download_dir: Path) -> tuple[Path, Path]:
    json_path = Path(download_dir) / f"{TEST_RESULTS_BASENAME}.json"
    csv_path = Path(download_dir) / f"{TEST_RESULTS_BASENAME}.csv"
    _write_json(json_path, results)
    _write_csv(csv_path, TEST_RESULTS_CSV_HEADER, result_rows(results))
    logger.info("Saved test results to %s and %s", json_path, csv_path)
    log_test_results_summary(results)
    return json_path, csv_path


def save_consultations(consultations: Sequence[Consultation], download_dir: Path) -> tuple[Path, Path]:
    json_path = Path(download_dir) / f"{CONSULTATIONS_BASENAME}.json"
    csv_path = Path(download_dir) / f"{CONSULTATIONS_BASENAME}.csv"
    _write_json(json_path, consultations)
    _write_csv(csv_path, CONSULTATIONS_CSV_HEADER, consultation_rows(consultations))
    logger.info("Saved consultations to %s and %s", json_path, csv_path)
    log_consultations_summary(consultations)
    return json_path, csv_path


def result_category_counts(results: Sequence[TestResult]) -> Counter[str]:
    return Counter(cat for cat in (result_category(r.name) for r in results) if cat)


def entry_type_counts(consultations: Sequence[Consultation]) -> Counter[str]:
    return Counter(e.type for c in consultations for e in c.entries)


def log_test_results_summary(results: Sequence[TestResult]) -> None:
    logger.info("Test results summary: %d total", len(results))
    for category, count in result_category_counts(results).most_common():
        logger.info("  - %s: %d", category, count)


def log_consultations_summary(consultations: Sequence[Consultation]) -> None:
    unknown = sum(1 for c in consultations if c.date == UNKNOWN_DATE)
    logger.info(
        "Consultations summary: %d total (%d with known dates, %d with unknown dates)",
        len(consultations),
        len(consultations) - unknown,
        unknown,
    )
    for entry_type, count in entry_type_counts(consultations).most_common():
        logger.info("  - %s: %d", entry_type, count)


def render_skipped_report(skipped: Sequence[SkippedDocument], *, generated_at: Optional[datetime] = None) -> str:
    generated_at = generated_at or datetime.now().astimezone()
    lines = [
        "NHS Records Download - Skipped Documents Report",
        f"Generated: {generated_at.isoformat()}",
        "=" * 60,
        f"Total skipped: {len(skipped)}",
        "",
    ]

    by_reason: dict[str, list[SkippedDocument]] = {}
    for doc in skipped:
        by_reason.setdefault(doc.reason, []).append(doc)

    for reason, docs in by_reason.items():
        lines.append("")
        lines.append(f"{reason} ({len(docs)} documents):")
        lines.append("-" * 40)
        for i, doc in enumerate(docs, start=1):
            lines.append(f"{i}. {doc.title}")
            if doc.details:
                lines.append(f"   Details: {doc.details}")

    return "\n".join(lines) + "\n"


def save_skipped_report(skipped: Sequence[SkippedDocument], download_dir: Path) -> Path:
    path = Path(download_dir) / SKIPPED_REPORT_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_skipped_report(skipped), encoding="utf-8")

    logger.warning("Skipped %d document(s); see %s", len(skipped), path)
    for doc in skipped:
        logger.info("  - [%s] %s", doc.reason, doc.title)
    return path

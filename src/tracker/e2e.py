"""E2E test results published as a static ``apps.json`` file.

CI writes an ``e2eTests`` block per app into the published file; this module
reads that file and builds the summary shown on the tests page.  Apps without
a ``checks`` block are treated as unchecked.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from src.tracker.backends.github_file import doc_app_to_record, parse_document
from src.tracker.base import AppRecord, RecordNotFoundError, RecordValidationError

logger = logging.getLogger("releaseboard.tracker.e2e")


@dataclass
class E2ESummary:
    """Aggregated e2e results across all apps.

    Attributes:
        apps_with_tests:    Apps that have an e2e run, in file order.
        apps_without_tests: Apps with no e2e run yet.
        total_tests:        Sum of ``total`` across tested apps.
        total_passed:       Sum of ``passed``.
        total_failed:       Sum of ``failed``.
    """

    apps_with_tests: list[AppRecord] = field(default_factory=list)
    apps_without_tests: list[AppRecord] = field(default_factory=list)
    total_tests: int = 0
    total_passed: int = 0
    total_failed: int = 0

    @property
    def app_count(self) -> int:
        return len(self.apps_with_tests) + len(self.apps_without_tests)

    @property
    def tested_count(self) -> int:
        return len(self.apps_with_tests)


def summarize(records: list[AppRecord]) -> E2ESummary:
    summary = E2ESummary()
    for record in records:
        if record.e2e_tests is None:
            summary.apps_without_tests.append(record)
            continue
        summary.apps_with_tests.append(record)
        summary.total_tests += record.e2e_tests.total
        summary.total_passed += record.e2e_tests.passed
        summary.total_failed += record.e2e_tests.failed
    return summary


def load_e2e_results(path: str | Path) -> E2ESummary:
    """Read the published results file and summarize it.

    Raises:
        RecordNotFoundError:   The file does not exist.
        RecordValidationError: The file is not a valid apps document.
    """
    target = Path(path)
    if not target.exists():
        raise RecordNotFoundError(f"E2E results file not found: {target}")
    try:
        text = target.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise RecordValidationError(f"E2E results file is not UTF-8: {target}") from exc
    document = parse_document(text)
    summary = summarize([doc_app_to_record(app) for app in document.apps])
    logger.debug(
        "Loaded e2e results for %d/%d apps from %s",
        summary.tested_count, summary.app_count, target,
    )
    return summary

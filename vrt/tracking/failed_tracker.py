"""Remembers failing (scenario, viewport) pairs so they can be re-run."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from vrt.models.test_result import FailedTest, FailedTestsFile

logger = logging.getLogger(__name__)

DEFAULT_FAILED_FILE = ".vrt-failed.json"


class FailedTestTracker:
    def __init__(self, path: str | Path = DEFAULT_FAILED_FILE):
        self.path = Path(path)

    def save(self, tests: list[FailedTest]) -> None:
        data = FailedTestsFile(
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            tests=tests,
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(data.model_dump(by_alias=True), f, indent=2)
        logger.debug("Saved %d failed test(s) to %s", len(tests), self.path)

    def load(self) -> list[FailedTest]:
        """Recorded failures, or an empty list if the file is missing or unreadable."""
        if not self.path.is_file():
            return []
        try:
            with open(self.path, encoding="utf-8") as f:
                data = FailedTestsFile.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            logger.debug("Ignoring unreadable failed-tests file %s: %s", self.path, e)
            return []
        return data.tests

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)

    def has_failed_tests(self) -> bool:
        return len(self.load()) > 0

    def failed_scenario_ids(self) -> list[str]:
        """Unique scenario ids, in first-seen order."""
        return list(dict.fromkeys(t.scenario_id for t in self.load()))

    def failed_pairs(self) -> set[tuple[str, str]]:
        return {(t.scenario_id, t.viewport) for t in self.load()}

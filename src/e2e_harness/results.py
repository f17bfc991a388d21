"""
Test result log

Results are appended as JSON lines to ``<pillar>-<environment>-<date>.jsonl``
under the results directory, with ``index.json`` pointing at the latest file
per pillar/environment.
"""

import json
import logging
import re
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional

from pydantic import BaseModel, Field, ValidationError

from e2e_harness.types import Pillar, ResultStatus, TestResult
from e2e_harness.utils import atomic_write_text

logger = logging.getLogger(__name__)

INDEX_FILE = "index.json"

_FILENAME_RE = re.compile(r"^(?P<pillar>[a-z]+)-(?P<environment>.+)-(?P<date>\d{4}-\d{2}-\d{2})\.jsonl$")


class QueryFilters(BaseModel):
    pillar: Optional[Pillar] = None
    environment: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    status: Optional[ResultStatus] = None
    user: Optional[str] = None


class TestSummary(BaseModel):
    __test__ = False

    pillar: Pillar
    environment: str
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    duration: float = 0.0
    pass_rate: float = Field(0.0, alias="passRate")

    class Config:
        populate_by_name = True


class FlakyTest(BaseModel):
    test: str
    runs: int
    failures: int
    flaky_rate: float = Field(alias="flakyRate")

    class Config:
        populate_by_name = True


class TrendPoint(BaseModel):
    date: str
    pass_rate: float = Field(alias="passRate")
    avg_duration: float = Field(alias="avgDuration")
    total_tests: int = Field(alias="totalTests")

    class Config:
        populate_by_name = True


def result_filename(pillar: str, environment: str, date: str) -> str:
    return f"{pillar}-{environment}-{date}.jsonl"


def _pass_rate(passed: int, total: int) -> float:
    return (passed / total) * 100 if total else 0.0


def _since(days: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


class ResultWriter:
    """Appends test results to the JSONL log"""

    def __init__(self, results_dir: Path | str = "results"):
        self.results_dir = Path(results_dir).resolve()

    def path_for(self, result: TestResult) -> Path:
        date = result.parsed_timestamp().date().isoformat()
        return self.results_dir / result_filename(result.pillar, result.environment, date)

    def write_result(self, result: TestResult) -> Path:
        """Append a single result"""
        return self.write_results([result])[0]

    def write_results(self, results: Iterable[TestResult]) -> list[Path]:
        """
        Append results, grouped into one file per pillar/environment/date.

        Returns:
            Paths written, in first-seen order
        """
        grouped: dict[Path, list[TestResult]] = defaultdict(list)
        for result in results:
            grouped[self.path_for(result)].append(result)
        if not grouped:
            return []

        self.results_dir.mkdir(parents=True, exist_ok=True)
        for path, group in grouped.items():
            lines = "".join(r.model_dump_json(exclude_none=True) + "\n" for r in group)
            with open(path, "a", encoding="utf-8") as f:
                f.write(lines)
            logger.debug(f"Appended {len(group)} result(s) to {path.name}")
            self._update_index(group[0].pillar, group[0].environment, path)

        return list(grouped)

    def _update_index(self, pillar: str, environment: str, path: Path) -> None:
        index_path = self.results_dir / INDEX_FILE
        index: dict = {}
        if index_path.exists():
            try:
                index = json.loads(index_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Rebuilding unreadable results index {index_path}: {e}")

        now = datetime.now(timezone.utc)
        index[f"{pillar}:{environment}"] = {
            "pillar": pillar,
            "environment": environment,
            "lastUpdated": now.isoformat(),
            "latestFile": path.name,
            "date": now.date().isoformat(),
        }
        try:
            atomic_write_text(index_path, json.dumps(index, indent=2))
        except OSError as e:
            logger.warning(f"Failed to update results index: {e}")


class ResultReader:
    """Queries and aggregates the JSONL result log"""

    def __init__(self, results_dir: Path | str = "results"):
        self.results_dir = Path(results_dir).resolve()

    def _relevant_files(self, filters: QueryFilters) -> list[Path]:
        if not self.results_dir.is_dir():
            return []

        files = []
        for path in sorted(self.results_dir.glob("*.jsonl")):
            match = _FILENAME_RE.match(path.name)
            if match is None:
                continue
            if filters.pillar and match["pillar"] != filters.pillar:
                continue
            if filters.environment and match["environment"] != filters.environment:
                continue
            files.append(path)
        return files

    @staticmethod
    def _read_file(path: Path) -> list[TestResult]:
        results = []
        for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
            if not line.strip():
                continue
            try:
                results.append(TestResult.model_validate_json(line))
            except ValidationError:
                logger.warning(f"Skipping unparseable line {lineno} in {path.name}")
        return results

    @staticmethod
    def _matches(result: TestResult, filters: QueryFilters) -> bool:
        if filters.status and result.status != filters.status:
            return False
        if filters.user and result.user != filters.user:
            return False
        if filters.date_from or filters.date_to:
            ts = result.parsed_timestamp()
            if filters.date_from and ts < _aware(filters.date_from):
                return False
            if filters.date_to and ts > _aware(filters.date_to):
                return False
        return True

    def query(self, filters: Optional[QueryFilters] = None, **kwargs) -> list[TestResult]:
        """
        Results matching the filters, newest first.

        Filters may be passed as a QueryFilters or as keyword arguments.
        """
        filters = filters or QueryFilters(**kwargs)
        results = []
        for path in self._relevant_files(filters):
            try:
                file_results = self._read_file(path)
            except OSError as e:
                logger.warning(f"Failed to read {path}: {e}")
                continue
            results.extend(r for r in file_results if self._matches(r, filters))

        results.sort(key=lambda r: r.parsed_timestamp(), reverse=True)
        return results

    def summary(self, pillar: Pillar, environment: str, days: int = 7) -> TestSummary:
        results = self.query(pillar=pillar, environment=environment, date_from=_since(days))
        passed = sum(1 for r in results if r.status == "passed")
        return TestSummary(
            pillar=pillar,
            environment=environment,
            total=len(results),
            passed=passed,
            failed=sum(1 for r in results if r.status == "failed"),
            skipped=sum(1 for r in results if r.status == "skipped"),
            duration=sum(r.duration for r in results),
            pass_rate=_pass_rate(passed, len(results)),
        )

    def flaky_tests(self, pillar: Pillar, days: int = 30, min_runs: int = 3) -> list[FlakyTest]:
        """Tests with both passes and failures over at least min_runs runs, most flaky first"""
        by_test: dict[str, list[TestResult]] = defaultdict(list)
        for r in self.query(pillar=pillar, date_from=_since(days)):
            by_test[r.test].append(r)

        flaky = []
        for test, runs in by_test.items():
            failures = sum(1 for r in runs if r.status == "failed")
            if 0 < failures < len(runs) and len(runs) >= min_runs:
                flaky.append(
                    FlakyTest(
                        test=test,
                        runs=len(runs),
                        failures=failures,
                        flaky_rate=failures / len(runs) * 100,
                    )
                )
        flaky.sort(key=lambda f: f.flaky_rate, reverse=True)
        return flaky

    def trends(self, pillar: Pillar, environment: str, days: int = 30) -> list[TrendPoint]:
        """Per-day pass rate and average duration, oldest first"""
        by_day: dict[str, list[TestResult]] = defaultdict(list)
        for r in self.query(pillar=pillar, environment=environment, date_from=_since(days)):
            by_day[r.parsed_timestamp().date().isoformat()].append(r)

        points = []
        for day in sorted(by_day):
            runs = by_day[day]
            passed = sum(1 for r in runs if r.status == "passed")
            points.append(
                TrendPoint(
                    date=day,
                    pass_rate=_pass_rate(passed, len(runs)),
                    avg_duration=sum(r.duration for r in runs) / len(runs),
                    total_tests=len(runs),
                )
            )
        return points


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

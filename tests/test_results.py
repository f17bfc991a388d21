import json
from datetime import datetime, timedelta, timezone

import pytest

from e2e_harness.results import QueryFilters, ResultReader, ResultWriter
from e2e_harness.types import TestResult


def _result(test="smoke.spec › loads", status="passed", days_ago=0, environment="local", pillar="synthetic", duration=100.0, user="ci"):
    ts = datetime.now(timezone.utc) - timedelta(days=days_ago)
    return TestResult(
        timestamp=ts.isoformat(),
        pillar=pillar,
        environment=environment,
        test=test,
        status=status,
        duration=duration,
        user=user,
    )


@pytest.fixture
def results_dir(tmp_path):
    return tmp_path / "results"


def test_write_result_appends_json_lines(results_dir):
    writer = ResultWriter(results_dir)
    first = _result()
    path = writer.write_result(first)
    writer.write_result(_result(status="failed"))

    today = datetime.now(timezone.utc).date().isoformat()
    assert path.name == f"synthetic-local-{today}.jsonl"
    lines = path.read_text().splitlines()
    assert len(lines) == 2
    assert json.loads(lines[0])["status"] == "passed"
    assert "error" not in json.loads(lines[0])


def test_write_results_groups_by_pillar_and_environment(results_dir):
    writer = ResultWriter(results_dir)
    paths = writer.write_results(
        [
            _result(),
            _result(environment="staging"),
            _result(pillar="integration"),
            _result(test="other"),
        ]
    )

    assert len(paths) == 3
    index = json.loads((results_dir / "index.json").read_text())
    assert set(index) == {"synthetic:local", "synthetic:staging", "integration:local"}
    assert index["synthetic:local"]["latestFile"].startswith("synthetic-local-")


def test_write_results_empty(results_dir):
    assert ResultWriter(results_dir).write_results([]) == []
    assert not results_dir.exists()


def test_query_filters_and_order(results_dir):
    writer = ResultWriter(results_dir)
    writer.write_results(
        [
            _result(test="old", days_ago=3),
            _result(test="new"),
            _result(test="failed", status="failed", days_ago=1),
            _result(test="staging", environment="staging"),
            _result(test="bob", user="bob"),
        ]
    )
    reader = ResultReader(results_dir)

    local = reader.query(pillar="synthetic", environment="local")
    assert [r.test for r in local][-1] == "old"
    assert {r.test for r in local} == {"old", "new", "failed", "bob"}

    assert [r.test for r in reader.query(status="failed")] == ["failed"]
    assert [r.test for r in reader.query(user="bob")] == ["bob"]

    recent = reader.query(QueryFilters(date_from=datetime.now(timezone.utc) - timedelta(days=2)))
    assert "old" not in {r.test for r in recent}


def test_unreadable_lines_are_skipped(results_dir):
    path = ResultWriter(results_dir).write_result(_result())
    with open(path, "a") as f:
        f.write("{broken\n\n")

    assert len(ResultReader(results_dir).query()) == 1


def test_query_missing_directory(tmp_path):
    assert ResultReader(tmp_path / "nothing").query() == []


def test_summary(results_dir):
    ResultWriter(results_dir).write_results(
        [
            _result(status="passed", duration=100),
            _result(status="passed", duration=200),
            _result(status="failed", duration=300),
            _result(status="skipped", duration=0),
            _result(status="failed", days_ago=30),
        ]
    )

    summary = ResultReader(results_dir).summary("synthetic", "local", days=7)

    assert summary.total == 4
    assert summary.passed == 2
    assert summary.failed == 1
    assert summary.skipped == 1
    assert summary.duration == 600
    assert summary.pass_rate == 50.0


def test_flaky_tests(results_dir):
    results = []
    results += [_result(test="flaky", status=s) for s in ("passed", "failed", "passed", "passed")]
    results += [_result(test="very-flaky", status=s) for s in ("failed", "failed", "passed")]
    results += [_result(test="always-red", status="failed") for _ in range(3)]
    results += [_result(test="rare", status=s) for s in ("passed", "failed")]
    ResultWriter(results_dir).write_results(results)

    flaky = ResultReader(results_dir).flaky_tests("synthetic")

    assert [f.test for f in flaky] == ["very-flaky", "flaky"]
    assert flaky[1].runs == 4
    assert flaky[1].failures == 1
    assert flaky[1].flaky_rate == 25.0


def test_trends(results_dir):
    ResultWriter(results_dir).write_results(
        [
            _result(days_ago=2, status="passed", duration=100),
            _result(days_ago=2, status="failed", duration=300),
            _result(days_ago=0, status="passed", duration=50),
        ]
    )

    trends = ResultReader(results_dir).trends("synthetic", "local")

    assert len(trends) == 2
    assert trends[0].date < trends[1].date
    assert trends[0].pass_rate == 50.0
    assert trends[0].avg_duration == 200.0
    assert trends[0].total_tests == 2
    assert trends[1].pass_rate == 100.0

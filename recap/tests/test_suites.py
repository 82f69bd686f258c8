"""Runs every harness suite under pytest."""
import asyncio

import pytest

from recap.tests.harness import TestHarness, _suite_classes


@pytest.mark.parametrize("suite_id", sorted(_suite_classes()))
def test_suite(suite_id, tmp_path):
    harness = TestHarness(str(tmp_path))
    result, log_file = asyncio.run(harness.run_suite_result(suite_id))

    problems = [f"{r.test_id} {r.name}: {r.message}\n{r.error or ''}" for r in result.problems()]
    assert result.ok, "\n\n".join(problems) + f"\n(log: {log_file})"
    assert result.passed + result.skipped == len(result.results) > 0


def test_available_suites_describe_their_tests(tmp_path):
    suites = TestHarness(str(tmp_path)).get_available_suites()
    assert {s["suite_id"] for s in suites} == set(_suite_classes())
    assert all(s["test_count"] == len(s["tests"]) > 0 for s in suites)

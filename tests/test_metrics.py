"""Tests for metrics.py: get_metrics and timestamp rewriting."""

import logging
import re
from urllib.parse import parse_qs, urlparse

import pytest
import requests_mock as requests_mock_lib

from sonar_coverage import metrics
from sonar_coverage.client import SonarClient
from sonar_coverage.metrics import get_metrics, local_utc_offset, to_offset_time

BASE_URL = "https://sonar.example.com"
HISTORY_URL = f"{BASE_URL}/api/measures/search_history"
START = "2018-05-08T00:09:53.123Z"
END = "2018-05-08T00:19:53.456Z"


# --------------------------------------------------------------------------- #
# Helpers
# --------------------------------------------------------------------------- #

@pytest.fixture
def client():
    return SonarClient(BASE_URL, "admin-token")


@pytest.fixture(autouse=True)
def fixed_offset(monkeypatch):
    monkeypatch.setattr(metrics, "local_utc_offset", lambda: "-0700")


def _history(**values) -> dict:
    return {
        "paging": {"pageIndex": 1, "pageSize": 1, "total": len(values)},
        "measures": [
            {"metric": k, "history": [{"date": "2018-05-08T00:09:53+0000", "value": str(v)}]}
            for k, v in values.items()
        ],
    }


def _query(request) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(request.url).query).items()}


# --------------------------------------------------------------------------- #
# Timestamps
# --------------------------------------------------------------------------- #

def test_local_utc_offset_format():
    # bound at import time, unaffected by the fixed_offset fixture
    assert re.fullmatch(r"[+-]\d{4}", local_utc_offset())


def test_to_offset_time_replaces_millis_and_zulu():
    assert to_offset_time(START, "-0700") == "2018-05-08T00:09:53-0700"


def test_to_offset_time_leaves_offset_timestamps_alone():
    assert to_offset_time("2017-10-19T13:00:00+0200", "-0700") == "2017-10-19T13:00:00+0200"


# --------------------------------------------------------------------------- #
# Query
# --------------------------------------------------------------------------- #

class TestQuery:
    def test_query_parameters(self, client):
        with requests_mock_lib.Mocker() as m:
            m.get(HISTORY_URL, json=_history())
            get_metrics(client, "job:1", START, END)
            query = _query(m.last_request)
        assert query == {
            "component": "job:1",
            "metrics": "tests,test_errors,test_failures,coverage",
            "from": "2018-05-08T00:09:53-0700",
            "to": "2018-05-08T00:19:53-0700",
            "ps": "1",
        }

    def test_pull_request_added_in_enterprise_mode(self, client):
        with requests_mock_lib.Mocker() as m:
            m.get(HISTORY_URL, json=_history())
            get_metrics(client, "pipeline:7", START, END, pr_num=12, enterprise=True)
            assert _query(m.last_request)["pullRequest"] == "12"

    def test_pull_request_ignored_without_enterprise(self, client):
        with requests_mock_lib.Mocker() as m:
            m.get(HISTORY_URL, json=_history())
            get_metrics(client, "job:1", START, END, pr_num=12)
            assert "pullRequest" not in _query(m.last_request)


# --------------------------------------------------------------------------- #
# Parsing
# --------------------------------------------------------------------------- #

class TestParsing:
    def test_coverage_and_tests(self, client):
        with requests_mock_lib.Mocker() as m:
            m.get(HISTORY_URL, json=_history(coverage="98.8", tests=10, test_errors=2, test_failures=1))
            result = get_metrics(client, "job:1", START, END)
        assert result == {"coverage": "98.8", "tests": "7/10"}

    def test_missing_errors_and_failures_default_to_zero(self, client):
        with requests_mock_lib.Mocker() as m:
            m.get(HISTORY_URL, json=_history(tests=4))
            result = get_metrics(client, "job:1", START, END)
        assert result == {"coverage": "N/A", "tests": "4/4"}

    def test_empty_history_is_not_available(self, client):
        body = {"measures": [{"metric": "coverage", "history": []}, {"metric": "tests", "history": []}]}
        with requests_mock_lib.Mocker() as m:
            m.get(HISTORY_URL, json=body)
            result = get_metrics(client, "job:1", START, END)
        assert result == {"coverage": "N/A", "tests": "N/A"}

    def test_non_numeric_tests_is_not_available(self, client):
        with requests_mock_lib.Mocker() as m:
            m.get(HISTORY_URL, json=_history(coverage="50.0", tests="abc"))
            result = get_metrics(client, "job:1", START, END)
        assert result == {"coverage": "50.0", "tests": "N/A"}


# --------------------------------------------------------------------------- #
# Failures
# --------------------------------------------------------------------------- #

class TestFailures:
    def test_unknown_component_is_silent(self, client, caplog):
        with requests_mock_lib.Mocker() as m:
            m.get(HISTORY_URL, status_code=404,
                  json={"errors": [{"msg": "Component key 'job:1' not found"}]})
            with caplog.at_level(logging.ERROR):
                result = get_metrics(client, "job:1", START, END)
        assert result == {"coverage": "N/A", "tests": "N/A"}
        assert [r for r in caplog.records if r.levelno >= logging.ERROR] == []

    def test_other_404_is_logged_once(self, client):
        errors = []

        class Recorder:
            def error(self, msg, *args):
                errors.append(msg % args)

        with requests_mock_lib.Mocker() as m:
            m.get(HISTORY_URL, status_code=404, json={"errors": [{"msg": "Not Found"}]})
            result = get_metrics(client, "job:1", START, END, log=Recorder())
        assert result == {"coverage": "N/A", "tests": "N/A"}
        assert errors == ["Failed to get coverage for job:1: Not Found"]

    def test_server_error_degrades_to_not_available(self, client, caplog):
        with requests_mock_lib.Mocker() as m:
            m.get(HISTORY_URL, status_code=500, text="boom")
            with caplog.at_level(logging.ERROR, logger="sonar_coverage.metrics"):
                result = get_metrics(client, "job:1", START, END)
        assert result == {"coverage": "N/A", "tests": "N/A"}
        assert len([r for r in caplog.records if r.levelno == logging.ERROR]) == 1

    def test_html_body_degrades_to_not_available(self, client, caplog):
        with requests_mock_lib.Mocker() as m:
            m.get(HISTORY_URL, text="<html>proxy</html>")
            with caplog.at_level(logging.ERROR, logger="sonar_coverage.metrics"):
                result = get_metrics(client, "job:1", START, END)
        assert result == {"coverage": "N/A", "tests": "N/A"}
        assert len([r for r in caplog.records if r.levelno == logging.ERROR]) == 1

    def test_list_body_degrades_to_not_available(self, client, caplog):
        with requests_mock_lib.Mocker() as m:
            m.get(HISTORY_URL, json=[])
            with caplog.at_level(logging.ERROR, logger="sonar_coverage.metrics"):
                result = get_metrics(client, "job:1", START, END)
        assert result == {"coverage": "N/A", "tests": "N/A"}
        assert len([r for r in caplog.records if r.levelno == logging.ERROR]) == 1

    def test_malformed_history_degrades_to_not_available(self, client):
        with requests_mock_lib.Mocker() as m:
            m.get(HISTORY_URL, json={"measures": [{"metric": "coverage", "history": "98.8"}]})
            result = get_metrics(client, "job:1", START, END)
        assert result == {"coverage": "N/A", "tests": "N/A"}

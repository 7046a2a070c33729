"""Coverage and test summary for a finished job.

Functions:
    get_metrics(client, project_key, start_time, end_time, ...) -> dict

Queries ``/api/measures/search_history`` for the four metrics below and
returns ``{"coverage": ..., "tests": ...}``; either value is ``"N/A"`` when
SonarQube has nothing to report. Never raises.
"""

import logging
import re
from datetime import datetime
from typing import Any

from sonar_coverage.client import NotFoundError, SonarClientError

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"

#: Metric keys fetched from the history endpoint
_HISTORY_METRICS: list[str] = [
    "tests",
    "test_errors",
    "test_failures",
    "coverage",
]

#: A project that never received an analysis is reported as an unknown component
_COMPONENT_NOT_FOUND_RE = re.compile(r"Component key '.*' not found")

#: ISO-8601 fractional seconds plus the UTC designator, e.g. ``.123Z``
_ZULU_SUFFIX_RE = re.compile(r"(\.\d+)?Z$")


# --------------------------------------------------------------------------- #
# Helpers
# --------------------------------------------------------------------------- #

def local_utc_offset() -> str:
    """Return this machine's current UTC offset as ``±HHMM``."""
    return datetime.now().astimezone().strftime("%z")


def to_offset_time(timestamp: str, offset: str) -> str:
    """Rewrite ``2018-05-08T00:09:53.123Z`` as ``2018-05-08T00:09:53-0700``.

    The history endpoint rejects the ``Z`` form. The wall-clock part is kept
    as-is and only the suffix changes; timestamps without a ``Z`` suffix are
    returned untouched.
    """
    return _ZULU_SUFFIX_RE.sub(offset, timestamp)


def _latest_value(measure: dict | None) -> Any:
    if not measure:
        return None
    history = measure.get("history") or []
    if not history:
        return None
    latest = history[-1]
    return latest.get("value") if isinstance(latest, dict) else None


def _to_number(value: Any) -> int | float | None:
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return int(f) if f == int(f) else f


def _format_tests(measures: dict[str, dict]) -> str:
    total = _to_number(_latest_value(measures.get("tests")))
    if total is None:
        return NOT_AVAILABLE
    errors = _to_number(_latest_value(measures.get("test_errors"))) or 0
    failures = _to_number(_latest_value(measures.get("test_failures"))) or 0
    return f"{total - errors - failures}/{total}"


def _index_measures(data: Any) -> dict[str, dict] | None:
    """Index ``measures`` by metric key, or None when the body is malformed."""
    if not isinstance(data, dict):
        return None
    raw = data.get("measures", [])
    if not isinstance(raw, list):
        return None

    measures: dict[str, dict] = {}
    for m in raw:
        if not isinstance(m, dict) or "metric" not in m:
            continue
        if not isinstance(m.get("history", []), list):
            return None
        measures[m["metric"]] = m
    return measures


def _not_available() -> dict:
    return {"coverage": NOT_AVAILABLE, "tests": NOT_AVAILABLE}


# --------------------------------------------------------------------------- #
# Public API
# --------------------------------------------------------------------------- #

def get_metrics(
    client,
    project_key: str,
    start_time: str,
    end_time: str,
    *,
    pr_num: Any = None,
    enterprise: bool = False,
    log: logging.Logger | None = None,
) -> dict:
    """Return the most recent coverage and test results for *project_key*.

    Only one history entry per metric is requested (``ps=1``). In enterprise
    mode with a PR number the PR's own analysis is queried.

    A 404 for an unknown component means nothing was ever uploaded and is not
    an error; every other failure is logged and also degrades to ``N/A``.
    """
    log = log or logger
    offset = local_utc_offset()
    params: dict[str, Any] = {
        "component": project_key,
        "metrics": ",".join(_HISTORY_METRICS),
        "from": to_offset_time(start_time, offset),
        "to": to_offset_time(end_time, offset),
        "ps": 1,
    }
    if enterprise and pr_num is not None:
        params["pullRequest"] = pr_num

    try:
        data = client.get("/api/measures/search_history", params=params)
    except SonarClientError as exc:
        never_analysed = isinstance(exc, NotFoundError) and _COMPONENT_NOT_FOUND_RE.search(exc.message)
        if not never_analysed:
            log.error("Failed to get coverage for %s: %s", project_key, exc.message)
        return _not_available()

    measures = _index_measures(data)
    if measures is None:
        log.error("Failed to get coverage for %s: unexpected response %.200r", project_key, data)
        return _not_available()
    coverage = _latest_value(measures.get("coverage"))

    return {
        "coverage": NOT_AVAILABLE if coverage is None else str(coverage),
        "tests": _format_tests(measures),
    }

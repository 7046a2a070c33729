"""Map a build's identity onto a SonarQube project.

Usage:
    identity   = BuildIdentity.from_mapping({"jobId": 1, "jobName": "main", ...})
    descriptor = resolve(identity, "https://sonar.example.com", enterprise=False)
    descriptor.project_key   # "job:1"

No network access happens here; ``resolve`` is a pure function of its inputs.
"""

import re
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import quote

JOB_SCOPE = "job"
PIPELINE_SCOPE = "pipeline"

#: Placeholder rendered for a missing id or name
UNDEFINED = "undefined"

#: PR jobs are named ``PR-<number>`` or ``PR-<number>:<original job name>``
_PR_JOB_NAME_RE = re.compile(r"^PR-(\d+)(?::(.+))?$")


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BuildIdentity:
    job_id: Any = None
    job_name: str | None = None
    pipeline_id: Any = None
    pipeline_name: str | None = None
    pr_num: Any = None
    pr_parent_job_id: Any = None
    scope: str | None = None
    project_key: str | None = None
    project_name: str | None = None
    username: str | None = None
    start_time: str | None = None
    end_time: str | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "BuildIdentity":
        """Build an identity from a loose request payload.

        Both the camelCase keys sent by the Screwdriver API (``jobId``,
        ``prParentJobId``...) and the snake_case field names are accepted.
        ``coverageProjectKey`` is an alias of ``projectKey``.
        """
        values = {}
        for name, camel in _FIELD_ALIASES.items():
            if name in raw:
                values[name] = raw[name]
            elif camel in raw:
                values[name] = raw[camel]
        if values.get("project_key") is None and raw.get("coverageProjectKey"):
            values["project_key"] = raw["coverageProjectKey"]
        return cls(**values)


_FIELD_ALIASES = {
    "job_id": "jobId",
    "job_name": "jobName",
    "pipeline_id": "pipelineId",
    "pipeline_name": "pipelineName",
    "pr_num": "prNum",
    "pr_parent_job_id": "prParentJobId",
    "scope": "scope",
    "project_key": "projectKey",
    "project_name": "projectName",
    "username": "username",
    "start_time": "startTime",
    "end_time": "endTime",
}


@dataclass(frozen=True)
class ProjectDescriptor:
    project_key: str
    project_name: str
    username: str
    project_scope: str
    project_url: str


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def resolve(identity: BuildIdentity, sonar_host: str, enterprise: bool = False) -> ProjectDescriptor:
    """Compute the SonarQube project key, name and scanner username for a build.

    An explicit ``project_key`` (``<scope>:<id>``) wins over everything else
    so that a descriptor computed earlier, e.g. for a PR's parent job, is not
    re-derived. Otherwise the scope comes from the ``scope`` annotation, or
    defaults to ``pipeline`` in enterprise mode and ``job`` elsewhere.

    In enterprise mode a PR job (``PR-12:main``) is redirected onto its parent
    job's project so that coverage history accumulates in one place.
    """
    pipeline_name = _text(identity.pipeline_name)

    if identity.project_key:
        project_key = str(identity.project_key)
        scope, _, scope_id = project_key.partition(":")
        if scope == PIPELINE_SCOPE:
            project_name = pipeline_name
        else:
            project_name = f"{pipeline_name}:{_text(identity.job_name)}"
        username = f"user-{scope}-{scope_id}"
    else:
        scope = coverage_scope(identity.scope, enterprise)
        if scope == PIPELINE_SCOPE:
            scope_id = _text(identity.pipeline_id)
            project_name = pipeline_name
        else:
            job_id, job_name = identity.job_id, identity.job_name
            if enterprise and identity.pr_num is not None:
                job_id, job_name = _redirect_pr_job(identity)
            scope_id = _text(job_id)
            project_name = f"{pipeline_name}:{_text(job_name)}"
        project_key = f"{scope}:{scope_id}"
        username = f"user-{scope}-{scope_id}"

    return ProjectDescriptor(
        project_key=project_key,
        project_name=project_name,
        username=username,
        project_scope=scope,
        project_url=dashboard_url(sonar_host, project_key, identity.pr_num, enterprise),
    )


def coverage_scope(scope: str | None, enterprise: bool) -> str:
    """Return the annotated scope, or the deployment default when unset."""
    if scope and scope != UNDEFINED:
        return scope
    return PIPELINE_SCOPE if enterprise else JOB_SCOPE


def dashboard_url(sonar_host: str, project_key: str, pr_num: Any = None, enterprise: bool = False) -> str:
    """SonarQube dashboard URL for *project_key*, PR-specific in enterprise mode."""
    url = f"{sonar_host}/dashboard?id={quote(project_key, safe='')}"
    if enterprise and pr_num is not None:
        url += f"&pullRequest={pr_num}"
    return url


def is_complete(*values: Any) -> bool:
    """True when every value is present and none carries a missing placeholder."""
    return all(v and UNDEFINED not in str(v) for v in values)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _text(value: Any) -> str:
    return UNDEFINED if value is None else str(value)


def _redirect_pr_job(identity: BuildIdentity) -> tuple[Any, Any]:
    match = _PR_JOB_NAME_RE.match(str(identity.job_name or ""))
    if not match:
        return identity.job_id, identity.job_name

    job_id = identity.pr_parent_job_id if identity.pr_parent_job_id is not None else identity.job_id
    job_name = match.group(2) if match.group(2) else identity.job_name
    return job_id, job_name

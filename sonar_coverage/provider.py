"""SonarQube implementation of the Screwdriver coverage provider contract.

Usage:
    provider = SonarCoverage({"sdApiUrl": ..., "sdUiUrl": ..., "sonarHost": ..., "adminToken": ...})
    token    = provider.get_access_token({"jobId": 1, "jobName": "main", "pipelineName": "org/repo"})
    info     = provider.get_info({"jobId": 1, ..., "startTime": ..., "endTime": ...})
    command  = provider.get_upload_coverage_cmd()

All state lives on the instance, so adapters for different SonarQube hosts can
run side by side.
"""

import logging
import uuid
from pathlib import Path
from typing import Any, Mapping, Protocol, runtime_checkable
from urllib.parse import urlencode

from sonar_coverage.client import NotFoundError, SonarClient, SonarClientError
from sonar_coverage.config import Config
from sonar_coverage.metrics import get_metrics
from sonar_coverage.resolver import BuildIdentity, ProjectDescriptor, is_complete, resolve

logger = logging.getLogger(__name__)

COMMANDS_PATH = Path(__file__).with_name("commands.txt")

#: Placeholders in commands.txt, mapped to the Config field that fills them
_COMMAND_PLACEHOLDERS = {
    "$SD_SONAR_HOST": "sonar_host",
    "$SD_UI_URL": "sd_ui_url",
    "$SD_SONAR_ENTERPRISE": "sonar_enterprise",
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ProvisioningError(Exception):
    """Raised when a project, user, permission or token cannot be set up."""


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

@runtime_checkable
class CoverageProvider(Protocol):
    """What the CI system expects from a coverage backend."""

    def get_access_token(self, identity: Mapping[str, Any] | BuildIdentity) -> str: ...

    def get_info(self, identity: Mapping[str, Any] | BuildIdentity) -> dict: ...

    def get_upload_coverage_cmd(self, identity: Mapping[str, Any] | BuildIdentity | None = None) -> str: ...


def _is_conflict(exc: SonarClientError) -> bool:
    return exc.status_code == 400 and "already exists" in exc.message


def _as_identity(identity: Mapping[str, Any] | BuildIdentity | None) -> BuildIdentity:
    if isinstance(identity, BuildIdentity):
        return identity
    return BuildIdentity.from_mapping(identity or {})


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------

class SonarCoverage:
    """Coverage provider backed by a SonarQube server."""

    def __init__(
        self,
        config: Config | Mapping[str, Any],
        client: SonarClient | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.config = config if isinstance(config, Config) else Config.from_mapping(config)
        self.client = client or SonarClient(self.config.sonar_host, self.config.admin_token)
        self.log = log or logger
        self.auth_url = f"{self.config.sd_api_url}/v4/coverage/token"
        self.upload_commands = self._render_commands(COMMANDS_PATH.read_text(encoding="utf-8"))

    # ------------------------------------------------------------------
    # Coverage provider contract
    # ------------------------------------------------------------------

    def get_access_token(self, identity: Mapping[str, Any] | BuildIdentity) -> str:
        """Provision the project and its scanner user, then issue a token.

        Raises:
            ProvisioningError: any step other than the GitHub binding failed.
        """
        identity = _as_identity(identity)
        if is_complete(identity.username, identity.project_key, identity.project_name):
            username = identity.username
            project_key = identity.project_key
            project_name = identity.project_name
        else:
            descriptor = self.resolve(identity)
            username = descriptor.username
            project_key = descriptor.project_key
            project_name = descriptor.project_name

        password = str(uuid.uuid4())

        self.create_project(project_key, project_name)
        if self.config.sonar_enterprise:
            self.configure_git_app(project_key, project_name)
        self.create_user(username, password)
        self.grant_user_permission(username, project_key)
        return self.generate_token(username)

    def get_info(self, identity: Mapping[str, Any] | BuildIdentity) -> dict:
        """Build env vars for the job and, once it has finished, its coverage summary."""
        identity = _as_identity(identity)
        descriptor = self.resolve(identity)

        query = urlencode({
            "projectKey": descriptor.project_key,
            "projectName": descriptor.project_name,
            "username": descriptor.username,
            "scope": descriptor.project_scope,
        })
        info: dict[str, Any] = {
            "envVars": {
                "SD_SONAR_AUTH_URL": f"{self.auth_url}?{query}",
                "SD_SONAR_HOST": self.config.sonar_host,
                "SD_SONAR_ENTERPRISE": str(self.config.sonar_enterprise).lower(),
                "SD_SONAR_PROJECT_KEY": descriptor.project_key,
                "SD_SONAR_PROJECT_NAME": descriptor.project_name,
            }
        }

        if not (descriptor.project_key and identity.start_time and identity.end_time):
            return info

        metrics = get_metrics(
            self.client,
            descriptor.project_key,
            identity.start_time,
            identity.end_time,
            pr_num=identity.pr_num,
            enterprise=self.config.sonar_enterprise,
            log=self.log,
        )
        info.update(metrics)
        info["projectUrl"] = descriptor.project_url
        return info

    def get_upload_coverage_cmd(self, identity: Mapping[str, Any] | BuildIdentity | None = None) -> str:
        """Shell command that uploads coverage; the scanner step never fails the build."""
        return " && ".join(self.upload_commands)

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    def resolve(self, identity: BuildIdentity) -> ProjectDescriptor:
        return resolve(identity, self.config.sonar_host, self.config.sonar_enterprise)

    # ------------------------------------------------------------------
    # Provisioning steps
    # ------------------------------------------------------------------

    def create_project(self, project_key: str, project_name: str) -> dict:
        """Create the project; an existing project counts as success."""
        try:
            return self.client.post(
                "/api/projects/create", {"project": project_key, "name": project_name}
            )
        except SonarClientError as exc:
            if _is_conflict(exc):
                return {}
            raise ProvisioningError(
                f"Failed to create project {project_key}: {exc.message}"
            ) from exc

    def configure_git_app(self, project_key: str, project_name: str) -> None:
        """Bind the project to the GitHub app for PR decoration. Best-effort.

        An existing binding to another repository is left alone and only
        reported; the scan itself does not depend on the binding.
        """
        try:
            binding = self.client.get("/api/alm_settings/get_binding", {"project": project_key})
        except NotFoundError:
            binding = None
        except SonarClientError as exc:
            self.log.error("Failed to get GitHub binding for %s: %s", project_key, exc.message)
            return

        if binding:
            repository = binding.get("repository")
            if repository and repository != project_name:
                self.log.warning(
                    "Project %s is bound to repository %s, expected %s",
                    project_key, repository, project_name,
                )
            return

        if not is_complete(project_name):
            return

        try:
            self.client.post("/api/alm_settings/set_github_binding", {
                "almSetting": self.config.sonar_git_app_name,
                "project": project_key,
                "repository": project_name,
                "summaryCommentEnabled": "true",
            })
        except SonarClientError as exc:
            self.log.error("Failed to bind %s to GitHub app: %s", project_key, exc.message)
            return
        self.log.info("Bound %s to GitHub repository %s", project_key, project_name)

    def create_user(self, username: str, password: str) -> dict:
        """Create the scanner user; an existing user counts as success."""
        try:
            return self.client.post(
                "/api/users/create",
                {"login": username, "name": username, "password": password},
            )
        except SonarClientError as exc:
            if _is_conflict(exc):
                return {}
            raise ProvisioningError(
                f"Failed to create user {username}: {exc.message}"
            ) from exc

    def grant_user_permission(self, username: str, project_key: str) -> dict:
        # Granting an already granted permission is a 204 upstream
        try:
            return self.client.post(
                "/api/permissions/add_user",
                {"login": username, "permission": "scan", "projectKey": project_key},
            )
        except SonarClientError as exc:
            raise ProvisioningError(
                f"Failed to grant user {username} permission: {exc.message}"
            ) from exc

    def generate_token(self, username: str) -> str:
        """Issue a new token; a random name keeps repeated calls from colliding."""
        try:
            data = self.client.post(
                "/api/user_tokens/generate", {"login": username, "name": str(uuid.uuid4())}
            )
        except SonarClientError as exc:
            raise ProvisioningError(
                f"Failed to generate user {username} token: {exc.message}"
            ) from exc
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise ProvisioningError(
                f"Failed to generate user {username} token: response carried no token"
            )
        return token

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _render_commands(self, template: str) -> list[str]:
        for placeholder, field_name in _COMMAND_PLACEHOLDERS.items():
            value = getattr(self.config, field_name)
            if isinstance(value, bool):
                value = str(value).lower()
            template = template.replace(placeholder, value)

        lines = [line.strip() for line in template.strip().splitlines() if line.strip()]
        lines[-1] += " || true"
        return lines

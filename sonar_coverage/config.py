"""Configuration loading and validation.

Usage:
    config = load("sonar-coverage.yaml")                 # raises ConfigError on bad config
    config = Config.from_mapping({"sdApiUrl": ..., ...})  # plugin-style dict
    generate_template("sonar-coverage.yaml")             # writes example file to disk
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml

DEFAULT_GIT_APP_NAME = "Screwdriver Sonar PR Checks"

_TRUE_VALUES = {"1", "true", "yes", "on"}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigError(Exception):
    """Raised when the configuration is missing or invalid."""


# ---------------------------------------------------------------------------
# Config dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Config:
    sd_api_url: str
    sd_ui_url: str
    sonar_host: str
    admin_token: str
    sonar_enterprise: bool = False
    sonar_git_app_name: str = DEFAULT_GIT_APP_NAME

    def __post_init__(self) -> None:
        for name in ("sd_api_url", "sd_ui_url", "sonar_host"):
            value = getattr(self, name)
            if isinstance(value, str):
                object.__setattr__(self, name, value.strip().rstrip("/"))
        _validate(self)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "Config":
        """Build a Config from a flat mapping.

        Accepts the snake_case field names as well as the camelCase keys the
        Screwdriver API passes to coverage plugins (``sdApiUrl``, ``sonarHost``...).
        """
        def pick(snake: str, camel: str, default: Any = None) -> Any:
            if snake in raw:
                return raw[snake]
            return raw.get(camel, default)

        enterprise = pick("sonar_enterprise", "sonarEnterprise", False)
        git_app = pick("sonar_git_app_name", "sonarGitAppName") or DEFAULT_GIT_APP_NAME
        return cls(
            sd_api_url=pick("sd_api_url", "sdApiUrl", ""),
            sd_ui_url=pick("sd_ui_url", "sdUiUrl", ""),
            sonar_host=pick("sonar_host", "sonarHost", ""),
            admin_token=pick("admin_token", "adminToken", ""),
            sonar_enterprise=_as_bool(enterprise),
            sonar_git_app_name=git_app,
        )


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load(config_path: str = "sonar-coverage.yaml") -> Config:
    """Load and validate configuration from a YAML file.

    Environment variables SD_API_URL, SD_UI_URL, SONAR_HOST, SONAR_ADMIN_TOKEN
    and SONAR_ENTERPRISE override file values.

    Raises:
        ConfigError: if the file is missing, malformed, or required fields
                     are absent or invalid.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(
            f"Config file not found: '{config_path}'\n"
            "Run `sonar-coverage init` to generate a template."
        )

    try:
        with path.open(encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse '{config_path}': {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"'{config_path}' must be a YAML mapping at the top level.")

    screwdriver = raw.get("screwdriver") or {}
    sonar = raw.get("sonar") or {}

    enterprise = os.environ.get("SONAR_ENTERPRISE")
    if enterprise is None:
        enterprise = sonar.get("enterprise", False)

    return Config(
        sd_api_url=str(os.environ.get("SD_API_URL") or screwdriver.get("api_url", "")),
        sd_ui_url=str(os.environ.get("SD_UI_URL") or screwdriver.get("ui_url", "")),
        sonar_host=str(os.environ.get("SONAR_HOST") or sonar.get("host", "")),
        admin_token=str(os.environ.get("SONAR_ADMIN_TOKEN") or sonar.get("admin_token", "")).strip(),
        sonar_enterprise=_as_bool(enterprise),
        sonar_git_app_name=str(sonar.get("git_app_name") or DEFAULT_GIT_APP_NAME),
    )


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def _is_uri(value: Any) -> bool:
    if not isinstance(value, str) or not value:
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _validate(config: Config) -> None:
    """Raise ConfigError if required fields are missing or malformed."""
    errors: list[str] = []

    for field_name, env in (
        ("sd_api_url", "SD_API_URL"),
        ("sd_ui_url", "SD_UI_URL"),
        ("sonar_host", "SONAR_HOST"),
    ):
        value = getattr(config, field_name)
        if not value:
            errors.append(f"  - '{field_name}' is missing (or set the {env} environment variable)")
        elif not _is_uri(value):
            errors.append(f"  - '{field_name}' must be a valid http(s) URI, got '{value}'")

    if not config.admin_token or not isinstance(config.admin_token, str):
        errors.append(
            "  - 'admin_token' is missing (or set the SONAR_ADMIN_TOKEN environment variable)"
        )
    if not isinstance(config.sonar_git_app_name, str) or not config.sonar_git_app_name:
        errors.append("  - 'sonar_git_app_name' must be a non-empty string")

    if errors:
        raise ConfigError("Invalid config for sonar coverage plugin:\n" + "\n".join(errors))


# ---------------------------------------------------------------------------
# Template generator (used by `init` command)
# ---------------------------------------------------------------------------

TEMPLATE = """\
screwdriver:
  api_url: "https://api.screwdriver.cd"
  ui_url: "https://cd.screwdriver.cd"

sonar:
  host: "https://sonar.screwdriver.cd"
  admin_token: "squ_xxxxxxxxxxxx"     # Generate at: <your-sonar-url>/account/security
  enterprise: false                   # pipeline scope, PR dashboards and GitHub binding
  git_app_name: "Screwdriver Sonar PR Checks"
"""


def generate_template(output_path: str = "sonar-coverage.yaml") -> None:
    """Write a template sonar-coverage.yaml to *output_path*.

    Raises:
        ConfigError: if the file already exists (to avoid overwriting secrets).
    """
    path = Path(output_path)
    if path.exists():
        raise ConfigError(
            f"'{output_path}' already exists. Remove it first or choose a different path."
        )
    path.write_text(TEMPLATE, encoding="utf-8")

"""Tests for sonar_coverage/cli.py"""

import json
import textwrap

import pytest
from click.testing import CliRunner

from sonar_coverage.cli import cli

SONAR = "https://sonar.screwdriver.cd"

CONFIG_YAML = """\
    screwdriver:
      api_url: "https://api.screwdriver.cd"
      ui_url: "https://cd.screwdriver.cd"
    sonar:
      host: "https://sonar.screwdriver.cd"
      admin_token: "squ_abc123"
    """


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    for name in ("SD_API_URL", "SD_UI_URL", "SONAR_HOST", "SONAR_ADMIN_TOKEN", "SONAR_ENTERPRISE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_path(tmp_path) -> str:
    p = tmp_path / "sonar-coverage.yaml"
    p.write_text(textwrap.dedent(CONFIG_YAML), encoding="utf-8")
    return str(p)


def _run(*args):
    return CliRunner().invoke(cli, list(args), obj={})


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

def test_init_writes_template(tmp_path):
    out = tmp_path / "generated.yaml"
    result = _run("init", "--output", str(out))
    assert result.exit_code == 0
    assert out.exists()


def test_init_refuses_to_overwrite(config_path):
    result = _run("init", "--output", config_path)
    assert result.exit_code == 1


# ---------------------------------------------------------------------------
# token
# ---------------------------------------------------------------------------

def test_token_prints_token(config_path, requests_mock):
    requests_mock.post(f"{SONAR}/api/projects/create", json={})
    requests_mock.post(f"{SONAR}/api/users/create", json={})
    requests_mock.post(f"{SONAR}/api/permissions/add_user", status_code=204)
    requests_mock.post(f"{SONAR}/api/user_tokens/generate", json={"token": "accesstoken"})

    result = _run("--config", config_path, "token",
                  "--job-id", "1", "--job-name", "main", "--pipeline-name", "d2lam/mytest")
    assert result.exit_code == 0
    assert result.output.strip() == "accesstoken"


def test_token_provisioning_error_exits_1(config_path, requests_mock):
    requests_mock.post(f"{SONAR}/api/projects/create", status_code=500,
                       json={"errors": [{"msg": "boom"}]})
    result = _run("--config", config_path, "token", "--job-id", "1")
    assert result.exit_code == 1


def test_missing_config_exits_1(tmp_path):
    result = _run("--config", str(tmp_path / "missing.yaml"), "token", "--job-id", "1")
    assert result.exit_code == 1


# ---------------------------------------------------------------------------
# info / upload-cmd
# ---------------------------------------------------------------------------

def test_info_prints_env_vars(config_path, requests_mock):
    result = _run("--config", config_path, "info",
                  "--job-id", "1", "--job-name", "main", "--pipeline-name", "d2lam/mytest")
    assert result.exit_code == 0
    info = json.loads(result.output)
    assert info["envVars"]["SD_SONAR_PROJECT_KEY"] == "job:1"
    assert requests_mock.call_count == 0


def test_upload_cmd(config_path):
    result = _run("--config", config_path, "upload-cmd")
    assert result.exit_code == 0
    assert result.output.strip().endswith("|| true")

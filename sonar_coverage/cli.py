"""CLI entry point: command definitions using Click.

Commands:
    init          Generate a template config file
    token         Provision the SonarQube project/user and print an access token
    info          Env vars and coverage summary for a job, as JSON
    upload-cmd    Shell command that uploads coverage from a build
"""

import json
import logging
import sys
from typing import Any

import click

from sonar_coverage import __version__


# ---------------------------------------------------------------------------
# Helpers shared by all data commands
# ---------------------------------------------------------------------------

def _make_provider(ctx: click.Context):
    """Load config and return a ready SonarCoverage. Exits on error."""
    from sonar_coverage.config import ConfigError, load
    from sonar_coverage.provider import SonarCoverage

    try:
        config = load(ctx.obj["config_path"])
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)

    logging.getLogger(__name__).debug("Using SonarQube server %s", config.sonar_host)
    return SonarCoverage(config)


def _emit_json(data: Any, ctx: click.Context) -> None:
    indent = 2 if ctx.obj["pretty"] else None
    click.echo(json.dumps(data, indent=indent, ensure_ascii=False))


def _identity(params: dict) -> dict:
    """Collect the identity options that were actually given."""
    return {k: v for k, v in params.items() if k in _IDENTITY_FIELDS and v is not None}


_IDENTITY_OPTIONS = [
    click.option("--job-id", "job_id", help="Screwdriver job ID."),
    click.option("--job-name", "job_name", help="Job name, e.g. main or PR-12:main."),
    click.option("--pipeline-id", "pipeline_id", help="Screwdriver pipeline ID."),
    click.option("--pipeline-name", "pipeline_name", help="Pipeline name, e.g. org/repo."),
    click.option("--pr-num", "pr_num", help="Pull request number."),
    click.option("--pr-parent-job-id", "pr_parent_job_id", help="Job ID the PR job was created from."),
    click.option("--scope", type=click.Choice(["job", "pipeline"]), help="Coverage scope annotation."),
    click.option("--project-key", "project_key", help="Explicit SonarQube project key (<scope>:<id>)."),
    click.option("--project-name", "project_name", help="Previously resolved project name."),
    click.option("--username", help="Previously resolved scanner username."),
]

_IDENTITY_FIELDS = {
    "job_id", "job_name", "pipeline_id", "pipeline_name", "pr_num",
    "pr_parent_job_id", "scope", "project_key", "project_name", "username",
    "start_time", "end_time",
}


def _identity_options(func):
    """Add the build identity options to a command."""
    for option in reversed(_IDENTITY_OPTIONS):
        func = option(func)
    return func


def _handle_errors(func):
    """Decorator that catches client and provisioning exceptions and exits cleanly."""
    import functools

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        from sonar_coverage.client import SonarClientError
        from sonar_coverage.provider import ProvisioningError

        try:
            return func(*args, **kwargs)
        except ProvisioningError as exc:
            click.echo(f"Provisioning error: {exc}", err=True)
            sys.exit(1)
        except SonarClientError as exc:
            click.echo(f"SonarQube error: {exc}", err=True)
            sys.exit(1)

    return wrapper


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--config", "config_path", default="sonar-coverage.yaml", show_default=True,
              help="Path to the configuration file.")
@click.option("--pretty", is_flag=True, default=False,
              help="Pretty-print the JSON output.")
@click.option("--verbose", is_flag=True, default=False,
              help="Enable verbose logging.")
@click.version_option(__version__, prog_name="sonar-coverage")
@click.pass_context
def cli(ctx: click.Context, config_path: str, pretty: bool, verbose: bool) -> None:
    """SonarQube coverage provider for Screwdriver builds."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["pretty"] = pretty


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

@cli.command("init")
@click.option("--output", "output_path", default="sonar-coverage.yaml", show_default=True,
              help="Path where the template config file will be written.")
def init_command(output_path: str) -> None:
    """Generate a template sonar-coverage.yaml file."""
    from sonar_coverage.config import ConfigError, generate_template
    try:
        generate_template(output_path)
        click.echo(f"Template written to '{output_path}'.")
        click.echo("Edit it with your Screwdriver URLs and SonarQube admin token.")
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# token
# ---------------------------------------------------------------------------

@cli.command("token")
@_identity_options
@click.pass_context
@_handle_errors
def token_command(ctx: click.Context, **params) -> None:
    """Provision project, user and permission, then print a scanner token."""
    provider = _make_provider(ctx)
    click.echo(provider.get_access_token(_identity(params)))


# ---------------------------------------------------------------------------
# info
# ---------------------------------------------------------------------------

@cli.command("info")
@_identity_options
@click.option("--start-time", "start_time", help="Build start, ISO-8601 (e.g. 2018-05-08T00:09:53.123Z).")
@click.option("--end-time", "end_time", help="Build end, ISO-8601.")
@click.pass_context
@_handle_errors
def info_command(ctx: click.Context, **params) -> None:
    """Print env vars and, for a finished job, coverage and tests as JSON."""
    provider = _make_provider(ctx)
    _emit_json(provider.get_info(_identity(params)), ctx)


# ---------------------------------------------------------------------------
# upload-cmd
# ---------------------------------------------------------------------------

@cli.command("upload-cmd")
@click.pass_context
def upload_cmd_command(ctx: click.Context) -> None:
    """Print the shell command a build runs to upload coverage."""
    provider = _make_provider(ctx)
    click.echo(provider.get_upload_coverage_cmd())


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()

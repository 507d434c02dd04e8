"""CLI entry point — command definitions using Click.

Commands:
    init       Generate a template config file
    sitemap    Audit every url listed in a sitemap
    list       Audit a comma separated list of urls
    get        Fetch one report, issue or url record
    getlist    List reports, issues, urls or issue contexts
"""

import functools
import json
import logging
import sys
from typing import Any

import click

from pa11y_dispatch import __version__


# ---------------------------------------------------------------------------
# Helpers shared by all commands
# ---------------------------------------------------------------------------

def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _load_config(ctx: click.Context, retry_forever: bool = False, **overrides: Any):
    """Load config, apply CLI overrides and return it. Exits on error."""
    from dataclasses import replace
    from pathlib import Path

    from pa11y_dispatch.config import DEFAULT_CONFIG_PATH, ConfigError, load

    obj = ctx.obj
    config_path = obj["config_path"]
    if config_path is None and Path(DEFAULT_CONFIG_PATH).exists():
        config_path = DEFAULT_CONFIG_PATH
    try:
        config = load(config_path, validate=False)
        config = config.with_overrides(token=obj["token"], api_url=obj["api_url"], **overrides)
        if retry_forever:
            config = replace(config, max_attempts=None)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)

    logging.getLogger(__name__).debug(
        "Using api %s, worker %s, concurrency %d", config.api_url, config.worker_url, config.concurrency
    )
    return config


def _emit_json(data: Any, ctx: click.Context) -> None:
    """Write JSON to stdout or to the file specified by --output."""
    obj = ctx.obj
    indent = 2 if obj["pretty"] else None
    text = json.dumps(data, indent=indent, ensure_ascii=False)

    output_path: str | None = obj["output_path"]
    if output_path:
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(text)
        click.echo(f"Output written to '{output_path}'", err=True)
    else:
        click.echo(text)


def _report_created(report) -> None:
    click.echo(f"Report created: {report.id}", err=True)


def _handle_errors(func):
    """Decorator that catches dispatch/API exceptions and exits cleanly."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        from pa11y_dispatch.client import (
            ApiResponseError,
            AuthenticationError,
            FetchError,
            NotFoundError,
            Pa11yError,
            PersistenceError,
        )
        from pa11y_dispatch.dispatch.queue import DispatchCancelledError, DispatchFailedError
        from pa11y_dispatch.sitemap import ParseError

        try:
            return func(*args, **kwargs)
        except ParseError as exc:
            click.echo(f"Sitemap error: {exc}", err=True)
            sys.exit(1)
        except DispatchFailedError as exc:
            click.echo(f"Dispatch failed: {exc}", err=True)
            for error in exc.errors[1:]:
                click.echo(f"  - {error}", err=True)
            sys.exit(1)
        except DispatchCancelledError as exc:
            click.echo(f"Dispatch cancelled: {exc}", err=True)
            sys.exit(1)
        except AuthenticationError as exc:
            click.echo(f"Authentication error: {exc}", err=True)
            sys.exit(1)
        except NotFoundError as exc:
            click.echo(f"Not found: {exc}", err=True)
            sys.exit(1)
        except PersistenceError as exc:
            click.echo(f"Persistence error: {exc}", err=True)
            sys.exit(1)
        except FetchError as exc:
            click.echo(f"Network error: {exc}", err=True)
            sys.exit(1)
        except ApiResponseError as exc:
            click.echo(f"API error: {exc}", err=True)
            sys.exit(1)
        except Pa11yError as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(1)

    return wrapper


def _dispatch_options(func):
    """Options shared by the `sitemap` and `list` commands."""
    func = click.option("--standard", default=None,
                        help="Accessibility standard (default: WCAG2AA).")(func)
    func = click.option("--max-attempts", type=int, default=None,
                        help="Attempts per url before giving up (0 retries forever).")(func)
    func = click.option("-c", "--concurrency", type=int, default=None,
                        help="Amount of urls audited at the same time.")(func)
    func = click.option("-w", "--worker", "worker_url", default=None,
                        help="Url of the pa11y worker.")(func)
    return func


def _dispatch_overrides(worker_url, concurrency, max_attempts, standard) -> dict:
    return {
        "worker_url":    worker_url,
        "concurrency":   concurrency,
        "standard":      standard,
        "max_attempts":  max_attempts or None,
        "retry_forever": max_attempts == 0,
    }


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--config", "config_path", default=None,
              help="Path to the configuration file [default: pa11y-config.yaml if present].")
@click.option("--token", default=None, help="Bearer token for the API and the worker.")
@click.option("-a", "--api", "api_url", default=None, help="Url of the pa11y API.")
@click.option("--output", "output_path", default=None,
              help="Write JSON output to a file instead of stdout.")
@click.option("--pretty", is_flag=True, default=False,
              help="Pretty-print the JSON output.")
@click.option("--verbose", is_flag=True, default=False,
              help="Enable verbose logging.")
@click.version_option(__version__, prog_name="pa11y-dispatch")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, token: str | None, api_url: str | None,
        output_path: str | None, pretty: bool, verbose: bool) -> None:
    """pa11y dispatcher — audit sitemaps or url lists with remote workers."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["token"] = token
    ctx.obj["api_url"] = api_url
    ctx.obj["output_path"] = output_path
    ctx.obj["pretty"] = pretty
    _configure_logging(verbose)


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

@cli.command("init")
@click.option("--output", "output_path", default="pa11y-config.yaml", show_default=True,
              help="Path where the template config file will be written.")
def init_command(output_path: str) -> None:
    """Generate a template pa11y-config.yaml file."""
    from pa11y_dispatch.config import ConfigError, generate_template
    try:
        generate_template(output_path)
        click.echo(f"Template written to '{output_path}'.")
        click.echo("Edit it with your API url, worker url and token.")
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# sitemap / list
# ---------------------------------------------------------------------------

@cli.command("sitemap")
@click.argument("sitemap_url")
@_dispatch_options
@click.pass_context
@_handle_errors
def sitemap_command(ctx: click.Context, sitemap_url: str, worker_url, concurrency,
                    max_attempts, standard) -> None:
    """Audit every url listed in the sitemap at SITEMAP_URL."""
    from pa11y_dispatch.runner import dispatch_sitemap

    config = _load_config(ctx, **_dispatch_overrides(worker_url, concurrency, max_attempts, standard))
    report = dispatch_sitemap(config, sitemap_url, on_report_created=_report_created)
    _emit_json(report.to_dict(), ctx)


@cli.command("list")
@click.argument("url_list")
@_dispatch_options
@click.pass_context
@_handle_errors
def list_command(ctx: click.Context, url_list: str, worker_url, concurrency,
                 max_attempts, standard) -> None:
    """Audit URL_LIST, a comma separated list of urls."""
    from pa11y_dispatch.runner import run_on_list

    urls = [u for u in url_list.split(",") if u.strip()]
    if not urls:
        click.echo("Error: URL_LIST contains no url.", err=True)
        sys.exit(1)

    config = _load_config(ctx, **_dispatch_overrides(worker_url, concurrency, max_attempts, standard))
    report = run_on_list(config, urls, on_report_created=_report_created)
    _emit_json(report.to_dict(), ctx)


# ---------------------------------------------------------------------------
# get / getlist
# ---------------------------------------------------------------------------

_SINGLE_GETTERS = {"report": "get_report", "issue": "get_issue", "url": "get_url"}
_LIST_GETTERS = {
    "reports":  "get_reports",
    "issues":   "get_issues",
    "urls":     "get_urls",
    "contexts": "get_contexts",
}


def _make_client(ctx: click.Context):
    from pa11y_dispatch.client import ApiClient

    config = _load_config(ctx)
    return ApiClient(config.api_url, config.token, timeout=config.timeout)


@cli.command("get")
@click.argument("type_", metavar="TYPE", type=click.Choice(sorted(_SINGLE_GETTERS)))
@click.argument("id_", metavar="ID")
@click.pass_context
@_handle_errors
def get_command(ctx: click.Context, type_: str, id_: str) -> None:
    """Fetch one report, issue or url record by ID."""
    client = _make_client(ctx)
    _emit_json(getattr(client, _SINGLE_GETTERS[type_])(id_), ctx)


@cli.command("getlist")
@click.argument("type_", metavar="TYPE", type=click.Choice(sorted(_LIST_GETTERS)))
@click.option("--filter", "filters", multiple=True, metavar="KEY=VALUE",
              help="Query filter, e.g. --filter reportId=abc --filter code=WCAG2AA.H37.")
@click.pass_context
@_handle_errors
def getlist_command(ctx: click.Context, type_: str, filters: tuple[str, ...]) -> None:
    """List reports, issues, urls, or the contexts of matching issues."""
    query: dict[str, str] = {}
    for item in filters:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got '{item}'", param_hint="--filter")
        query[key] = value

    client = _make_client(ctx)
    _emit_json(getattr(client, _LIST_GETTERS[type_])(query), ctx)

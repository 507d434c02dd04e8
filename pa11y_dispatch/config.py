"""Configuration loading and validation.

Usage:
    config = load("pa11y-config.yaml")        # raises ConfigError on bad config
    config = load(None)                       # defaults + environment only
    config = config.with_overrides(concurrency=4)
    generate_template("pa11y-config.yaml")    # writes example file to disk
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml

from pa11y_dispatch.dispatch.queue import RetryPolicy
from pa11y_dispatch.models import DEFAULT_STANDARD

DEFAULT_CONFIG_PATH = "pa11y-config.yaml"
DEFAULT_API_URL     = "https://api.seoa11y.com"
DEFAULT_WORKER_URL  = "http://worker.seoa11y.com"


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
    token: str
    api_url: str = DEFAULT_API_URL
    worker_url: str = DEFAULT_WORKER_URL
    concurrency: int = 1
    standard: str = DEFAULT_STANDARD
    timeout: float = 30
    worker_timeout: float = 120
    fail_fast: bool = False
    max_attempts: int | None = 5
    backoff_base: float = 1.0
    backoff_max: float = 30.0

    @property
    def retry(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff_base=self.backoff_base,
            backoff_max=self.backoff_max,
        )

    def with_overrides(self, **overrides: Any) -> "Config":
        """Return a validated copy with every non-None override applied.

        Used by the CLI so that ``--concurrency`` etc. win over the file.
        """
        changes = {k: v for k, v in overrides.items() if v is not None}
        config = replace(self, **changes)
        _validate(config)
        return config


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load(config_path: str | None = DEFAULT_CONFIG_PATH, validate: bool = True) -> Config:
    """Load configuration from a YAML file, or only from defaults when *config_path* is None.

    Environment variables PA11Y_API_URL, PA11Y_WORKER_URL and PA11Y_TOKEN
    override file values.

    Raises:
        ConfigError: if the file is missing or malformed, or (with *validate*)
                     if a value is out of range or the token is absent.
    """
    raw: dict = {}
    if config_path is not None:
        raw = _read_yaml(config_path)

    server   = raw.get("server")   or {}
    dispatch = raw.get("dispatch") or {}
    retry    = raw.get("retry")    or {}

    api_url    = os.environ.get("PA11Y_API_URL")    or server.get("api_url",    DEFAULT_API_URL)
    worker_url = os.environ.get("PA11Y_WORKER_URL") or server.get("worker_url", DEFAULT_WORKER_URL)
    token      = os.environ.get("PA11Y_TOKEN")      or server.get("token",      "")

    try:
        config = Config(
            token=str(token).strip(),
            api_url=str(api_url).strip(),
            worker_url=str(worker_url).strip(),
            concurrency=int(dispatch.get("concurrency", 1)),
            standard=str(dispatch.get("standard", DEFAULT_STANDARD)),
            timeout=float(dispatch.get("timeout", 30)),
            worker_timeout=float(dispatch.get("worker_timeout", 120)),
            fail_fast=dispatch.get("fail_fast", False),
            max_attempts=_optional_int(retry.get("max_attempts", 5)),
            backoff_base=float(retry.get("backoff_base", 1.0)),
            backoff_max=float(retry.get("backoff_max", 30.0)),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value in configuration: {exc}") from exc

    if validate:
        _validate(config)
    return config


def _read_yaml(config_path: str) -> dict:
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(
            f"Config file not found: '{config_path}'\n"
            "Run `python -m pa11y_dispatch init` to generate a template."
        )

    try:
        with path.open(encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse '{config_path}': {exc}") from exc

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"'{config_path}' must be a YAML mapping at the top level.")
    return raw


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _validate(config: Config) -> None:
    """Raise ConfigError listing every invalid field."""
    errors: list[str] = []

    if not config.token:
        errors.append(
            "  - 'server.token' is missing (or set the PA11Y_TOKEN environment variable, or pass --token)"
        )
    if not config.api_url:
        errors.append("  - 'server.api_url' is empty")
    if not config.worker_url:
        errors.append("  - 'server.worker_url' is empty")
    if config.concurrency < 1:
        errors.append(f"  - 'dispatch.concurrency' must be >= 1 (got {config.concurrency})")
    if config.timeout <= 0:
        errors.append(f"  - 'dispatch.timeout' must be > 0 (got {config.timeout})")
    if config.worker_timeout <= 0:
        errors.append(f"  - 'dispatch.worker_timeout' must be > 0 (got {config.worker_timeout})")
    if config.max_attempts is not None and config.max_attempts < 1:
        errors.append(
            f"  - 'retry.max_attempts' must be >= 1, or null to retry forever (got {config.max_attempts})"
        )
    if not isinstance(config.fail_fast, bool):
        errors.append(f"  - 'dispatch.fail_fast' must be true or false (got {config.fail_fast!r})")
    if config.backoff_base < 0 or config.backoff_max < 0:
        errors.append("  - 'retry.backoff_base' and 'retry.backoff_max' must not be negative")

    if errors:
        raise ConfigError("Invalid configuration:\n" + "\n".join(errors))


# ---------------------------------------------------------------------------
# Template generator (used by `init` command)
# ---------------------------------------------------------------------------

TEMPLATE = """\
server:
  api_url: "https://api.seoa11y.com"
  worker_url: "http://worker.seoa11y.com"
  token: "xxxxxxxxxxxx"          # or set PA11Y_TOKEN

dispatch:
  concurrency: 1                 # urls audited at the same time
  standard: "WCAG2AA"
  timeout: 30                    # seconds, per reporting API call
  worker_timeout: 120            # seconds, per audited url
  fail_fast: false               # cancel the run on the first persistence failure

retry:
  max_attempts: 5                # null retries a failing url forever
  backoff_base: 1.0              # seconds, doubled after each failure
  backoff_max: 30.0
"""


def generate_template(output_path: str = DEFAULT_CONFIG_PATH) -> None:
    """Write a template pa11y-config.yaml to *output_path*.

    Raises:
        ConfigError: if the file already exists (to avoid overwriting secrets).
    """
    path = Path(output_path)
    if path.exists():
        raise ConfigError(
            f"'{output_path}' already exists. Remove it first or choose a different path."
        )
    path.write_text(TEMPLATE, encoding="utf-8")

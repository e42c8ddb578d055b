"""Configuration for mrcli.

Settings live in an INI file, ``~/.mediumroast/config.ini`` by default:

    [DEFAULT]
    working_directory = working
    report_output_dir = Documents
    theme = coffee
    backend = github
    store_path = ~/.mediumroast/store
    process_name = mrcli
    stale_lock_minutes = 10
    write_attempts = 3

    [GitHub]
    org = acme
    clientId = Iv1.f5c0a4eb1f0606f8
    token = gho_...
    tokenExpiry = 2026-12-31T00:00:00+00:00

``MRCLI_GITHUB_TOKEN`` and ``MRCLI_GITHUB_ORG`` override the file. The
configuration is built once per invocation and passed explicitly; there is
no process-wide instance.
"""

from __future__ import annotations

import configparser
import logging
import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Mapping

from mrcli.stores.backends._protocols import ObjectStoreBackend
from mrcli.stores.factory import create_backend

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("~/.mediumroast/config.ini")
TOKEN_ENV = "MRCLI_GITHUB_TOKEN"
ORG_ENV = "MRCLI_GITHUB_ORG"
BACKENDS = ("github", "filesystem", "memory")


class ConfigError(Exception):
    """Raised when the configuration is missing, malformed or unusable."""

    pass


@dataclass(frozen=True)
class GitHubSettings:
    """The ``[GitHub]`` section."""

    org: str = ""
    client_id: str = ""
    token: str = ""
    token_expiry: datetime | None = None

    def token_expired(self, now: datetime | None = None) -> bool:
        if self.token_expiry is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.token_expiry


@dataclass(frozen=True)
class MrcliConfig:
    """Resolved mrcli configuration.

    Attributes:
        working_directory: Scratch directory under ``~/.mediumroast``.
        report_output_dir: Directory for generated reports.
        theme: Report theme name.
        backend: Object store backend ("github", "filesystem", "memory").
        store_path: Root of the filesystem backend.
        process_name: Stem of the lock files this installation creates.
        stale_lock_minutes: Age after which a lock is considered abandoned;
            0 disables stale-lock breaking.
        write_attempts: Bound on write-conflict retries.
        github: The ``[GitHub]`` section.
        source: File the configuration was read from.
    """

    working_directory: str = "working"
    report_output_dir: str = "Documents"
    theme: str = "coffee"
    backend: str = "github"
    store_path: str = "~/.mediumroast/store"
    process_name: str = "mrcli"
    stale_lock_minutes: int = 10
    write_attempts: int = 3
    github: GitHubSettings = field(default_factory=GitHubSettings)
    source: Path | None = None

    def __post_init__(self) -> None:
        if self.backend not in BACKENDS:
            raise ConfigError(f"Unknown backend: {self.backend}. Use one of: {', '.join(BACKENDS)}")
        if self.stale_lock_minutes < 0:
            raise ConfigError("stale_lock_minutes must be non-negative")
        if self.write_attempts < 1:
            raise ConfigError("write_attempts must be at least 1")
        if not self.process_name or "/" in self.process_name:
            raise ConfigError("process_name must be a non-empty name without '/'")

    @property
    def stale_after(self) -> timedelta | None:
        if self.stale_lock_minutes == 0:
            return None
        return timedelta(minutes=self.stale_lock_minutes)

    def with_overrides(self, **changes: Any) -> "MrcliConfig":
        return replace(self, **changes)

    def create_backend(self, now: datetime | None = None) -> ObjectStoreBackend:
        """Build the object store backend this configuration names.

        Raises:
            ConfigError: If the GitHub settings are incomplete or the
                cached token has expired.
        """
        if self.backend == "github":
            if not self.github.org or not self.github.token:
                raise ConfigError(
                    f"The [GitHub] section needs org and token, or set {ORG_ENV} and {TOKEN_ENV}."
                )
            if self.github.token_expired(now):
                raise ConfigError(
                    "The cached GitHub token has expired; run 'mrcli setup' to store a new one."
                )
            return create_backend("github", org=self.github.org, token=self.github.token)
        if self.backend == "filesystem":
            return create_backend("filesystem", base_path=Path(self.store_path).expanduser())
        return create_backend("memory")


# =============================================================================
# Loading and saving
# =============================================================================


def _parse_expiry(value: str) -> datetime | None:
    if not value:
        return None
    try:
        expiry = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ConfigError(f"tokenExpiry is not an ISO-8601 timestamp: {value}") from e
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return expiry


def _int(parser: configparser.ConfigParser, key: str, default: int) -> int:
    try:
        return parser.getint("DEFAULT", key, fallback=default)
    except ValueError as e:
        raise ConfigError(f"[DEFAULT] {key} must be an integer") from e


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    required: bool = True,
) -> MrcliConfig:
    """Read the configuration file and apply environment overrides.

    Args:
        path: Config file; ``~/.mediumroast/config.ini`` when omitted.
        env: Environment to read overrides from; ``os.environ`` when omitted.
        required: Raise if the file does not exist. When False a missing
            file yields the defaults.

    Raises:
        ConfigError: If the file is missing (and required) or malformed.
    """
    env = os.environ if env is None else env
    config_path = Path(path or DEFAULT_CONFIG_FILE).expanduser()

    parser = configparser.ConfigParser(interpolation=None)
    parser.optionxform = str  # keep clientId / tokenExpiry casing
    if config_path.exists():
        try:
            parser.read(config_path, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigError(f"Unable to parse {config_path}: {e}") from e
        logger.debug("Loaded configuration from %s", config_path)
    elif required:
        raise ConfigError(f"Configuration file {config_path} not found; run 'mrcli setup' first.")

    defaults = parser["DEFAULT"]
    section = parser["GitHub"] if parser.has_section("GitHub") else {}
    github = GitHubSettings(
        org=env.get(ORG_ENV) or section.get("org", ""),
        client_id=section.get("clientId", ""),
        token=env.get(TOKEN_ENV) or section.get("token", ""),
        token_expiry=None if env.get(TOKEN_ENV) else _parse_expiry(section.get("tokenExpiry", "")),
    )

    return MrcliConfig(
        working_directory=defaults.get("working_directory", "working"),
        report_output_dir=defaults.get("report_output_dir", "Documents"),
        theme=defaults.get("theme", "coffee"),
        backend=defaults.get("backend", "github").strip().lower(),
        store_path=defaults.get("store_path", "~/.mediumroast/store"),
        process_name=defaults.get("process_name", "mrcli"),
        stale_lock_minutes=_int(parser, "stale_lock_minutes", 10),
        write_attempts=_int(parser, "write_attempts", 3),
        github=github,
        source=config_path if config_path.exists() else None,
    )


def save_config(config: MrcliConfig, path: str | Path | None = None) -> Path:
    """Write ``config`` as INI, creating the parent directory.

    Environment overrides are written as well; callers that do not want a
    token on disk should clear it first.
    """
    config_path = Path(path or config.source or DEFAULT_CONFIG_FILE).expanduser()
    parser = configparser.ConfigParser(interpolation=None)
    parser.optionxform = str
    parser["DEFAULT"] = {
        "working_directory": config.working_directory,
        "report_output_dir": config.report_output_dir,
        "theme": config.theme,
        "backend": config.backend,
        "store_path": config.store_path,
        "process_name": config.process_name,
        "stale_lock_minutes": str(config.stale_lock_minutes),
        "write_attempts": str(config.write_attempts),
    }
    parser["GitHub"] = {
        "org": config.github.org,
        "clientId": config.github.client_id,
        "token": config.github.token,
        "tokenExpiry": config.github.token_expiry.isoformat() if config.github.token_expiry else "",
    }
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        parser.write(f)
    logger.info("Wrote configuration to %s", config_path)
    return config_path



"""Server configuration.

Loads ``.prcomments.toml`` from the project root (walking up to ``.git``),
validates it with Pydantic and falls back to defaults when there is no file.
The GitHub token is never read from the file: it comes from ``--gh-api-key``,
``PRC_GITHUB_TOKEN`` or the usual ``GH_TOKEN``/``GITHUB_TOKEN``/``gh`` chain.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from prcomments.github_api import DEFAULT_API_URL, DEFAULT_USER_AGENT, GitHubSettings
from prcomments.models import Reaction  # noqa: TC001 - Pydantic needs this at runtime

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".prcomments.toml"
DEFAULT_PORT = 3322

ENV_TOKEN = "PRC_GITHUB_TOKEN"  # noqa: S105
ENV_OWNER = "PRC_GITHUB_OWNER"


class GitHubConfig(BaseModel):
    """How to reach GitHub."""

    model_config = ConfigDict(extra="ignore")

    owner: str | None = Field(default=None, description="Owner used when a tool gets a bare repository name")
    api_url: str = Field(default=DEFAULT_API_URL, description="REST API base URL (change for GitHub Enterprise)")
    timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")
    max_retries: int = Field(default=2, ge=0, le=10, description="Retries for failed GET requests (5xx, 429, network)")
    backoff_seconds: float = Field(default=0.5, ge=0, description="Base retry delay, doubled after each attempt")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, min_length=1, description="User-Agent header")

    @field_validator("api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class HandlingConfig(BaseModel):
    """How comments are marked as handled."""

    model_config = ConfigDict(extra="ignore")

    default_reaction: Reaction = Field(default="rocket", description="Reaction added when a request names none")
    reply_suffix: str = Field(default="(By AI)", description="Appended to every 'Done - ...' reply")


class HttpConfig(BaseModel):
    """HTTP transport settings for ``prcomments serve --http``."""

    model_config = ConfigDict(extra="ignore")

    host: str = Field(default="127.0.0.1", description="Interface to bind")
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535, description="Port to listen on")


class Config(BaseModel):
    """Top-level prcomments configuration."""

    model_config = ConfigDict(extra="ignore")

    github: GitHubConfig = Field(default_factory=GitHubConfig, description="GitHub connection settings")
    handling: HandlingConfig = Field(default_factory=HandlingConfig, description="Mark-as-handled behavior")
    http: HttpConfig = Field(default_factory=HttpConfig, description="HTTP transport settings")


def _collect_unknown_keys(
    data: dict[str, Any],
    model_cls: type[BaseModel],
    prefix: str = "",
) -> list[str]:
    """Dotted paths (``github.tokne``) of keys in *data* that *model_cls* does not define."""
    known = set(model_cls.model_fields)
    unknown: list[str] = []

    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if key not in known:
            unknown.append(dotted)
            continue
        annotation = model_cls.model_fields[key].annotation
        if isinstance(annotation, type) and issubclass(annotation, BaseModel) and isinstance(value, dict):
            unknown.extend(_collect_unknown_keys(value, annotation, prefix=f"{dotted}."))

    return unknown


def _find_config_file(start: Path) -> Path | None:
    """Walk up from *start* looking for ``.prcomments.toml``, stopping at ``.git`` root."""
    current = start.resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        if current.parent == current:
            return None
        if (current / ".git").exists():
            return None
        current = current.parent


def _apply_env_overrides(config: Config) -> Config:
    owner = os.environ.get(ENV_OWNER, "").strip()
    if owner:
        logger.debug("GitHub owner from %s", ENV_OWNER)
        config.github.owner = owner
    return config


def load_config(cwd: str | Path | None = None) -> tuple[Config, Path | None]:
    """Load configuration from ``.prcomments.toml``.

    Searches *cwd* (default: the working directory) and its parents up to the
    git root. Without a file every setting keeps its default.
    ``PRC_GITHUB_OWNER`` overrides ``github.owner`` either way.

    Returns:
        (config, config_path), the path being None when no file was found.

    Raises ``ValueError`` for unparseable TOML or out-of-range values; the
    server does not start with a broken file.
    """
    start = Path(cwd) if cwd else Path.cwd()
    config_path = _find_config_file(start)

    if config_path is None:
        logger.info("No %s found, using defaults", CONFIG_FILENAME)
        return _apply_env_overrides(Config()), None

    logger.info("Loading config from %s", config_path)
    try:
        data = tomllib.loads(config_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {config_path}: {exc}"
        raise ValueError(msg) from exc

    try:
        config = Config.model_validate(data)
    except Exception as exc:
        msg = f"Invalid config in {config_path}: {exc}"
        raise ValueError(msg) from exc

    for key in _collect_unknown_keys(data, Config):
        logger.warning(
            "Unknown config key '%s' in %s, run 'prcomments config --clean' to remove it",
            key,
            config_path,
        )

    return _apply_env_overrides(config), config_path


# -- Active config ----------------------------------------------------------------


class _ConfigState:
    """The config, its file path and the GitHub token the server runs with."""

    __slots__ = ("config", "path", "token")

    def __init__(self) -> None:
        self.config: Config = Config()
        self.path: Path | None = None
        self.token: str | None = None


_state = _ConfigState()


def get_config() -> Config:
    """Return the active configuration."""
    return _state.config


def get_config_path() -> Path | None:
    """Return the path to the active config file, or None if using defaults."""
    return _state.path


def set_config(config: Config, *, config_path: Path | None = None) -> None:
    """Set the active configuration (called during server startup)."""
    _state.config = config
    _state.path = config_path


def set_github_token(token: str | None) -> None:
    """Set the token given on the command line; None falls back to the environment."""
    _state.token = token or None


def github_settings(config: Config | None = None) -> GitHubSettings:
    """Build client settings from *config* (default: the active one) and the token."""
    github = (config or _state.config).github
    return GitHubSettings(
        token=_state.token or os.environ.get(ENV_TOKEN) or None,
        api_url=github.api_url,
        timeout_seconds=github.timeout_seconds,
        max_retries=github.max_retries,
        backoff_seconds=github.backoff_seconds,
        user_agent=github.user_agent,
    )


# -- Template for ``prcomments config --init`` ------------------------------------

DEFAULT_CONFIG_TEMPLATE = f"""\
# .prcomments.toml: configuration for the prcomments MCP server
# All settings are optional. Omitted values use sensible defaults.
# Place this file in your project root (next to .git/).
# The GitHub token never goes here: use --gh-api-key, {ENV_TOKEN}, GH_TOKEN or `gh auth login`.

[github]
# owner = "my-org"                # Used when a tool is called with a bare repo name
api_url = "{DEFAULT_API_URL}"
timeout_seconds = 30              # Per-request timeout
max_retries = 2                   # Retries for failed GET requests (5xx, 429, network errors)
backoff_seconds = 0.5             # Base retry delay, doubled after each attempt

[handling]
default_reaction = "rocket"       # +1, -1, laugh, confused, heart, hooray, rocket, eyes
reply_suffix = "(By AI)"          # Appended to "Done - <summary>" replies

[http]
host = "127.0.0.1"
port = {DEFAULT_PORT}
"""


def init_config(cwd: Path | None = None) -> Path:
    """Create a new ``.prcomments.toml`` in the given directory.

    Exits with status 1 rather than overwrite an existing file.

    Returns:
        Path of the new file.
    """
    target = (cwd or Path.cwd()) / CONFIG_FILENAME
    if target.exists():
        print(f"Error: {CONFIG_FILENAME} already exists in {target.parent}")  # noqa: T201
        print("Hint: use 'prcomments config --clean' to drop unknown keys")  # noqa: T201
        raise SystemExit(1)
    target.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    print(f"Created {target}")  # noqa: T201
    return target


def _remove_unknown_keys(target: Path) -> list[str]:
    """Drop unknown keys from *target* in place, keeping comments and layout.

    Returns the dotted paths that were removed.
    """
    import tomlkit  # noqa: PLC0415

    raw = target.read_text(encoding="utf-8")
    unknown = _collect_unknown_keys(tomllib.loads(raw), Config)
    if not unknown:
        return []

    doc = tomlkit.loads(raw)
    for dotted in unknown:
        parts = dotted.split(".")
        container = doc
        for part in parts[:-1]:
            container = container[part]  # type: ignore[assignment]
        del container[parts[-1]]

    target.write_text(tomlkit.dumps(doc), encoding="utf-8")
    return unknown


def clean_config(cwd: Path | None = None) -> tuple[Path, list[str]]:
    """Remove unknown keys from an existing ``.prcomments.toml``.

    Exits with status 1 when there is no file to clean.

    Returns:
        The file path and the dotted keys that were removed.
    """
    target = (cwd or Path.cwd()) / CONFIG_FILENAME
    if not target.exists():
        print(f"Error: {CONFIG_FILENAME} not found in {target.parent}")  # noqa: T201
        print("Hint: use 'prcomments config --init' to create one")  # noqa: T201
        raise SystemExit(1)

    removed = _remove_unknown_keys(target)
    if removed:
        print(f"Removed {len(removed)} unknown key(s) from {target}:")  # noqa: T201
        for key in removed:
            print(f"  - {key}")  # noqa: T201
    else:
        print(f"{CONFIG_FILENAME} is clean, no unknown keys found")  # noqa: T201
    return target, removed

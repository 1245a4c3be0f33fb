"""CLI for prcomments, built on cyclopts (same framework as FastMCP's CLI)."""

from __future__ import annotations

import logging
import os
import sys
from typing import Annotated

import cyclopts
from cyclopts import Parameter

app = cyclopts.App(
    name="prcomments",
    help="prcomments: triage GitHub PR review comments over MCP.",
)


def _configure_logging(*, debug: bool) -> None:
    """Send prcomments logs to stderr; stdout belongs to the stdio transport."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    package_logger = logging.getLogger("prcomments")
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if debug else logging.INFO)


@app.default
def serve(
    *,
    gh_api_key: Annotated[str | None, Parameter(name=["--gh-api-key", "-k"], env_var="PRC_GITHUB_TOKEN")] = None,
    gh_owner: Annotated[str | None, Parameter(name=["--gh-owner", "-o"])] = None,
    http: bool = False,
    host: str | None = None,
    port: Annotated[int | None, Parameter(name=["--port", "-p"])] = None,
    debug: Annotated[bool, Parameter(name=["--debug", "-d"])] = False,
) -> None:
    """Run the prcomments MCP server (default command).

    Parameters
    ----------
    gh_api_key
        GitHub token. Falls back to GH_TOKEN, GITHUB_TOKEN, then `gh auth token`.
    gh_owner
        Owner used when a tool is called with a bare repository name.
    http
        Serve over HTTP (MCP at /mcp plus the JSON routes) instead of stdio.
    host
        HTTP interface to bind. Defaults to the config file value.
    port
        HTTP port. Defaults to the config file value (3322).
    debug
        Log at DEBUG level.
    """
    from prcomments import config as config_module  # noqa: PLC0415
    from prcomments.server import mcp  # noqa: PLC0415

    _configure_logging(debug=debug)
    config_module.set_github_token(gh_api_key)
    if gh_owner:
        os.environ[config_module.ENV_OWNER] = gh_owner

    if not http:
        mcp.run()
        return

    config, _ = config_module.load_config()
    mcp.run(
        transport="http",
        host=host or config.http.host,
        port=port or config.http.port,
        log_level="debug" if debug else "info",
    )


@app.command(name="check-env")
def check_env() -> None:
    """Validate PRC_* and token environment variables and print a diagnostic summary.

    Lists the recognized variables and their current values (masking
    sensitive ones), loads the config file, and checks that a GitHub token
    can be resolved.
    """
    print("prcomments check-env")
    print("=" * 40)

    prc_vars = {k: v for k, v in sorted(os.environ.items()) if k.startswith("PRC_")}
    token_vars = {k: os.environ[k] for k in _TOKEN_ENV_VARS if os.environ.get(k)}

    if not prc_vars and not token_vars:
        print("\nNo PRC_* or token environment variables set.")
    else:
        print(f"\nFound {len(prc_vars) + len(token_vars)} variable(s):\n")
        for key, value in {**token_vars, **prc_vars}.items():
            marker = "" if key in token_vars or _is_known_var(key, _KNOWN_ENV_VARS) else "  ⚠️  UNRECOGNIZED"
            print(f"  {key} = {_mask_value(key, value)}{marker}")

    unknown = [k for k in prc_vars if not _is_known_var(k, _KNOWN_ENV_VARS)]
    if unknown:
        print(f"\n⚠️  {len(unknown)} unrecognized variable(s) (possible typos):")
        for k in unknown:
            print(f"  - {k}")

    print("\n" + "-" * 40)
    print("Validating configuration...\n")
    try:
        from prcomments.config import load_config  # noqa: PLC0415

        config, path = load_config()
    except Exception as exc:
        print(f"❌ Configuration error: {exc}")
        sys.exit(1)

    print(f"  Source: {path or 'defaults'}")
    print(f"  Owner: {config.github.owner or '(none, pass owner/repo)'}")
    print(f"  API: {config.github.api_url}")
    print(f"  Default reaction: {config.handling.default_reaction}")
    print(f"  HTTP: {config.http.host}:{config.http.port}")

    print("\n" + "-" * 40)
    print("Checking GitHub token...\n")
    from prcomments.github_api import _resolve_token_sync  # noqa: PLC0415

    if os.environ.get("PRC_GITHUB_TOKEN") or _resolve_token_sync():
        print("  ✅ GitHub token available")
    else:
        print("  ❌ No GitHub token. Pass --gh-api-key, set GH_TOKEN, or run: gh auth login")
    print()


@app.command(name="config")
def config_cmd(*, init: bool = False, clean: bool = False) -> None:
    """Manage the ``.prcomments.toml`` file in the current directory.

    Parameters
    ----------
    init
        Create a commented template.
    clean
        Remove keys prcomments does not recognize.
    """
    from prcomments.config import clean_config, init_config  # noqa: PLC0415

    if init == clean:
        print("Pass exactly one of --init or --clean")
        sys.exit(2)
    if init:
        init_config()
    else:
        clean_config()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_MASK_MIN_LENGTH = 4
_TRUNCATE_LENGTH = 80

_TOKEN_ENV_VARS = ("GH_TOKEN", "GITHUB_TOKEN")
_KNOWN_ENV_VARS = frozenset({"PRC_GITHUB_TOKEN", "PRC_GITHUB_OWNER"})


def _is_known_var(key: str, known: frozenset[str]) -> bool:
    return key in known


def _mask_value(key: str, value: str) -> str:
    """Mask sensitive values."""
    sensitive_keywords = ("token", "secret", "key", "password")
    if any(kw in key.lower() for kw in sensitive_keywords):
        if len(value) > _MASK_MIN_LENGTH:
            return value[:2] + "*" * (len(value) - _MASK_MIN_LENGTH) + value[-2:]
        return "****"
    if len(value) > _TRUNCATE_LENGTH:
        return value[: _TRUNCATE_LENGTH - 3] + "..."
    return value

"""Global test fixtures for prcomments."""

from __future__ import annotations

import pytest

from prcomments.config import Config, set_config, set_github_token


@pytest.fixture(autouse=True)
def _default_config(monkeypatch: pytest.MonkeyPatch):
    """Reset config and token state before every test.

    A developer's own PRC_* variables must not leak into tests that expect
    defaults.
    """
    monkeypatch.delenv("PRC_GITHUB_OWNER", raising=False)
    monkeypatch.delenv("PRC_GITHUB_TOKEN", raising=False)
    set_config(Config())
    set_github_token(None)
    yield
    set_config(Config())
    set_github_token(None)

"""Tests for the configuration system."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest
from pydantic import ValidationError

if TYPE_CHECKING:
    from pathlib import Path

from prcomments.config import (
    CONFIG_FILENAME,
    DEFAULT_CONFIG_TEMPLATE,
    Config,
    _collect_unknown_keys,
    clean_config,
    get_config,
    get_config_path,
    github_settings,
    init_config,
    load_config,
    set_config,
    set_github_token,
)


def _repo(tmp_path: Path, content: str | None = None) -> Path:
    (tmp_path / ".git").mkdir()
    if content is not None:
        (tmp_path / CONFIG_FILENAME).write_text(content, encoding="utf-8")
    return tmp_path


class TestConfig:
    def test_defaults(self):
        config = Config()
        assert config.github.owner is None
        assert config.github.api_url == "https://api.github.com"
        assert config.github.max_retries == 2
        assert config.handling.default_reaction == "rocket"
        assert config.handling.reply_suffix == "(By AI)"
        assert config.http.port == 3322

    def test_api_url_trailing_slash_stripped(self):
        config = Config.model_validate({"github": {"api_url": "https://ghe.example.com/api/v3/"}})
        assert config.github.api_url == "https://ghe.example.com/api/v3"

    def test_invalid_reaction_rejected(self):
        with pytest.raises(ValidationError):
            Config.model_validate({"handling": {"default_reaction": "thumbsup"}})

    def test_negative_timeout_rejected(self):
        with pytest.raises(ValidationError):
            Config.model_validate({"github": {"timeout_seconds": 0}})

    def test_port_range(self):
        with pytest.raises(ValidationError):
            Config.model_validate({"http": {"port": 70000}})


class TestCollectUnknownKeys:
    def test_none(self):
        assert _collect_unknown_keys({"github": {"owner": "acme"}}, Config) == []

    def test_top_level_and_nested(self):
        data = {"reviewers": {}, "github": {"owner": "acme", "tokne": "x"}}
        assert _collect_unknown_keys(data, Config) == ["reviewers", "github.tokne"]


class TestLoadConfig:
    def test_missing_file_returns_defaults(self, tmp_path: Path):
        config, path = load_config(cwd=_repo(tmp_path))
        assert config == Config()
        assert path is None

    def test_load_valid_toml(self, tmp_path: Path):
        _repo(tmp_path, '[github]\nowner = "acme"\nmax_retries = 5\n\n[handling]\ndefault_reaction = "heart"\n')
        config, path = load_config(cwd=tmp_path)
        assert config.github.owner == "acme"
        assert config.github.max_retries == 5
        assert config.handling.default_reaction == "heart"
        assert path == tmp_path / CONFIG_FILENAME

    def test_found_from_subdirectory(self, tmp_path: Path):
        _repo(tmp_path, '[github]\nowner = "acme"\n')
        sub = tmp_path / "src" / "pkg"
        sub.mkdir(parents=True)
        config, _ = load_config(cwd=sub)
        assert config.github.owner == "acme"

    def test_stops_at_git_root(self, tmp_path: Path):
        (tmp_path / CONFIG_FILENAME).write_text('[github]\nowner = "outer"\n', encoding="utf-8")
        inner = tmp_path / "inner"
        inner.mkdir()
        _repo(inner)
        config, path = load_config(cwd=inner)
        assert config.github.owner is None
        assert path is None

    def test_invalid_toml_raises(self, tmp_path: Path):
        _repo(tmp_path, "[github\nowner = ")
        with pytest.raises(ValueError, match="Invalid TOML"):
            load_config(cwd=tmp_path)

    def test_invalid_values_raise(self, tmp_path: Path):
        _repo(tmp_path, "[http]\nport = -1\n")
        with pytest.raises(ValueError, match="Invalid config"):
            load_config(cwd=tmp_path)

    def test_unknown_keys_warned(self, tmp_path: Path, caplog: pytest.LogCaptureFixture):
        _repo(tmp_path, '[github]\ntoken = "ghp_nope"\n')
        with caplog.at_level(logging.WARNING, logger="prcomments.config"):
            load_config(cwd=tmp_path)
        assert "github.token" in caplog.text

    def test_env_owner_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        _repo(tmp_path, '[github]\nowner = "acme"\n')
        monkeypatch.setenv("PRC_GITHUB_OWNER", "from-env")
        config, _ = load_config(cwd=tmp_path)
        assert config.github.owner == "from-env"

    def test_template_is_valid(self, tmp_path: Path):
        _repo(tmp_path, DEFAULT_CONFIG_TEMPLATE)
        config, _ = load_config(cwd=tmp_path)
        assert config == Config()


class TestActiveConfig:
    def test_set_and_get(self, tmp_path: Path):
        config = Config.model_validate({"github": {"owner": "acme"}})
        set_config(config, config_path=tmp_path / CONFIG_FILENAME)
        assert get_config() is config
        assert get_config_path() == tmp_path / CONFIG_FILENAME

    def test_github_settings_from_config(self):
        set_config(Config.model_validate({"github": {"timeout_seconds": 5, "max_retries": 0, "user_agent": "ua"}}))
        settings = github_settings()
        assert settings.timeout_seconds == 5
        assert settings.max_retries == 0
        assert settings.user_agent == "ua"
        assert settings.token is None

    def test_cli_token_wins(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("PRC_GITHUB_TOKEN", "env_tok")
        set_github_token("cli_tok")
        assert github_settings().token == "cli_tok"

    def test_env_token(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("PRC_GITHUB_TOKEN", "env_tok")
        assert github_settings().token == "env_tok"

    def test_token_not_in_repr(self):
        set_github_token("secret_tok")
        assert "secret_tok" not in repr(github_settings())


class TestInitConfig:
    def test_creates_file(self, tmp_path: Path):
        target = init_config(tmp_path)
        assert target.read_text(encoding="utf-8") == DEFAULT_CONFIG_TEMPLATE

    def test_refuses_to_overwrite(self, tmp_path: Path):
        (tmp_path / CONFIG_FILENAME).write_text("", encoding="utf-8")
        with pytest.raises(SystemExit):
            init_config(tmp_path)


class TestCleanConfig:
    def test_removes_unknown_keys(self, tmp_path: Path):
        target = tmp_path / CONFIG_FILENAME
        target.write_text('# keep me\n[github]\nowner = "acme"\ntokne = "x"\n\n[legacy]\nflag = true\n', encoding="utf-8")
        _, removed = clean_config(tmp_path)

        assert removed == ["github.tokne", "legacy"]
        text = target.read_text(encoding="utf-8")
        assert "# keep me" in text
        assert 'owner = "acme"' in text
        assert "tokne" not in text
        assert "legacy" not in text

    def test_clean_file_untouched(self, tmp_path: Path):
        target = tmp_path / CONFIG_FILENAME
        target.write_text('[github]\nowner = "acme"\n', encoding="utf-8")
        _, removed = clean_config(tmp_path)
        assert removed == []

    def test_missing_file_exits(self, tmp_path: Path):
        with pytest.raises(SystemExit):
            clean_config(tmp_path)

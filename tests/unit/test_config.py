from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from docket.core.config import ClosureConfig, Config, SummaryConfig
from docket.core.exceptions import ConfigError


def test_default_yaml_loads(test_config: Config) -> None:
    assert test_config.api.port == 5060
    assert test_config.closure.default_tier == "standard"
    assert test_config.closure.tiers["agile"].veto_window_hours == 24
    assert test_config.closure.tiers["standard"].required_approvals == 2
    assert test_config.closure.tiers["hardened"].require_all_checks_pass
    assert test_config.db_path.name == "docket.db"


def test_user_yaml_overlays_default(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    cfg_dir = tmp_path / "config"
    cfg_dir.mkdir()
    (cfg_dir / "default.yaml").write_text("api:\n  port: 5060\n  host: 127.0.0.1\n")
    (cfg_dir / "user.yaml").write_text("api:\n  port: 9000\n")

    cfg = Config.from_repo_defaults(tmp_path)
    assert cfg.api.port == 9000
    assert cfg.api.host == "127.0.0.1"


def test_config_env_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCKET_API__AUTH_TOKEN", "from-env")
    monkeypatch.setenv("DOCKET_SUMMARY__API_KEY", "sk-or-v1-env")
    cfg = Config()  # BaseSettings reads env
    assert cfg.api.auth_token == "from-env"
    assert cfg.summary.api_key == "sk-or-v1-env"


def test_config_from_yaml_raises_if_missing(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        Config.from_yaml(tmp_path / "missing.yaml")


def test_config_from_yaml_raises_on_bad_yaml(tmp_path: Path) -> None:
    p = tmp_path / "default.yaml"
    p.write_text("api: [unclosed\n")
    with pytest.raises(ConfigError):
        Config.from_yaml(p)


def test_summary_timeout_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        SummaryConfig(timeout_seconds=0)


def test_closure_tiers_must_all_be_present() -> None:
    with pytest.raises(ValidationError):
        ClosureConfig(tiers={"agile": {"required_approvals": 1, "veto_window_hours": 24}})

"""
Config テスト — bdt 設定の単体テスト

YAML ファイル・環境変数・CLI 引数からの設定読み込みと優先順位を検証する。
"""

from __future__ import annotations

from pathlib import Path

import pytest

from bdt.config import (
    CONFIG_TEMPLATE,
    BdtConfig,
    ConfigError,
    Credentials,
    apply_env,
    apply_mapping,
    load_config,
    load_yaml_file,
    mask_secret,
)
from conftest import capture_logs


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """カレントディレクトリの bdt.yaml を読み込まないようにする。"""
    monkeypatch.chdir(tmp_path)


# ---------------------------------------------------------------------------
# BdtConfig デフォルト値のテスト
# ---------------------------------------------------------------------------

class TestBdtConfigDefaults:
    """BdtConfig のデフォルト値テスト。"""

    def test_detection_defaults(self):
        config = BdtConfig()
        assert config.candidate_timeout_ms == 3000
        assert config.settle_ms == 1000

    def test_retry_defaults(self):
        config = BdtConfig()
        assert config.max_retries == 3
        assert config.base_delay_ms == 2000

    def test_runner_defaults(self):
        config = BdtConfig()
        assert config.workers == 1
        assert config.reruns == 2
        assert config.results_dir == "test-results"

    def test_report_defaults(self):
        config = BdtConfig()
        assert config.slow_threshold_ms == 30_000.0
        assert config.slow_top_n == 3
        assert config.pass_threshold == 70.0

    def test_default_browsers(self):
        """デフォルトのブラウザが chromium と webkit であること。"""
        assert BdtConfig().browsers == ["chromium", "webkit"]

    def test_browsers_not_shared(self):
        a, b = BdtConfig(), BdtConfig()
        a.browsers.append("firefox")
        assert b.browsers == ["chromium", "webkit"]


# ---------------------------------------------------------------------------
# 検証
# ---------------------------------------------------------------------------

class TestValidate:

    def test_defaults_valid(self):
        BdtConfig().validate()

    @pytest.mark.parametrize(
        ("field_name", "value"),
        [
            ("max_retries", 0),
            ("workers", 0),
            ("pass_threshold", 100.5),
            ("pass_threshold", -1.0),
            ("candidate_timeout_ms", -1),
            ("slow_threshold_ms", -0.5),
            ("browsers", []),
            ("reruns", -1),
        ],
    )
    def test_invalid(self, field_name: str, value):
        config = BdtConfig()
        setattr(config, field_name, value)
        with pytest.raises(ConfigError):
            config.validate()

    @pytest.mark.parametrize("results_dir", [".", "", "..", "sub/.."])
    def test_results_dir_must_not_contain_cwd(self, results_dir: str):
        """カレントディレクトリとその親は結果ディレクトリとして拒否すること。"""
        with pytest.raises(ConfigError, match="results_dir"):
            BdtConfig(results_dir=results_dir).validate()

    def test_results_dir_absolute_cwd_rejected(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="results_dir"):
            BdtConfig(results_dir=str(tmp_path)).validate()

    def test_results_dir_subdirectory_allowed(self, tmp_path: Path):
        BdtConfig(results_dir="out/results").validate()
        BdtConfig(results_dir=str(tmp_path / "elsewhere")).validate()

    @pytest.mark.parametrize("threshold", [0.0, 100.0])
    def test_threshold_bounds(self, threshold: float):
        BdtConfig(pass_threshold=threshold).validate()


# ---------------------------------------------------------------------------
# YAML ファイル
# ---------------------------------------------------------------------------

class TestYamlFile:

    def test_load(self, tmp_path: Path):
        path = tmp_path / "bdt.yaml"
        path.write_text("max_retries: 5\nbrowsers:\n  - webkit\n", encoding="utf-8")

        assert load_yaml_file(path) == {"max_retries": 5, "browsers": ["webkit"]}

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "bdt.yaml"
        path.write_text("", encoding="utf-8")
        assert load_yaml_file(path) == {}

    def test_not_mapping(self, tmp_path: Path):
        path = tmp_path / "bdt.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="マッピング"):
            load_yaml_file(path)

    def test_syntax_error(self, tmp_path: Path):
        path = tmp_path / "bdt.yaml"
        path.write_text("max_retries: [1, 2\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="構文エラー"):
            load_yaml_file(path)

    def test_template_is_valid(self, tmp_path: Path):
        """init が生成するテンプレートがそのまま読み込めること。"""
        path = tmp_path / "bdt.yaml"
        path.write_text(CONFIG_TEMPLATE, encoding="utf-8")

        config = load_config(path, environ={})

        assert config == BdtConfig()


# ---------------------------------------------------------------------------
# 値の適用
# ---------------------------------------------------------------------------

class TestApplyMapping:

    def test_unknown_key_warns(self):
        with capture_logs("bdt.config") as records:
            config = apply_mapping(BdtConfig(), {"headless": True}, "bdt.yaml")

        assert config == BdtConfig()
        assert any("headless" in r.getMessage() for r in records)

    def test_none_ignored(self):
        config = apply_mapping(BdtConfig(), {"workers": None}, "CLI")
        assert config.workers == 1

    def test_coercion(self):
        config = apply_mapping(
            BdtConfig(),
            {"workers": "4", "pass_threshold": 80, "slow_threshold_ms": "1500", "results_dir": 42},
            "CLI",
        )
        assert config.workers == 4
        assert config.pass_threshold == 80.0
        assert config.slow_threshold_ms == 1500.0
        assert config.results_dir == "42"

    def test_invalid_value(self):
        with pytest.raises(ConfigError, match="workers"):
            apply_mapping(BdtConfig(), {"workers": "many"}, "CLI")


class TestApplyEnv:

    def test_env_values(self):
        config = apply_env(BdtConfig(), {
            "BDT_BROWSERS": "chromium, firefox ,",
            "BDT_MAX_RETRIES": "5",
            "BDT_LOGIN_URL": "https://example.test/auth/",
        })
        assert config.browsers == ["chromium", "firefox"]
        assert config.max_retries == 5
        assert config.login_url == "https://example.test/auth/"

    def test_unrelated_env_ignored(self):
        assert apply_env(BdtConfig(), {"MAX_RETRIES": "9"}) == BdtConfig()

    def test_invalid_env_value(self):
        with pytest.raises(ConfigError, match="BDT_WORKERS"):
            apply_env(BdtConfig(), {"BDT_WORKERS": "x"})


# ---------------------------------------------------------------------------
# load_config の優先順位
# ---------------------------------------------------------------------------

class TestLoadConfig:
    """CLI 引数 > 環境変数 > YAML > デフォルト の優先順位テスト。"""

    def test_defaults_without_file(self):
        assert load_config(environ={}) == BdtConfig()

    def test_reads_default_file_in_cwd(self, tmp_path: Path):
        (tmp_path / "bdt.yaml").write_text("workers: 2\n", encoding="utf-8")
        assert load_config(environ={}).workers == 2

    def test_priority(self, tmp_path: Path):
        path = tmp_path / "custom.yaml"
        path.write_text("max_retries: 4\nworkers: 2\npass_threshold: 60\n", encoding="utf-8")

        config = load_config(
            path,
            overrides={"pass_threshold": 90.0},
            environ={"BDT_WORKERS": "3", "BDT_PASS_THRESHOLD": "75"},
        )

        assert config.max_retries == 4
        assert config.workers == 3
        assert config.pass_threshold == 90.0

    def test_missing_explicit_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="見つかりません"):
            load_config(tmp_path / "none.yaml", environ={})

    def test_validation_applied(self):
        with pytest.raises(ConfigError):
            load_config(overrides={"max_retries": 0}, environ={})


# ---------------------------------------------------------------------------
# 認証情報
# ---------------------------------------------------------------------------

class TestCredentials:

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("TEST_USERNAME", "tester@example.com")
        monkeypatch.setenv("TEST_PASSWORD", "s3cret")

        with capture_logs("bdt.config") as records:
            creds = Credentials.from_env()

        assert creds.username == "tester@example.com"
        assert creds.password == "s3cret"
        assert all("s3cret" not in r.getMessage() for r in records)

    @pytest.mark.parametrize("missing", ["TEST_USERNAME", "TEST_PASSWORD"])
    def test_missing(self, monkeypatch: pytest.MonkeyPatch, missing: str):
        monkeypatch.setenv("TEST_USERNAME", "tester@example.com")
        monkeypatch.setenv("TEST_PASSWORD", "s3cret")
        monkeypatch.delenv(missing)

        with pytest.raises(ConfigError, match=missing):
            Credentials.from_env()

    def test_repr_masks_password(self):
        text = repr(Credentials("tester@example.com", "s3cret"))
        assert "s3cret" not in text
        assert "***" in text

    @pytest.mark.parametrize(("value", "expected"), [("abc", "***"), ("", ""), (None, "")])
    def test_mask_secret(self, value, expected):
        assert mask_secret(value) == expected
